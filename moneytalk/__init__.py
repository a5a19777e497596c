"""
MoneyTalk - Core Package

The transaction-analysis and persistence core of a voice/photo
personal-finance tracker.

DESIGN PRINCIPLES:
1. AI suggests → Human confirms → Store persists
2. Remote failures degrade gracefully, local storage errors surface
3. All stored dates are UTC
4. The store is the single source of truth for amount signs
5. Cloud and file backups never own authoritative state
"""

__version__ = "1.0.0"
__author__ = "MoneyTalk Team"
