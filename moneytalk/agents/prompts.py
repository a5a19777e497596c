"""
Prompt templates shared by every AI provider.

All providers receive identical prompts so that switching providers
changes the model, never the contract.
"""

import json
from typing import Iterable

from moneytalk.models.transaction import Transaction, category_names


TRANSACTION_SYSTEM_PROMPT = (
    "You are a financial transaction analyzer. Always respond with valid JSON only."
)

SUGGESTION_SYSTEM_PROMPT = (
    "You are a helpful financial assistant providing personalized suggestions."
)


def build_transaction_prompt(
    text: str,
    timezone_name: str,
    local_datetime: str,
    utc_datetime: str,
) -> str:
    """Prompt for extracting one transaction from a spoken or typed sentence."""
    categories = ", ".join(category_names())

    return f"""User timezone: {timezone_name}
Current datetime in user timezone: {local_datetime}
Current UTC datetime: {utc_datetime}

Analyze this financial transaction description and extract:
1. Transaction type: "income" or "expense"
2. Category: Choose one from this list → {categories}
3. Amount: Numeric only (no currency symbols or words)
4. Time Reference: Detect and convert any natural language time references (in English or Indonesian) to datetime format in the user's timezone.

Time parsing examples (all relative to current datetime in user timezone):
- "yesterday" / "kemarin" → current date - 1 day
- "2 days ago" / "2 hari yang lalu" → current date - 2 days
- "last week" / "minggu lalu" → current date - 7 days
- "this morning" / "pagi ini" → today at 09:00
- "last night" / "tadi malam" → yesterday at 21:00

If no time reference is found, use the current datetime in user timezone.

Transaction description: "{text}"

Respond ONLY in this JSON format:
{{
  "type": "income" or "expense",
  "category": "category from the list",
  "amount": number,
  "date": "YYYY-MM-DDTHH:mm:ss",
  "timezone": "{timezone_name}"
}}"""


def build_receipt_prompt(timezone_name: str) -> str:
    """Prompt for extracting one transaction from a receipt photo."""
    categories = ", ".join(category_names())

    return (
        "Analyze this receipt and extract transaction information. "
        "Return a JSON object with: amount (number), description (string), "
        f"category (one of: {categories}), "
        'type ("expense" or "income"), '
        "and items (array of item names and prices if visible). "
        "If a purchase date is printed, add date (YYYY-MM-DDTHH:mm:ss) and "
        f'timezone ("{timezone_name}"). '
        "Focus on the total amount and main purchase category. "
        "Respond with ONLY the JSON object."
    )


def build_transcription_prompt(language: str) -> str:
    return (
        "Transcribe this audio recording verbatim. "
        f"The speaker most likely uses the language '{language}'. "
        "Return only the transcript text, without commentary."
    )


def _summarize(transactions: Iterable[Transaction]) -> str:
    rows = [
        {
            "amount": str(tx.signed_amount),
            "category": tx.category.value,
            "type": tx.type.value,
            "description": tx.description,
            "date": tx.date.isoformat(),
        }
        for tx in transactions
    ]
    return json.dumps(rows, ensure_ascii=False)


def build_suggestion_prompt(
    this_week: Iterable[Transaction],
    last_month: Iterable[Transaction],
) -> str:
    """Prompt comparing this week's spending against last month's."""
    return f"""Analyze the user's spending habits based on the following data:
- This week's transactions: {_summarize(this_week)}
- Last month's transactions: {_summarize(last_month)}

Compare the spending for this week against the last month.
Provide a short, actionable suggestion for the user.
For example, suggest areas where they can save money, mention categories with high spending, or give positive reinforcement if they are spending less.
Keep the suggestion concise and easy to understand.
The response should be a single string of advice."""
