"""AI agents package: provider chain, keyword fallback and spending advisor."""

from moneytalk.agents.advisor import SpendingAdvisor
from moneytalk.agents.extractor import RECEIPT_DESCRIPTION, TransactionExtractor
from moneytalk.agents.keywords import KeywordMatcher
from moneytalk.agents.providers import (
    AIProvider,
    GeminiProvider,
    MalformedResponseError,
    OpenAIProvider,
    ProviderError,
    ProviderUnavailableError,
    TranscriptionError,
    build_default_providers,
)

__all__ = [
    "AIProvider",
    "GeminiProvider",
    "KeywordMatcher",
    "MalformedResponseError",
    "OpenAIProvider",
    "ProviderError",
    "ProviderUnavailableError",
    "RECEIPT_DESCRIPTION",
    "SpendingAdvisor",
    "TransactionExtractor",
    "TranscriptionError",
    "build_default_providers",
]
