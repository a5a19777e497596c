"""
Spending Advisor

Generates a short spending suggestion by comparing this week's
transactions against last calendar month's.

DESIGN DECISION: Suggestions are cached and rate limited.
The latest suggestion lives in the settings database so it can be shown
without a network call, and a new one may be requested only a limited
number of times per UTC day. Failed generations do not use up a refresh.
"""

from datetime import datetime
from typing import Optional

import structlog
from dateutil.relativedelta import relativedelta

from moneytalk.agents.prompts import SUGGESTION_SYSTEM_PROMPT, build_suggestion_prompt
from moneytalk.agents.providers import AIProvider
from moneytalk.models.transaction import (
    AISuggestion,
    OperationResult,
    Period,
)
from moneytalk.periods import resolve_timezone, utc_now
from moneytalk.services.storage.interface import StorageError, TransactionStoreInterface
from moneytalk.services.storage.sqlite_store import epoch_millis, utc_day


logger = structlog.get_logger(__name__)

SUGGESTION_ERROR_MESSAGE = (
    "There was an error generating your suggestion. "
    "Please check your connection and API key."
)
LIMIT_REACHED_MESSAGE = "Daily refresh limit reached. Try again tomorrow."


def last_month_window(now: datetime, tz: Optional[str] = None) -> tuple[datetime, datetime]:
    """[start, end) of the previous calendar month in the user's zone."""
    local = now.astimezone(resolve_timezone(tz))
    this_month = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return this_month - relativedelta(months=1), this_month


class SpendingAdvisor:
    """
    Produces and caches AI spending suggestions.

    Usage:
        advisor = SpendingAdvisor(providers, store)
        result = await advisor.refresh_suggestion("Asia/Jakarta")
    """

    def __init__(
        self,
        providers: list[AIProvider],
        store: TransactionStoreInterface,
    ):
        self._providers = list(providers)
        self._store = store

    async def cached_suggestion(self) -> Optional[AISuggestion]:
        return await self._store.get_ai_suggestion()

    async def _generate(self, prompt: str) -> Optional[str]:
        for provider in self._providers:
            try:
                text = await provider.analyze_text(prompt, system_prompt=SUGGESTION_SYSTEM_PROMPT)
            except Exception as e:
                logger.warning("suggestion_provider_failed", provider=provider.name, error=str(e))
                continue
            return text.strip().strip('"')
        return None

    async def refresh_suggestion(
        self,
        tz: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OperationResult:
        """
        Generate, cache and count a new suggestion.

        On success data holds "suggestion" (AISuggestion) and "remaining".
        """
        now = now or utc_now()
        day = utc_day(now)

        try:
            remaining = await self._store.remaining_refreshes(day)
            if remaining <= 0:
                return OperationResult.failed(LIMIT_REACHED_MESSAGE, error="limit_reached")

            this_week = await self._store.by_period(Period.WEEK, tz=tz, now=now)
            start, end = last_month_window(now, tz)
            last_month = [
                tx for tx in await self._store.all()
                if start <= tx.date < end
            ]
        except StorageError as e:
            logger.error("suggestion_data_unavailable", error=str(e))
            return OperationResult.failed(SUGGESTION_ERROR_MESSAGE, error=str(e))

        text = await self._generate(build_suggestion_prompt(this_week, last_month))
        if not text:
            return OperationResult.failed(SUGGESTION_ERROR_MESSAGE, error="no_provider_succeeded")

        try:
            suggestion = await self._store.save_ai_suggestion(text, epoch_millis(now))
            used = await self._store.increment_daily_refresh_count(day)
            remaining = await self._store.remaining_refreshes(day)
        except StorageError as e:
            logger.error("suggestion_not_saved", error=str(e))
            return OperationResult.failed(SUGGESTION_ERROR_MESSAGE, error=str(e))

        logger.info("suggestion_refreshed", used=used, remaining=remaining)
        return OperationResult.ok(
            "Suggestion updated",
            suggestion=suggestion,
            remaining=remaining,
        )
