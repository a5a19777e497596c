"""Tests for the cached, rate-limited spending advisor."""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

from fakes import FakeProvider, failing_provider
from moneytalk.agents.advisor import (
    LIMIT_REACHED_MESSAGE,
    SUGGESTION_ERROR_MESSAGE,
    SpendingAdvisor,
    last_month_window,
)
from moneytalk.agents.prompts import SUGGESTION_SYSTEM_PROMPT
from moneytalk.models.transaction import Transaction, TransactionCategory


NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)
DAY = "2025-03-15"


def seed(store):
    for amount, category, when in [
        ("40", TransactionCategory.DINING, datetime(2025, 3, 13, tzinfo=timezone.utc)),
        ("300", TransactionCategory.BILLS, datetime(2025, 2, 10, tzinfo=timezone.utc)),
        ("99", TransactionCategory.SHOPPING, datetime(2025, 1, 5, tzinfo=timezone.utc)),
    ]:
        asyncio.run(store.insert(Transaction(amount=Decimal(amount), category=category, date=when)))


class TestLastMonthWindow:
    """Tests for the previous calendar month bounds."""

    def test_utc(self):
        start, end = last_month_window(NOW, "UTC")
        assert start == datetime(2025, 2, 1, tzinfo=timezone.utc)
        assert end == datetime(2025, 3, 1, tzinfo=timezone.utc)

    def test_month_boundary_in_user_zone(self):
        """Test 22:00 UTC on the last day is already next month in Jakarta."""
        start, end = last_month_window(datetime(2025, 2, 28, 22, 0, tzinfo=timezone.utc), "Asia/Jakarta")
        assert start.month == 2 and end.month == 3


class TestSpendingAdvisor:
    """Tests for suggestion generation, caching and the daily limit."""

    def test_suggestion_cached_and_counted(self, store):
        seed(store)
        provider = FakeProvider("gemini", text_response='"Dining is up this week, try cooking twice."')
        advisor = SpendingAdvisor([provider], store)

        result = asyncio.run(advisor.refresh_suggestion("UTC", now=NOW))

        assert result.success
        assert result.data["remaining"] == 2
        assert result.data["suggestion"].suggestion == "Dining is up this week, try cooking twice."
        cached = asyncio.run(advisor.cached_suggestion())
        assert cached.suggestion == "Dining is up this week, try cooking twice."
        assert cached.timestamp == int(NOW.timestamp() * 1000)
        assert asyncio.run(store.get_daily_refresh_count(DAY)) == 1

    def test_prompt_compares_week_with_last_month(self, store):
        seed(store)
        provider = FakeProvider("gemini", text_response="ok")
        asyncio.run(SpendingAdvisor([provider], store).refresh_suggestion("UTC", now=NOW))

        prompt = provider.prompts[0]
        week_line, month_line = prompt.splitlines()[1:3]
        assert "Dining" in week_line and "Bills" not in week_line
        assert "Bills" in month_line and "Shopping" not in month_line
        assert provider.system_prompts == [SUGGESTION_SYSTEM_PROMPT]

    def test_secondary_provider_used(self, store):
        advisor = SpendingAdvisor(
            [failing_provider("gemini"), FakeProvider("openai", text_response="Keep it up")],
            store,
        )
        result = asyncio.run(advisor.refresh_suggestion("UTC", now=NOW))
        assert result.data["suggestion"].suggestion == "Keep it up"

    def test_failure_does_not_use_a_refresh(self, store):
        advisor = SpendingAdvisor([failing_provider("gemini"), failing_provider("openai")], store)

        result = asyncio.run(advisor.refresh_suggestion("UTC", now=NOW))

        assert not result.success
        assert result.message == SUGGESTION_ERROR_MESSAGE
        assert asyncio.run(store.get_daily_refresh_count(DAY)) == 0
        assert asyncio.run(advisor.cached_suggestion()) is None

    def test_daily_limit(self, store):
        provider = FakeProvider("gemini", text_response="tip")
        advisor = SpendingAdvisor([provider], store)

        for _ in range(3):
            assert asyncio.run(advisor.refresh_suggestion("UTC", now=NOW)).success

        result = asyncio.run(advisor.refresh_suggestion("UTC", now=NOW))

        assert not result.success
        assert result.message == LIMIT_REACHED_MESSAGE
        assert result.error == "limit_reached"
        assert len(provider.prompts) == 3

    def test_limit_resets_next_utc_day(self, store):
        asyncio.run(store.set_daily_refresh_count(3, DAY))
        advisor = SpendingAdvisor([FakeProvider("gemini", text_response="tip")], store)

        tomorrow = datetime(2025, 3, 16, 0, 5, tzinfo=timezone.utc)
        assert asyncio.run(advisor.refresh_suggestion("UTC", now=tomorrow)).success
