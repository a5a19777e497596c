"""Tests for AI payload parsing and candidate review checks."""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from moneytalk.models.transaction import (
    TransactionCandidate,
    TransactionCategory,
    TransactionType,
)
from moneytalk.validation import (
    PayloadError,
    TransactionValidator,
    load_json_object,
    parse_amount,
    parse_transaction_payload,
    strip_code_fences,
)


class TestPayloadParsing:
    """Tests for strict JSON payload handling."""

    def test_strip_code_fences(self):
        raw = '```json\n{"type": "expense"}\n```'
        assert strip_code_fences(raw) == '{"type": "expense"}'

    def test_load_rejects_non_object(self):
        with pytest.raises(PayloadError):
            load_json_object("[1, 2, 3]")

    def test_load_rejects_invalid_json(self):
        with pytest.raises(PayloadError):
            load_json_object("{type: expense}")

    def test_load_rejects_empty(self):
        with pytest.raises(PayloadError):
            load_json_object("   ")

    def test_parse_amount_accepts_numeric_string(self):
        assert parse_amount("12.5") == Decimal("12.5")

    @pytest.mark.parametrize("value", [True, None, "abc", "NaN", "Infinity", [1]])
    def test_parse_amount_rejects_non_numeric(self, value):
        with pytest.raises(PayloadError):
            parse_amount(value)

    def test_full_payload(self):
        raw = (
            '```json\n{"type": "expense", "category": "Dining", "amount": -45.5,'
            ' "date": "2025-01-31T19:30:00", "timezone": "Asia/Jakarta"}\n```'
        )
        candidate = parse_transaction_payload(raw, user_timezone="UTC", description="dinner")
        assert candidate.type == TransactionType.EXPENSE
        assert candidate.category == TransactionCategory.DINING
        assert candidate.amount == Decimal("45.5")
        assert candidate.description == "dinner"
        assert candidate.date == datetime(2025, 1, 31, 12, 30, tzinfo=timezone.utc)

    def test_unknown_category_becomes_other(self):
        candidate = parse_transaction_payload('{"type": "expense", "amount": 3, "category": "Pets"}')
        assert candidate.category == TransactionCategory.OTHER

    def test_unknown_payload_timezone_uses_user_zone(self):
        raw = '{"type": "income", "amount": 10, "date": "2025-01-31T09:00:00", "timezone": "Nowhere/City"}'
        candidate = parse_transaction_payload(raw, user_timezone="Asia/Tokyo")
        assert candidate.date == datetime(2025, 1, 31, 0, 0, tzinfo=timezone.utc)

    def test_missing_date_means_now(self):
        before = datetime.now(timezone.utc) - timedelta(seconds=1)
        candidate = parse_transaction_payload('{"type": "expense", "amount": 1}')
        assert candidate.date >= before

    def test_missing_type_rejected(self):
        with pytest.raises(PayloadError):
            parse_transaction_payload('{"amount": 10}')

    def test_invalid_type_rejected(self):
        with pytest.raises(PayloadError):
            parse_transaction_payload('{"type": "transfer", "amount": 10}')

    def test_missing_amount_rejected(self):
        with pytest.raises(PayloadError):
            parse_transaction_payload('{"type": "expense"}')

    def test_receipt_items(self):
        raw = (
            '{"type": "expense", "amount": 12, "description": "Corner shop",'
            ' "items": ["milk", {"name": "bread", "price": "2.5"}, {"price": 1}, 7]}'
        )
        candidate = parse_transaction_payload(raw, description="Receipt purchase")
        assert candidate.description == "Corner shop"
        assert [item.name for item in candidate.items] == ["milk", "bread"]
        assert candidate.items[1].price == Decimal("2.5")


class TestTransactionValidator:
    """Tests for non-blocking review checks."""

    NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

    def setup_method(self):
        self.validator = TransactionValidator()

    def _candidate(self, **overrides):
        values = {
            "amount": Decimal("20"),
            "category": TransactionCategory.DINING,
            "type": TransactionType.EXPENSE,
            "date": self.NOW,
        }
        values.update(overrides)
        return TransactionCandidate(**values)

    def test_clean_candidate(self):
        result = self.validator.review(self._candidate(), now=self.NOW)
        assert result.is_valid
        assert result.issues == []
        assert "Looks good" in self.validator.get_user_friendly_summary(result)

    def test_zero_amount_warning(self):
        result = self.validator.review(self._candidate(amount=Decimal("0")), now=self.NOW)
        assert result.is_valid
        assert any(issue.field == "amount" for issue in result.issues)

    def test_future_date_warning(self):
        result = self.validator.review(
            self._candidate(date=self.NOW + timedelta(days=3)), now=self.NOW
        )
        assert any(issue.issue_type == "future_date" for issue in result.issues)

    def test_old_date_warning(self):
        result = self.validator.review(
            self._candidate(date=self.NOW - timedelta(days=800)), now=self.NOW
        )
        assert any(issue.issue_type == "suspicious_date" for issue in result.issues)

    def test_other_category_is_info_only(self):
        result = self.validator.review(
            self._candidate(category=TransactionCategory.OTHER), now=self.NOW
        )
        assert [issue.severity for issue in result.issues] == ["info"]
        assert result.warnings == []

    def test_income_under_expense_category(self):
        result = self.validator.review(
            self._candidate(type=TransactionType.INCOME, category=TransactionCategory.DINING),
            now=self.NOW,
        )
        assert any(issue.issue_type == "inconsistent" for issue in result.issues)
        assert "Please verify" in self.validator.get_user_friendly_summary(result)
