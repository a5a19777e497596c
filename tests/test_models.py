"""
Tests for MoneyTalk

Test strategy:
1. Unit tests for individual components (models, parsers, resolvers)
2. Integration tests for flows (with fake providers and replicas)
3. No real API calls in tests
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from moneytalk.models.transaction import (
    Balance,
    DeviceIdentity,
    OperationResult,
    Transaction,
    TransactionCandidate,
    TransactionCategory,
    TransactionType,
    ValidationIssue,
    ValidationResult,
    category_names,
    coerce_category,
    coerce_type,
    to_utc,
)
from moneytalk.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)


class TestTransactionModels:
    """Tests for transaction-related Pydantic models."""

    def test_transaction_defaults(self):
        """Test an unsaved transaction gets id 0 and empty description."""
        tx = Transaction(amount=Decimal("10"))
        assert tx.id == 0
        assert tx.description == ""
        assert tx.type == TransactionType.EXPENSE
        assert tx.category == TransactionCategory.OTHER

    def test_transaction_none_description_becomes_empty(self):
        tx = Transaction(amount=Decimal("10"), description=None)
        assert tx.description == ""

    def test_transaction_unknown_category_coerced(self):
        """Test that an unknown category becomes Other."""
        tx = Transaction(amount=Decimal("10"), category="Crypto")
        assert tx.category == TransactionCategory.OTHER

    def test_transaction_category_case_insensitive(self):
        tx = Transaction(amount=Decimal("10"), category="  groceries ")
        assert tx.category == TransactionCategory.GROCERIES

    def test_transaction_rejects_negative_id(self):
        with pytest.raises(ValueError):
            Transaction(id=-1, amount=Decimal("10"))

    def test_signed_amount_follows_type(self):
        expense = Transaction(amount=Decimal("25"), type=TransactionType.EXPENSE)
        income = Transaction(amount=Decimal("-25"), type=TransactionType.INCOME)
        assert expense.signed_amount == Decimal("-25")
        assert income.signed_amount == Decimal("25")

    def test_with_normalized_sign(self):
        tx = Transaction(amount=Decimal("40"), type=TransactionType.EXPENSE)
        assert tx.with_normalized_sign().amount == Decimal("-40")
        assert tx.amount == Decimal("40")

    def test_naive_date_is_treated_as_utc(self):
        tx = Transaction(amount=Decimal("1"), date=datetime(2025, 1, 31, 10, 15))
        assert tx.date.tzinfo is not None
        assert tx.date.utcoffset() == timedelta(0)
        assert tx.date.hour == 10

    def test_aware_date_converted_to_utc(self):
        jakarta = timezone(timedelta(hours=7))
        tx = Transaction(amount=Decimal("1"), date=datetime(2025, 1, 31, 7, 0, tzinfo=jakarta))
        assert tx.date == datetime(2025, 1, 31, 0, 0, tzinfo=timezone.utc)

    def test_to_utc_truncates_to_milliseconds(self):
        value = to_utc(datetime(2025, 1, 1, 0, 0, 0, 123456, tzinfo=timezone.utc))
        assert value.microsecond == 123000

    def test_candidate_rejects_negative_amount(self):
        with pytest.raises(ValueError):
            TransactionCandidate(amount=Decimal("-5"))

    def test_candidate_to_transaction(self):
        candidate = TransactionCandidate(
            amount=Decimal("50"),
            category="Dining",
            type=TransactionType.EXPENSE,
            description="lunch",
        )
        tx = candidate.to_transaction(image_url="https://example.test/r.jpg")
        assert tx.id == 0
        assert tx.amount == Decimal("50")
        assert tx.category == TransactionCategory.DINING
        assert tx.description == "lunch"
        assert tx.image_url == "https://example.test/r.jpg"

    def test_candidate_to_transaction_description_override(self):
        candidate = TransactionCandidate(amount=Decimal("5"), description="from ai")
        assert candidate.to_transaction(description="edited").description == "edited"


class TestVocabulary:
    """Tests for the closed category and type vocabularies."""

    def test_all_categories_exist(self):
        assert category_names() == [
            "Groceries", "Dining", "Housing", "Transport", "Healthcare",
            "Personal", "Education", "Income", "Salary", "Bills",
            "Shopping", "Other",
        ]

    def test_coerce_category_non_string(self):
        assert coerce_category(42) == TransactionCategory.OTHER
        assert coerce_category(None) == TransactionCategory.OTHER

    def test_coerce_type(self):
        assert coerce_type("Income") == TransactionType.INCOME
        assert coerce_type(" expense ") == TransactionType.EXPENSE
        assert coerce_type("transfer") is None
        assert coerce_type(None) is None


class TestResultModels:
    """Tests for aggregation and outcome models."""

    def test_balance_net(self):
        balance = Balance(income=Decimal("100"), expenses=Decimal("30"))
        assert balance.net == Decimal("70")

    def test_operation_result_helpers(self):
        ok = OperationResult.ok("done", count=3)
        failed = OperationResult.failed("nope", error="boom")
        assert ok.success and ok.data == {"count": 3}
        assert not failed.success and failed.error == "boom"

    def test_device_identity_is_frozen(self):
        identity = DeviceIdentity(user_id=uuid4())
        with pytest.raises(ValueError):
            identity.user_id = uuid4()
        assert str(identity) == str(identity.user_id)


class TestAuditModels:
    """Tests for audit models."""

    def test_audit_event_creation(self):
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_SAVED,
            description="Test event",
        )
        assert event.event_type == AuditEventType.TRANSACTION_SAVED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_audit_event_to_log_dict(self):
        correlation_id = uuid4()
        event = AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description="Test error",
            correlation_id=correlation_id,
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "system_error"
        assert log_dict["severity"] == "error"
        assert log_dict["correlation_id"] == str(correlation_id)

    def test_audit_event_builder_transaction_saved(self):
        event = AuditEventBuilder.transaction_saved(7, "Groceries", "-50")
        assert event.event_type == AuditEventType.TRANSACTION_SAVED
        assert event.entity_id == "7"
        assert event.is_user_action is True

    def test_audit_event_builder_provider_fallback(self):
        event = AuditEventBuilder.provider_fallback("gemini", "openai")
        assert event.severity == AuditSeverity.WARNING
        assert event.details == {"from": "gemini", "to": "openai"}


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        result = ValidationResult(
            extraction_id=uuid4(),
            is_valid=False,
            issues=[
                ValidationIssue(
                    field="amount",
                    issue_type="missing",
                    message="Amount is required",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors is True
        assert result.error_count == 1

    def test_validation_result_warnings_only(self):
        result = ValidationResult(
            extraction_id=uuid4(),
            is_valid=True,
            issues=[
                ValidationIssue(
                    field="date",
                    issue_type="future_date",
                    message="Date is in the future",
                    severity="warning",
                ),
            ],
        )
        assert result.has_errors is False
        assert result.error_count == 0

    def test_validation_issue_rejects_unknown_severity(self):
        with pytest.raises(ValueError):
            ValidationIssue(field="x", issue_type="y", message="z", severity="fatal")
