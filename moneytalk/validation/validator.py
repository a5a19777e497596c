"""
Two-Stage Validation Pipeline

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - PAYLOAD PARSING:
- Code fence stripping and strict JSON decoding
- Required field presence (type, amount)
- Closed-vocabulary coercion for category
- Local date to UTC conversion
- This catches malformed AI output; a failure moves the extractor
  to the next provider

STAGE 2 - REVIEW CHECKS:
- Zero amounts
- Future and very old dates
- Category/type mismatches
- These never block saving; they are shown at the confirmation step

IMPORTANT: Stage 2 never modifies the candidate.
It reports issues for human review.
"""

import json
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import structlog

from moneytalk.models.transaction import (
    ReceiptItem,
    TransactionCandidate,
    TransactionCategory,
    TransactionType,
    ValidationIssue,
    ValidationResult,
    coerce_category,
    coerce_type,
    utc_now,
)
from moneytalk.periods.resolver import known_timezone, local_to_utc


logger = structlog.get_logger(__name__)


class PayloadError(ValueError):
    """Raised when an AI payload cannot be turned into a candidate."""
    pass


CODE_FENCE_PATTERN = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")

INCOME_CATEGORIES = {
    TransactionCategory.INCOME,
    TransactionCategory.SALARY,
    TransactionCategory.OTHER,
}


# =============================================================================
# STAGE 1 - PAYLOAD PARSING
# =============================================================================

def strip_code_fences(raw: str) -> str:
    """Remove a Markdown code fence wrapped around a payload."""
    return CODE_FENCE_PATTERN.sub("", raw.strip()).strip()


def load_json_object(raw: Optional[str]) -> dict:
    """
    Decode a payload that must be a JSON object.

    Raises:
        PayloadError: If the payload is empty, not JSON or not an object
    """
    if not raw or not raw.strip():
        raise PayloadError("Empty response")

    try:
        data = json.loads(strip_code_fences(raw))
    except json.JSONDecodeError as e:
        raise PayloadError(f"Response is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise PayloadError("Response is not a JSON object")

    return data


def parse_amount(value: Any) -> Decimal:
    """
    Parse a numeric amount.

    Numbers and numeric strings are accepted; booleans, NaN and
    infinities are not.

    Raises:
        PayloadError: If value is not numeric
    """
    if isinstance(value, bool) or value is None:
        raise PayloadError(f"Amount is not numeric: {value!r}")

    if isinstance(value, (int, float)):
        text = str(value)
    elif isinstance(value, str):
        text = value.strip()
    else:
        raise PayloadError(f"Amount is not numeric: {value!r}")

    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise PayloadError(f"Amount is not numeric: {value!r}")

    if not amount.is_finite():
        raise PayloadError(f"Amount is not finite: {value!r}")

    return amount


def parse_payload_date(
    value: Any,
    payload_timezone: Any,
    user_timezone: Optional[str],
) -> datetime:
    """
    Convert the date an AI returned to UTC.

    Local values are read in the payload's timezone, or the user's zone
    when the payload names none (or an unknown one). Missing or
    unparseable values mean "now".
    """
    if not value or not isinstance(value, str):
        return utc_now()

    zone = payload_timezone if known_timezone(payload_timezone) else user_timezone
    try:
        return local_to_utc(value, zone)
    except (ValueError, OverflowError):
        logger.warning("unparseable_payload_date", value=value)
        return utc_now()


def parse_items(value: Any) -> list[ReceiptItem]:
    """Receipt items; entries that are neither names nor name/price objects are dropped."""
    if not isinstance(value, list):
        return []

    items = []
    for entry in value:
        if isinstance(entry, str) and entry.strip():
            items.append(ReceiptItem(name=entry.strip()[:200]))
        elif isinstance(entry, dict):
            name = entry.get("name") or entry.get("item")
            if not isinstance(name, str) or not name.strip():
                continue
            price = None
            try:
                price = parse_amount(entry.get("price"))
            except PayloadError:
                pass
            items.append(ReceiptItem(name=name.strip()[:200], price=price))
    return items


def parse_transaction_payload(
    raw: Optional[str],
    user_timezone: Optional[str] = None,
    description: str = "",
) -> TransactionCandidate:
    """
    Stage 1: turn an AI response into a candidate.

    Args:
        raw: Raw response text (may be fenced)
        user_timezone: Zone used when the payload's date has no offset
        description: Description used when the payload carries none

    Returns:
        TransactionCandidate with a non-negative amount

    Raises:
        PayloadError: On any structural problem
    """
    data = load_json_object(raw)

    transaction_type = coerce_type(data.get("type"))
    if transaction_type is None:
        raise PayloadError(f"Missing or invalid transaction type: {data.get('type')!r}")

    if "amount" not in data:
        raise PayloadError("Missing amount")
    amount = abs(parse_amount(data["amount"]))

    payload_description = data.get("description")
    if not isinstance(payload_description, str) or not payload_description.strip():
        payload_description = description

    return TransactionCandidate(
        amount=amount,
        category=coerce_category(data.get("category")),
        type=transaction_type,
        description=payload_description,
        date=parse_payload_date(data.get("date"), data.get("timezone"), user_timezone),
        items=parse_items(data.get("items")),
    )


# =============================================================================
# STAGE 2 - REVIEW CHECKS
# =============================================================================

class TransactionValidator:
    """
    Review checks shown before the user confirms a candidate.

    None of these block saving.
    """

    def __init__(
        self,
        future_tolerance: timedelta = timedelta(days=1),
        max_age: timedelta = timedelta(days=365 * 2),
    ):
        self._future_tolerance = future_tolerance
        self._max_age = max_age

    def review(
        self,
        candidate: TransactionCandidate,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        """
        Run review checks on a candidate.

        Returns:
            ValidationResult listing every issue found
        """
        issues = []
        now = now or datetime.now(timezone.utc)

        if candidate.amount == 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="missing",
                message="No amount could be determined",
                severity="warning",
                suggested_fix="Enter the amount manually",
            ))

        if candidate.date > now + self._future_tolerance:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Date ({candidate.date.date()}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        if candidate.date < now - self._max_age:
            issues.append(ValidationIssue(
                field="date",
                issue_type="suspicious_date",
                message=f"Date ({candidate.date.date()}) seems unusually old",
                severity="warning",
                suggested_fix="Please verify the date was understood correctly",
            ))

        if candidate.category == TransactionCategory.OTHER:
            issues.append(ValidationIssue(
                field="category",
                issue_type="coerced",
                message="Category could not be determined",
                severity="info",
                suggested_fix="Pick a category if one fits",
            ))

        if (
            candidate.type == TransactionType.INCOME
            and candidate.category not in INCOME_CATEGORIES
        ):
            issues.append(ValidationIssue(
                field="category",
                issue_type="inconsistent",
                message=f"Income recorded under {candidate.category.value}",
                severity="warning",
                suggested_fix="Check whether this is an expense",
            ))
        elif (
            candidate.type == TransactionType.EXPENSE
            and candidate.category in (TransactionCategory.INCOME, TransactionCategory.SALARY)
        ):
            issues.append(ValidationIssue(
                field="category",
                issue_type="inconsistent",
                message=f"Expense recorded under {candidate.category.value}",
                severity="warning",
                suggested_fix="Check whether this is income",
            ))

        warnings = [issue.message for issue in issues if issue.severity == "warning"]

        return ValidationResult(
            extraction_id=candidate.extraction_id,
            is_valid=not any(issue.severity == "error" for issue in issues),
            issues=issues,
            warnings=warnings,
        )

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of review results.
        """
        if not result.warnings:
            return "✅ Looks good! Please review the details below."

        lines = ["⚠️ Please verify the following:"]
        for issue in result.issues:
            if issue.severity == "warning":
                lines.append(f"   • {issue.message}")
                if issue.suggested_fix:
                    lines.append(f"     💡 {issue.suggested_fix}")

        return "\n".join(lines)
