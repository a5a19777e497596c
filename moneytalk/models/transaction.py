"""
Core Data Models for MoneyTalk

These models define the schemas for all data flowing through the
transaction pipeline. They are designed to:
1. Enforce the closed category vocabulary at runtime
2. Keep every timestamp in UTC
3. Be serializable for storage, cloud rows and logging

DESIGN DECISION: Categories are coerced, not rejected.
AI output with an unknown category becomes "Other" rather than an error,
because a safe default exists and the user reviews every candidate anyway.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionCategory(str, Enum):
    """
    The closed category vocabulary.

    The string values are what the AI prompt lists and what is stored.
    """
    GROCERIES = "Groceries"
    DINING = "Dining"
    HOUSING = "Housing"
    TRANSPORT = "Transport"
    HEALTHCARE = "Healthcare"
    PERSONAL = "Personal"
    EDUCATION = "Education"
    INCOME = "Income"
    SALARY = "Salary"
    BILLS = "Bills"
    SHOPPING = "Shopping"
    OTHER = "Other"


class TransactionType(str, Enum):
    """Direction of money flow."""
    EXPENSE = "expense"
    INCOME = "income"


class Period(str, Enum):
    """Period windows used for filtering and aggregation."""
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"
    ALL = "all"


def category_names() -> list[str]:
    """Category values in prompt order."""
    return [category.value for category in TransactionCategory]


def coerce_category(value: Any) -> TransactionCategory:
    """
    Map any value onto the closed vocabulary.

    Matching is case-insensitive; anything unrecognized becomes OTHER.
    """
    if isinstance(value, TransactionCategory):
        return value
    if isinstance(value, str):
        folded = value.strip().casefold()
        for category in TransactionCategory:
            if category.value.casefold() == folded:
                return category
    return TransactionCategory.OTHER


def coerce_type(value: Any) -> Optional[TransactionType]:
    """Parse a transaction type, returning None when it is not recognizable."""
    if isinstance(value, TransactionType):
        return value
    if isinstance(value, str):
        try:
            return TransactionType(value.strip().lower())
        except ValueError:
            return None
    return None


def utc_now() -> datetime:
    """Current time as an aware UTC datetime with millisecond precision."""
    return to_utc(datetime.now(timezone.utc))


def to_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC, truncated to milliseconds.

    Naive values are interpreted as UTC. Millisecond precision matches the
    storage format, so a stored record reads back equal to what was written.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


# =============================================================================
# CORE TRANSACTION MODELS
# =============================================================================

class Transaction(BaseModel):
    """
    The canonical financial record.

    id is 0 until the store assigns one. amount may carry either sign when
    handed to the store; the store rewrites it so the sign agrees with type.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: int = Field(
        default=0,
        ge=0,
        description="Store-assigned identifier (0 = unsaved)"
    )
    amount: Decimal = Field(
        ...,
        description="Signed amount; sign agrees with type once persisted"
    )
    category: TransactionCategory = Field(
        default=TransactionCategory.OTHER,
    )
    type: TransactionType = Field(
        default=TransactionType.EXPENSE,
    )
    description: str = Field(
        default="",
        description="Free text, never null"
    )
    date: datetime = Field(
        default_factory=utc_now,
        description="When the transaction happened (UTC)"
    )
    image_url: Optional[str] = Field(
        default=None,
        description="Remote URL or local fallback path of the receipt image"
    )

    @field_validator('category', mode='before')
    @classmethod
    def validate_category(cls, v: Any) -> TransactionCategory:
        return coerce_category(v)

    @field_validator('description', mode='before')
    @classmethod
    def default_description(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator('date')
    @classmethod
    def normalize_date(cls, v: datetime) -> datetime:
        return to_utc(v)

    @property
    def magnitude(self) -> Decimal:
        return abs(self.amount)

    @property
    def signed_amount(self) -> Decimal:
        """Presentation value: negative for expenses, positive for income."""
        if self.type == TransactionType.EXPENSE:
            return -self.magnitude
        return self.magnitude

    def with_normalized_sign(self) -> "Transaction":
        """Return a copy whose amount sign agrees with its type."""
        return self.model_copy(update={"amount": self.signed_amount})


class ReceiptItem(BaseModel):
    """A single line read from a receipt."""

    name: str = Field(..., min_length=1, max_length=200)
    price: Optional[Decimal] = None


class TransactionCandidate(BaseModel):
    """
    An unsaved, AI-produced transaction awaiting user confirmation.

    CRITICAL: This is PROPOSED data. It becomes a Transaction only after
    the user confirms or edits it.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    extraction_id: UUID = Field(
        default_factory=uuid4,
        description="Unique ID for this extraction attempt"
    )
    extracted_at: datetime = Field(
        default_factory=utc_now,
    )

    amount: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Non-negative magnitude"
    )
    category: TransactionCategory = TransactionCategory.OTHER
    type: TransactionType = TransactionType.EXPENSE
    description: str = ""
    date: datetime = Field(default_factory=utc_now)
    items: list[ReceiptItem] = Field(default_factory=list)

    # Which step of the provider chain produced this candidate
    provider: str = Field(
        default="keyword",
        description="Name of the provider that produced the candidate"
    )
    used_backup_provider: bool = Field(
        default=False,
        description="True when the primary provider did not produce it"
    )

    @field_validator('category', mode='before')
    @classmethod
    def validate_category(cls, v: Any) -> TransactionCategory:
        return coerce_category(v)

    @field_validator('description', mode='before')
    @classmethod
    def default_description(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator('date')
    @classmethod
    def normalize_date(cls, v: datetime) -> datetime:
        return to_utc(v)

    def to_transaction(
        self,
        description: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> Transaction:
        """Build an unsaved Transaction (id 0) from this candidate."""
        return Transaction(
            amount=self.amount,
            category=self.category,
            type=self.type,
            description=self.description if description is None else description,
            date=self.date,
            image_url=image_url,
        )


# =============================================================================
# AGGREGATION MODELS
# =============================================================================

class CategoryTotal(BaseModel):
    """Expense total for one category within a period window."""

    category: TransactionCategory
    amount: Decimal = Field(ge=0)

    @field_validator('category', mode='before')
    @classmethod
    def validate_category(cls, v: Any) -> TransactionCategory:
        return coerce_category(v)


class Balance(BaseModel):
    """Income and expense totals, both non-negative."""

    income: Decimal = Field(default=Decimal("0"), ge=0)
    expenses: Decimal = Field(default=Decimal("0"), ge=0)

    @property
    def net(self) -> Decimal:
        return self.income - self.expenses


# =============================================================================
# SYNC / BACKUP MODELS
# =============================================================================

class DeviceIdentity(BaseModel):
    """
    Per-installation identifier partitioning all cloud rows.

    Created once, persisted locally and passed explicitly to every
    cloud operation.
    """
    model_config = ConfigDict(frozen=True)

    user_id: UUID
    created_at: Optional[datetime] = None

    def __str__(self) -> str:
        return str(self.user_id)


class OperationResult(BaseModel):
    """
    Structured outcome of a network-facing or user-triggered operation.

    Callers never need exception handling for routine failures:
    they read success and show message.
    """

    success: bool
    message: str
    error: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, **data: Any) -> "OperationResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failed(cls, message: str, error: Optional[str] = None) -> "OperationResult":
        return cls(success=False, message=message, error=error)


class SyncStatus(BaseModel):
    """Cloud sync summary for one device identity."""

    last_sync_time: datetime
    transaction_count: int = Field(ge=0)
    settings_count: int = Field(ge=0)


class AISuggestion(BaseModel):
    """Cached AI spending suggestion."""

    suggestion: str
    timestamp: int = Field(
        ...,
        ge=0,
        description="Creation time in epoch milliseconds"
    )


class BackupListing(BaseModel):
    """Backup filenames by logical database, newest first."""

    transactions: list[str] = Field(default_factory=list)
    settings: list[str] = Field(default_factory=list)


class ImageUploadResult(BaseModel):
    """Outcome of storing a receipt image."""

    success: bool
    url: Optional[str] = None
    key: Optional[str] = None
    is_local: bool = False
    error: Optional[str] = None


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'coerced', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """Result of reviewing a candidate before it is confirmed."""

    extraction_id: UUID
    validated_at: datetime = Field(
        default_factory=utc_now
    )

    is_valid: bool = Field(
        ...,
        description="No error-level issues were found"
    )
    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")
