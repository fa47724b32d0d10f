"""
Core Data Models for HisabKitab

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and logging
4. Keep money as Decimal end to end

DESIGN DECISION: Amounts are Decimal, never float.
Summing floats drifts by fractions of a paisa per category, which
shows up as rounding noise on the dashboard.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


CENT = Decimal("0.01")


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_money(value: Any) -> Decimal:
    """
    Convert a stored or user-supplied number to a 2-place Decimal.

    Floats go through str() first so 0.1 becomes Decimal("0.1"),
    not the binary expansion.
    """
    if isinstance(value, Decimal):
        amount = value
    elif value is None:
        amount = Decimal("0")
    else:
        amount = Decimal(str(value))
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ErrorCode(str, Enum):
    """
    Error taxonomy surfaced to callers.

    Transport-level failures from the backend are normalized into
    BACKEND_UNAVAILABLE or PERMISSION_DENIED at the storage boundary.
    """
    NOT_FOUND = "not_found"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    CATEGORY_IN_USE = "category_in_use"
    UNAUTHENTICATED = "unauthenticated"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    PERMISSION_DENIED = "permission_denied"
    VALIDATION_ERROR = "validation_error"


# =============================================================================
# IDENTITY
# =============================================================================

class User(BaseModel):
    """
    A signed-in user.

    The id is issued by the identity provider and owns every
    expense, custom category and wallet.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    name: str = Field(default="", max_length=200)
    email: str = Field(default="", max_length=320)
    phone: Optional[str] = Field(default=None, max_length=30)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# CATEGORIES
# =============================================================================

class Category(BaseModel):
    """
    Expense category.

    Default categories have no user_id and are shared by everyone.
    Custom categories belong to one user.

    NOTE: Expense.category stores the category *name*, not its id.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=50)
    color: str = Field(
        default="#6366f1",
        pattern=r"^#[0-9a-fA-F]{6}$",
        description="Hex colour used by charts"
    )
    is_default: bool = False
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_custom(self) -> bool:
        return not self.is_default and self.user_id is not None


DEFAULT_CATEGORIES: list[dict[str, str]] = [
    {"name": "Food & Dining", "color": "#ef4444"},
    {"name": "Groceries", "color": "#f97316"},
    {"name": "Transportation", "color": "#f59e0b"},
    {"name": "Shopping", "color": "#eab308"},
    {"name": "Entertainment", "color": "#84cc16"},
    {"name": "Bills & Utilities", "color": "#22c55e"},
    {"name": "Healthcare", "color": "#10b981"},
    {"name": "Education", "color": "#14b8a6"},
    {"name": "Travel", "color": "#06b6d4"},
    {"name": "Personal Care", "color": "#0ea5e9"},
    {"name": "Fitness", "color": "#3b82f6"},
    {"name": "Gifts", "color": "#6366f1"},
]


# =============================================================================
# EXPENSES
# =============================================================================

class ExpenseCreate(BaseModel):
    """
    User-supplied payload for a new expense.

    Identity, ownership and timestamps are assigned by the store.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Amount spent"
    )
    date: datetime = Field(
        ...,
        description="When the money was spent"
    )
    category: str = Field(
        ...,
        min_length=1,
        max_length=50,
        description="Category name"
    )
    location: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)
    deduct_from_wallet: bool = Field(
        default=False,
        description="Debit the amount from the user's wallet"
    )

    @field_validator('date')
    @classmethod
    def normalize_date(cls, v: datetime) -> datetime:
        return as_utc(v)


class Expense(ExpenseCreate):
    """
    A persisted expense.

    user_id never changes after creation.
    """

    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ExpenseUpdate(BaseModel):
    """
    Partial update for an expense.

    Only fields explicitly set are applied; use field_updates()
    to get them.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Optional[Decimal] = Field(default=None, gt=0, decimal_places=2)
    date: Optional[datetime] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=50)
    location: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)
    deduct_from_wallet: Optional[bool] = None

    @field_validator('date')
    @classmethod
    def normalize_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v) if v is not None else v

    def field_updates(self) -> dict[str, Any]:
        """Fields the caller actually set."""
        return self.model_dump(exclude_unset=True)


# =============================================================================
# WALLET
# =============================================================================

class Wallet(BaseModel):
    """
    Single cash balance per user.

    Created lazily with a zero balance on first access; never deleted.
    """

    id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    balance: Decimal = Field(default=Decimal("0.00"), decimal_places=2)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def can_afford(self, amount: Decimal) -> bool:
        return self.balance >= amount


# =============================================================================
# ANALYTICS VIEW MODELS
# =============================================================================

class CategoryTotal(BaseModel):
    """Spend for one category name."""

    category: str
    amount: Decimal
    count: int = Field(ge=0)


class MonthlyTotal(BaseModel):
    """Spend for one calendar month."""

    month: int = Field(ge=1, le=12)
    label: str = Field(..., description="Short month name, e.g. 'Jan'")
    amount: Decimal
    count: int = Field(ge=0)


class DashboardSummary(BaseModel):
    """Headline numbers for the dashboard."""

    total_spent: Decimal
    this_month_spent: Decimal
    prev_month_spent: Decimal = Decimal("0.00")
    monthly_change_percent: Decimal = Field(
        default=Decimal("0.00"),
        description="Change vs previous month; 0 when the previous month is empty"
    )
    expense_count: int = Field(ge=0)
    average_expense: Decimal
    top_category: Optional[CategoryTotal] = None


class DashboardData(BaseModel):
    """Everything the dashboard page renders in one load."""

    summary: DashboardSummary
    categories: list[CategoryTotal] = Field(default_factory=list)
    monthly: list[MonthlyTotal] = Field(default_factory=list)
    recent: list[Expense] = Field(default_factory=list)
    wallet_balance: Optional[Decimal] = None


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
        description="Type of issue (e.g., 'missing', 'invalid_value', 'suspicious_value')"
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
        description="How the user might fix this"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (required fields, positive amount)
    Stage 2: Semantic validation (suspicious dates, amounts, categories)
    """

    validated_at: datetime = Field(default_factory=utcnow)
    schema_valid: bool
    semantic_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")


# =============================================================================
# OPERATION RESULTS
# =============================================================================

class OperationResult(BaseModel):
    """
    Outcome of a user-facing operation.

    Flows return this instead of raising, so a presentation layer
    can branch on error_code without catching exceptions.
    """

    success: bool
    data: Optional[Any] = None
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def ok(cls, data: Any = None, warnings: Optional[list[str]] = None) -> "OperationResult":
        return cls(success=True, data=data, warnings=warnings or [])

    @classmethod
    def fail(cls, error_code: ErrorCode, error_message: str) -> "OperationResult":
        return cls(success=False, error_code=error_code, error_message=error_message)
