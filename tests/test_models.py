"""
Tests for HisabKitab

Test strategy:
1. Unit tests for individual components (models, validators, aggregates)
2. Integration tests for flows (in-memory backend, mocked transports)
3. No real API calls in tests (use mocks)
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from hisabkitab.models.finance import (
    DEFAULT_CATEGORIES,
    Category,
    ErrorCode,
    Expense,
    ExpenseCreate,
    ExpenseUpdate,
    OperationResult,
    ValidationIssue,
    ValidationResult,
    Wallet,
    to_money,
)
from hisabkitab.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from hisabkitab.services.storage import (
    CategoryInUseError,
    InsufficientFundsError,
    NotFoundError,
    UnauthenticatedError,
)


class TestMoney:
    """Tests for Decimal money handling."""

    def test_to_money_from_float(self):
        """Test floats are converted via their string form."""
        assert to_money(0.1 + 0.2) == Decimal("0.30")

    def test_to_money_rounds_half_up(self):
        """Test half-paisa values round up."""
        assert to_money("2.345") == Decimal("2.35")

    def test_to_money_none_is_zero(self):
        """Test a missing amount reads as zero."""
        assert to_money(None) == Decimal("0.00")


class TestExpenseModels:
    """Tests for expense-related Pydantic models."""

    def test_expense_create(self):
        """Test ExpenseCreate model creation."""
        payload = ExpenseCreate(
            amount=Decimal("499.00"),
            date=datetime(2024, 6, 1, 9, 0),
            category="  Groceries  ",
            location="DMart",
        )
        assert payload.category == "Groceries"
        assert payload.deduct_from_wallet is False
        assert payload.date.tzinfo == timezone.utc

    def test_expense_create_rejects_non_positive_amount(self):
        """Test that zero and negative amounts are rejected."""
        for amount in ("0", "-10"):
            with pytest.raises(ValueError):
                ExpenseCreate(amount=Decimal(amount), date=datetime.now(), category="Food")

    def test_expense_create_requires_category(self):
        """Test that an empty category is rejected."""
        with pytest.raises(ValueError):
            ExpenseCreate(amount=Decimal("10"), date=datetime.now(), category="   ")

    def test_aware_dates_are_converted_to_utc(self):
        """Test a date in IST is stored as the same instant in UTC."""
        ist = timezone(timedelta(hours=5, minutes=30))
        payload = ExpenseCreate(
            amount=Decimal("10"),
            date=datetime(2024, 6, 1, 5, 30, tzinfo=ist),
            category="Food",
        )
        assert payload.date == datetime(2024, 6, 1, 0, 0, tzinfo=timezone.utc)

    def test_expense_requires_owner(self):
        """Test a persisted expense carries id and user id."""
        with pytest.raises(ValueError):
            Expense(
                id="e1",
                user_id="",
                amount=Decimal("10"),
                date=datetime.now(),
                category="Food",
            )

    def test_expense_update_only_reports_set_fields(self):
        """Test field_updates excludes fields never set."""
        patch = ExpenseUpdate(amount=Decimal("12.00"), location=None)
        assert patch.field_updates() == {"amount": Decimal("12.00"), "location": None}
        assert ExpenseUpdate().field_updates() == {}


class TestWalletAndCategoryModels:
    """Tests for wallet and category models."""

    def test_wallet_can_afford(self):
        """Test affordability is balance >= amount."""
        wallet = Wallet(id="w1", user_id="u1", balance=Decimal("100.00"))
        assert wallet.can_afford(Decimal("100.00"))
        assert not wallet.can_afford(Decimal("100.01"))

    def test_category_color_must_be_hex(self):
        """Test colours must be #rrggbb."""
        with pytest.raises(ValueError):
            Category(id="c1", name="Pets", color="blue")

    def test_custom_vs_default(self):
        """Test is_custom distinguishes user-owned categories."""
        custom = Category(id="c1", name="Pets", user_id="u1")
        default = Category(id="c2", name="Travel", is_default=True)
        assert custom.is_custom
        assert not default.is_custom

    def test_default_categories_are_unique(self):
        """Test the default list has no duplicate names."""
        names = [c["name"] for c in DEFAULT_CATEGORIES]
        assert len(names) == len(set(names)) == 12


class TestAuditModels:
    """Tests for audit models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.EXPENSE_CREATED,
            description="Test event",
        )
        assert event.event_id is not None
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dict."""
        correlation_id = uuid4()
        event = AuditEvent(
            event_type=AuditEventType.WALLET_ADJUSTED,
            user_id="u1",
            correlation_id=correlation_id,
            description="Test",
        )
        log_dict = event.to_log_dict()

        assert log_dict["event_type"] == "wallet_adjusted"
        assert log_dict["correlation_id"] == str(correlation_id)
        assert isinstance(log_dict["timestamp"], str)

    def test_audit_event_to_document_keeps_native_timestamp(self):
        """Test the stored document keeps a datetime timestamp."""
        event = AuditEvent(event_type=AuditEventType.EXPENSE_DELETED, description="Test")
        assert isinstance(event.to_document()["timestamp"], datetime)

    def test_builder_expense_created(self):
        """Test the expense_created builder."""
        correlation_id = uuid4()
        event = AuditEventBuilder.expense_created(
            user_id="u1",
            expense_id="e1",
            amount="150.00",
            category="Food",
            deducted=True,
            correlation_id=correlation_id,
        )
        assert event.event_type == AuditEventType.EXPENSE_CREATED
        assert event.entity_id == "e1"
        assert event.details["deduct_from_wallet"] is True
        assert event.is_user_action

    def test_builder_category_delete_blocked(self):
        """Test the delete-blocked builder is a warning with the error code."""
        event = AuditEventBuilder.category_delete_blocked("u1", "c1", "Pets", 3)
        assert event.severity == AuditSeverity.WARNING
        assert event.error_code == "category_in_use"
        assert event.details["usage_count"] == 3


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            schema_valid=False,
            semantic_valid=False,
            issues=[
                ValidationIssue(
                    field="amount",
                    issue_type="missing",
                    message="Amount is required",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors
        assert result.error_count == 1
        assert not result.is_valid

    def test_validation_result_warnings_only(self):
        """Test result with only warnings."""
        result = ValidationResult(
            schema_valid=True,
            semantic_valid=True,
            issues=[
                ValidationIssue(
                    field="date",
                    issue_type="future_date",
                    message="Date is in the future",
                    severity="warning",
                ),
            ],
        )
        assert not result.has_errors
        assert result.is_valid
        assert result.warnings == ["Date is in the future"]


class TestErrors:
    """Tests for the error taxonomy."""

    def test_codes(self):
        """Test every error carries its code."""
        assert NotFoundError("x").code == ErrorCode.NOT_FOUND
        assert UnauthenticatedError().code == ErrorCode.UNAUTHENTICATED
        assert InsufficientFundsError(Decimal("1"), Decimal("2")).code == ErrorCode.INSUFFICIENT_FUNDS
        assert CategoryInUseError("Pets", 2).code == ErrorCode.CATEGORY_IN_USE

    def test_operation_result(self):
        """Test the ok/fail constructors."""
        ok = OperationResult.ok({"id": "e1"}, warnings=["check date"])
        fail = OperationResult.fail(ErrorCode.NOT_FOUND, "Expense not found")

        assert ok.success and ok.data == {"id": "e1"} and ok.warnings == ["check date"]
        assert not fail.success
        assert fail.error_code == ErrorCode.NOT_FOUND
        assert fail.data is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
