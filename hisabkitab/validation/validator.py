"""
Two-Stage Expense Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Required field presence (amount, date, category)
- Positive amount
- Type and format checks (delegated to the pydantic models)
- Errors here block the operation

STAGE 2 - SEMANTIC VALIDATION:
- Future date beyond tolerance
- Suspiciously old date
- Absurd amount
- Category name the user doesn't have
- Everything here is a warning; the user may proceed

Stage 2 only runs if stage 1 passes.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; flows pass warnings back with the result.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from hisabkitab.config import get_settings
from hisabkitab.models.finance import (
    ExpenseCreate,
    ExpenseUpdate,
    ValidationIssue,
    ValidationResult,
    as_utc,
    utcnow,
)
from hisabkitab.services.storage.interface import ValidationError


REQUIRED_FIELDS = ("amount", "date", "category")


def normalize_input(data: dict[str, Any]) -> dict[str, Any]:
    """Plain dates become midnight UTC datetimes."""
    data = dict(data)
    value = data.get("date")
    if isinstance(value, date) and not isinstance(value, datetime):
        data["date"] = datetime(value.year, value.month, value.day)
    return data


def _issues_from_pydantic(error: PydanticValidationError) -> list[ValidationIssue]:
    issues = []
    for detail in error.errors():
        field = ".".join(str(part) for part in detail.get("loc", ())) or "expense"
        issues.append(ValidationIssue(
            field=field,
            issue_type="invalid_value",
            message=f"{field}: {detail.get('msg', 'invalid value')}",
            severity="error",
        ))
    return issues


class ExpenseValidator:
    """
    Validates raw expense input before it reaches the ledger.

    Stage 1: Schema validation (no storage needed)
    Stage 2: Semantic validation (uses the user's category names if given)
    """

    def __init__(
        self,
        max_amount: Optional[float] = None,
        future_tolerance_days: Optional[int] = None,
    ):
        settings = get_settings().app
        self._max_amount = Decimal(str(
            max_amount if max_amount is not None else settings.max_expense_amount
        ))
        self._future_tolerance = timedelta(
            days=future_tolerance_days
            if future_tolerance_days is not None
            else settings.future_date_tolerance_days
        )
        self._currency = settings.currency_symbol

    def _validate_schema(
        self,
        data: dict[str, Any],
        partial: bool,
    ) -> tuple[bool, list[ValidationIssue], Optional[BaseModel]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues, parsed_model_or_None)
        """
        issues = []

        if not partial:
            for field in REQUIRED_FIELDS:
                value = data.get(field)
                if value is None or (isinstance(value, str) and not value.strip()):
                    issues.append(ValidationIssue(
                        field=field,
                        issue_type="missing",
                        message=f"{field.capitalize()} is required",
                        severity="error",
                    ))
        elif "category" in data and not str(data["category"] or "").strip():
            issues.append(ValidationIssue(
                field="category",
                issue_type="missing",
                message="Category cannot be empty",
                severity="error",
            ))

        amount = data.get("amount")
        if amount is not None:
            try:
                if Decimal(str(amount)) <= 0:
                    issues.append(ValidationIssue(
                        field="amount",
                        issue_type="invalid_value",
                        message="Amount must be greater than zero",
                        severity="error",
                        suggested_fix="Enter a positive amount",
                    ))
            except ArithmeticError:
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="invalid_value",
                    message=f"Amount '{amount}' is not a number",
                    severity="error",
                ))

        if issues:
            return False, issues, None

        model = ExpenseUpdate if partial else ExpenseCreate
        try:
            parsed = model.model_validate(data)
        except PydanticValidationError as e:
            return False, _issues_from_pydantic(e), None

        return True, issues, parsed

    def _validate_semantic(
        self,
        parsed: BaseModel,
        known_categories: Optional[set[str]],
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []
        now = utcnow()

        expense_date = getattr(parsed, "date", None)
        if expense_date is not None:
            expense_date = as_utc(expense_date)
            if expense_date > now + self._future_tolerance:
                issues.append(ValidationIssue(
                    field="date",
                    issue_type="future_date",
                    message=f"Expense date ({expense_date.date()}) is in the future",
                    severity="warning",
                    suggested_fix="Please verify the date is correct",
                ))
            elif expense_date < now - timedelta(days=365 * 2):
                issues.append(ValidationIssue(
                    field="date",
                    issue_type="suspicious_date",
                    message=f"Expense date ({expense_date.date()}) seems unusually old",
                    severity="warning",
                    suggested_fix="Please verify the date is correct",
                ))

        amount = getattr(parsed, "amount", None)
        if amount is not None and amount > self._max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({self._currency}{amount:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        category = getattr(parsed, "category", None)
        if category and known_categories is not None and category not in known_categories:
            issues.append(ValidationIssue(
                field="category",
                issue_type="unknown_category",
                message=f"Category '{category}' is not one of your categories",
                severity="warning",
                suggested_fix="Pick an existing category or create it first",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(
        self,
        data: Union[dict[str, Any], BaseModel],
        known_categories: Optional[set[str]] = None,
        partial: bool = False,
    ) -> ValidationResult:
        """
        Run the two-stage pipeline.

        Args:
            data: Raw expense input (dict) or an already built model
            known_categories: The user's category names; skip the check if None
            partial: Validate as an update patch (no required fields)
        """
        if isinstance(data, BaseModel):
            data = data.model_dump(exclude_unset=partial)
        data = normalize_input(data)

        all_issues = []

        schema_valid, schema_issues, parsed = self._validate_schema(data, partial)
        all_issues.extend(schema_issues)

        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(parsed, known_categories)
            all_issues.extend(semantic_issues)

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            issues=all_issues,
        )

    def ensure_valid(
        self,
        data: Union[dict[str, Any], BaseModel],
        known_categories: Optional[set[str]] = None,
        partial: bool = False,
    ) -> ValidationResult:
        """
        Validate and raise ValidationError on any blocking issue.

        Returns the result (with warnings) when the input may proceed.
        """
        result = self.validate(data, known_categories=known_categories, partial=partial)
        if result.has_errors:
            errors = [i for i in result.issues if i.severity == "error"]
            raise ValidationError(
                "; ".join(i.message for i in errors),
                issues=[i.model_dump() for i in errors],
            )
        return result

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """Short text for showing validation results to the user."""
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []

        if not result.schema_valid:
            lines.append("Some required information is missing or invalid:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
