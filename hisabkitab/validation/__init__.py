"""Expense input validation."""

from hisabkitab.validation.validator import ExpenseValidator, normalize_input

__all__ = ["ExpenseValidator", "normalize_input"]
