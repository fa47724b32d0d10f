"""
Data Models Package

This package contains all Pydantic models used in HisabKitab.
All data flowing through the system must conform to these schemas.
"""

from hisabkitab.models.finance import (
    DEFAULT_CATEGORIES,
    Category,
    CategoryTotal,
    DashboardData,
    DashboardSummary,
    ErrorCode,
    Expense,
    ExpenseCreate,
    ExpenseUpdate,
    MonthlyTotal,
    OperationResult,
    User,
    ValidationIssue,
    ValidationResult,
    Wallet,
    as_utc,
    to_money,
    utcnow,
)
from hisabkitab.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Finance models
    "DEFAULT_CATEGORIES",
    "Category",
    "CategoryTotal",
    "DashboardData",
    "DashboardSummary",
    "ErrorCode",
    "Expense",
    "ExpenseCreate",
    "ExpenseUpdate",
    "MonthlyTotal",
    "OperationResult",
    "User",
    "ValidationIssue",
    "ValidationResult",
    "Wallet",
    "as_utc",
    "to_money",
    "utcnow",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
