"""
Audit Models for HisabKitab

Every change to money or categories is logged for audit purposes.
This provides:
1. Traceability of every wallet movement
2. Debugging information when a transaction aborts
3. Ability to reconstruct how a balance got where it is

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from hisabkitab.models.finance import utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Identity
    USER_SIGNED_UP = "user_signed_up"
    USER_SIGNED_IN = "user_signed_in"
    USER_SIGNED_OUT = "user_signed_out"
    PROFILE_UPDATED = "profile_updated"

    # Expenses
    EXPENSE_CREATED = "expense_created"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"

    # Wallet
    WALLET_CREATED = "wallet_created"
    WALLET_ADJUSTED = "wallet_adjusted"
    WALLET_BALANCE_SET = "wallet_balance_set"
    INSUFFICIENT_FUNDS = "insufficient_funds"

    # Categories
    CATEGORY_CREATED = "category_created"
    CATEGORY_UPDATED = "category_updated"
    CATEGORY_DELETED = "category_deleted"
    CATEGORY_DELETE_BLOCKED = "category_delete_blocked"

    # System events
    VALIDATION_FAILED = "validation_failed"
    SYSTEM_ERROR = "system_error"
    BACKEND_ERROR = "backend_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Who and what
    user_id: Optional[str] = Field(
        default=None,
        description="User the event belongs to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'wallet', 'category')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Backend id of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., expense + wallet of one save)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_document(self) -> dict:
        """Convert to a Firestore document (timestamps stay native)."""
        doc = self.to_log_dict()
        doc["timestamp"] = self.timestamp
        return doc


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.expense_created(user_id, expense_id, amount, True, cid)
        event = AuditEventBuilder.wallet_adjusted(user_id, wallet_id, old, new, reason, cid)
    """

    @staticmethod
    def user_signed_in(user_id: str, method: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_SIGNED_IN,
            user_id=user_id,
            entity_type="user",
            entity_id=user_id,
            description=f"User signed in with {method}",
            details={"method": method},
            is_user_action=True,
        )

    @staticmethod
    def user_signed_up(user_id: str, email: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_SIGNED_UP,
            user_id=user_id,
            entity_type="user",
            entity_id=user_id,
            description="New account created",
            details={"email": email},
            is_user_action=True,
        )

    @staticmethod
    def user_signed_out(user_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_SIGNED_OUT,
            user_id=user_id,
            entity_type="user",
            entity_id=user_id,
            description="User signed out",
            is_user_action=True,
        )

    @staticmethod
    def profile_updated(user_id: str, fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROFILE_UPDATED,
            user_id=user_id,
            entity_type="user",
            entity_id=user_id,
            description="Profile updated",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def expense_created(
        user_id: str,
        expense_id: str,
        amount: str,
        category: str,
        deducted: bool,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_CREATED,
            user_id=user_id,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Expense of {amount} recorded under {category}",
            details={
                "amount": amount,
                "category": category,
                "deduct_from_wallet": deducted,
            },
            is_user_action=True,
        )

    @staticmethod
    def expense_updated(
        user_id: str,
        expense_id: str,
        fields: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_UPDATED,
            user_id=user_id,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description=f"Expense updated ({', '.join(fields) or 'no fields'})",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def expense_deleted(
        user_id: str,
        expense_id: str,
        refunded: Optional[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            user_id=user_id,
            entity_type="expense",
            entity_id=expense_id,
            correlation_id=correlation_id,
            description="Expense deleted" + (f", {refunded} refunded to wallet" if refunded else ""),
            details={"refunded": refunded},
            is_user_action=True,
        )

    @staticmethod
    def wallet_created(user_id: str, wallet_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WALLET_CREATED,
            user_id=user_id,
            entity_type="wallet",
            entity_id=wallet_id,
            description="Wallet created with zero balance",
        )

    @staticmethod
    def wallet_adjusted(
        user_id: str,
        wallet_id: str,
        old_balance: str,
        new_balance: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WALLET_ADJUSTED,
            user_id=user_id,
            entity_type="wallet",
            entity_id=wallet_id,
            correlation_id=correlation_id,
            description=f"Wallet balance {old_balance} -> {new_balance} ({reason})",
            details={
                "old_balance": old_balance,
                "new_balance": new_balance,
                "reason": reason,
            },
        )

    @staticmethod
    def wallet_balance_set(
        user_id: str,
        wallet_id: str,
        new_balance: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WALLET_BALANCE_SET,
            user_id=user_id,
            entity_type="wallet",
            entity_id=wallet_id,
            description=f"Wallet balance set to {new_balance}",
            details={"new_balance": new_balance},
            is_user_action=True,
        )

    @staticmethod
    def insufficient_funds(
        user_id: str,
        wallet_id: Optional[str],
        requested: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSUFFICIENT_FUNDS,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="wallet",
            entity_id=wallet_id,
            correlation_id=correlation_id,
            description=f"Wallet could not cover {requested}",
            details={"requested": requested},
            error_code="insufficient_funds",
        )

    @staticmethod
    def category_created(user_id: str, category_id: str, name: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_CREATED,
            user_id=user_id,
            entity_type="category",
            entity_id=category_id,
            description=f"Category created: {name}",
            details={"name": name},
            is_user_action=True,
        )

    @staticmethod
    def category_updated(user_id: str, category_id: str, fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_UPDATED,
            user_id=user_id,
            entity_type="category",
            entity_id=category_id,
            description="Category updated",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def category_deleted(user_id: str, category_id: str, name: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_DELETED,
            user_id=user_id,
            entity_type="category",
            entity_id=category_id,
            description=f"Category deleted: {name}",
            details={"name": name},
            is_user_action=True,
        )

    @staticmethod
    def category_delete_blocked(
        user_id: str,
        category_id: str,
        name: str,
        usage_count: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_DELETE_BLOCKED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type="category",
            entity_id=category_id,
            description=f"Category '{name}' is used by {usage_count} expense(s)",
            details={"name": name, "usage_count": usage_count},
            error_code="category_in_use",
            is_user_action=True,
        )

    @staticmethod
    def validation_failed(
        user_id: Optional[str],
        entity_type: str,
        issues: list[dict],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            user_id=user_id,
            entity_type=entity_type,
            description=f"{entity_type.capitalize()} input rejected",
            details={"issues": issues},
            error_code="validation_error",
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"System error: {error_type}",
            details=details or {},
            error_code=error_type,
            error_message=error_message,
        )

    @staticmethod
    def backend_error(
        error_code: str,
        error_message: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BACKEND_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            correlation_id=correlation_id,
            description="Backend request failed",
            error_code=error_code,
            error_message=error_message,
        )
