"""
Audit Logger

DESIGN DECISION: Every change to money or categories is logged.
This provides:
1. Complete traceability of wallet balances
2. Debugging capability when a transaction aborts
3. User can see history of their actions

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from hisabkitab.models.audit import AuditEvent, AuditEventBuilder
from hisabkitab.services.storage.interface import AuditStore


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit store (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStore] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("hisabkitab.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_expense_created(
        self,
        user_id: str,
        expense_id: str,
        amount: str,
        category: str,
        deducted: bool,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.expense_created(
            user_id=user_id,
            expense_id=expense_id,
            amount=amount,
            category=category,
            deducted=deducted,
            correlation_id=correlation_id,
        ))

    async def log_expense_updated(
        self,
        user_id: str,
        expense_id: str,
        fields: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.expense_updated(
            user_id=user_id,
            expense_id=expense_id,
            fields=fields,
            correlation_id=correlation_id,
        ))

    async def log_expense_deleted(
        self,
        user_id: str,
        expense_id: str,
        refunded: Optional[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.expense_deleted(
            user_id=user_id,
            expense_id=expense_id,
            refunded=refunded,
            correlation_id=correlation_id,
        ))

    async def log_wallet_created(self, user_id: str, wallet_id: str) -> None:
        await self.log(AuditEventBuilder.wallet_created(user_id, wallet_id))

    async def log_wallet_adjusted(
        self,
        user_id: str,
        wallet_id: str,
        old_balance: str,
        new_balance: str,
        reason: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a balance change caused by an expense or a top-up."""
        await self.log(AuditEventBuilder.wallet_adjusted(
            user_id=user_id,
            wallet_id=wallet_id,
            old_balance=old_balance,
            new_balance=new_balance,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_wallet_balance_set(
        self,
        user_id: str,
        wallet_id: str,
        new_balance: str,
    ) -> None:
        await self.log(AuditEventBuilder.wallet_balance_set(user_id, wallet_id, new_balance))

    async def log_insufficient_funds(
        self,
        user_id: str,
        wallet_id: Optional[str],
        requested: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.insufficient_funds(
            user_id=user_id,
            wallet_id=wallet_id,
            requested=requested,
            correlation_id=correlation_id,
        ))

    async def log_category_created(self, user_id: str, category_id: str, name: str) -> None:
        await self.log(AuditEventBuilder.category_created(user_id, category_id, name))

    async def log_category_updated(self, user_id: str, category_id: str, fields: list[str]) -> None:
        await self.log(AuditEventBuilder.category_updated(user_id, category_id, fields))

    async def log_category_deleted(self, user_id: str, category_id: str, name: str) -> None:
        await self.log(AuditEventBuilder.category_deleted(user_id, category_id, name))

    async def log_category_delete_blocked(
        self,
        user_id: str,
        category_id: str,
        name: str,
        usage_count: int,
    ) -> None:
        await self.log(AuditEventBuilder.category_delete_blocked(
            user_id=user_id,
            category_id=category_id,
            name=name,
            usage_count=usage_count,
        ))

    async def log_validation_failed(
        self,
        user_id: Optional[str],
        entity_type: str,
        issues: list[dict],
    ) -> None:
        await self.log(AuditEventBuilder.validation_failed(user_id, entity_type, issues))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_backend_error(
        self,
        error_code: str,
        error_message: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a transport-level failure from the backend."""
        await self.log(AuditEventBuilder.backend_error(
            error_code=error_code,
            error_message=error_message,
            user_id=user_id,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., saving an expense).
    Pass it through all subsequent operations.
    """
    return uuid4()
