"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run against Firestore in production
2. Use in-memory storage for testing and local development
3. Keep the ledger decoupled from any vendor's transaction API

Stores are constructed once per process and passed explicitly to the
components that need them. There is no module-level singleton.

Every read is scoped by user id. Every write stamps created_at/updated_at.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

from hisabkitab.models.finance import (
    Category,
    ErrorCode,
    Expense,
    ExpenseCreate,
    User,
    Wallet,
)
from hisabkitab.models.audit import AuditEvent


T = TypeVar("T")


class ExpenseStore(ABC):
    """CRUD over expense documents."""

    @abstractmethod
    async def create_expense(self, user_id: str, payload: ExpenseCreate) -> Expense:
        """
        Persist a new expense for a user.

        Returns:
            The stored expense with its assigned id and timestamps
        """
        pass

    @abstractmethod
    async def get_expense(self, expense_id: str) -> Optional[Expense]:
        """Retrieve an expense by id, or None."""
        pass

    @abstractmethod
    async def list_expenses(
        self,
        user_id: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[Expense]:
        """
        List a user's expenses, newest date first.

        Args:
            user_id: Owner of the expenses
            date_from: Only expenses on or after this instant
            date_to: Only expenses on or before this instant
            limit: Maximum number of results

        Returns:
            Matching expenses ordered by date descending
        """
        pass

    @abstractmethod
    async def update_expense(self, expense_id: str, updates: dict[str, Any]) -> Expense:
        """
        Apply a partial update.

        Raises:
            NotFoundError: If the expense doesn't exist
        """
        pass

    @abstractmethod
    async def delete_expense(self, expense_id: str) -> bool:
        """Delete an expense. Returns False if it did not exist."""
        pass


class WalletStore(ABC):
    """One wallet document per user."""

    @abstractmethod
    async def get_wallet(self, user_id: str) -> Optional[Wallet]:
        """Get the user's wallet, or None if it was never created."""
        pass

    @abstractmethod
    async def create_wallet(self, user_id: str, balance: Decimal = Decimal("0")) -> Wallet:
        """Create the user's wallet."""
        pass

    @abstractmethod
    async def set_balance(self, wallet_id: str, balance: Decimal) -> Wallet:
        """
        Overwrite a wallet's balance.

        Raises:
            NotFoundError: If the wallet doesn't exist
        """
        pass


class CategoryStore(ABC):
    """Default (shared) and custom (user-owned) categories."""

    @abstractmethod
    async def list_categories(self, user_id: str) -> list[Category]:
        """Custom categories owned by the user, newest first."""
        pass

    @abstractmethod
    async def list_default_categories(self) -> list[Category]:
        """Shared default categories."""
        pass

    @abstractmethod
    async def get_category(self, category_id: str) -> Optional[Category]:
        pass

    @abstractmethod
    async def create_category(
        self,
        name: str,
        color: str,
        is_default: bool = False,
        user_id: Optional[str] = None,
    ) -> Category:
        pass

    @abstractmethod
    async def update_category(self, category_id: str, updates: dict[str, Any]) -> Category:
        """
        Raises:
            NotFoundError: If the category doesn't exist
        """
        pass

    @abstractmethod
    async def delete_category(self, category_id: str) -> bool:
        pass


class UserStore(ABC):
    """User profile documents keyed by identity-provider id."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    async def upsert_user(self, user: User) -> User:
        pass

    @abstractmethod
    async def update_user(self, user_id: str, updates: dict[str, Any]) -> User:
        pass


class AuditStore(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event. Returns True if persisted."""
        pass

    @abstractmethod
    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        """All events of one user action, oldest first."""
        pass

    @abstractmethod
    async def get_recent_events(self, user_id: str, limit: int = 100) -> list[AuditEvent]:
        """A user's most recent events, newest first."""
        pass


class LedgerTransaction(ABC):
    """
    Read-modify-write handle over expense and wallet documents.

    All reads must happen before the first write. Writes are buffered
    and applied only when the enclosing transaction commits.
    """

    @abstractmethod
    async def get_wallet(self, wallet_id: str) -> Optional[Wallet]:
        pass

    @abstractmethod
    async def get_expense(self, expense_id: str) -> Optional[Expense]:
        pass

    @abstractmethod
    def create_expense(self, user_id: str, payload: ExpenseCreate) -> Expense:
        """Buffer a new expense; returns it with its assigned id."""
        pass

    @abstractmethod
    def update_expense(self, expense_id: str, updates: dict[str, Any]) -> None:
        pass

    @abstractmethod
    def delete_expense(self, expense_id: str) -> None:
        pass

    @abstractmethod
    def set_wallet_balance(self, wallet_id: str, balance: Decimal) -> None:
        pass


class LedgerStore(ABC):
    """
    Atomic multi-document transactions.

    Implementations must give serializable isolation over the documents
    touched, and commit all buffered writes or none of them.
    """

    @abstractmethod
    async def run_transaction(
        self,
        fn: Callable[[LedgerTransaction], Awaitable[T]],
    ) -> T:
        """
        Run fn inside a transaction.

        If fn raises, nothing is written and the exception propagates.
        The backend may call fn more than once on write conflicts.
        """
        pass


# =============================================================================
# EXCEPTIONS
# =============================================================================

class HisabKitabError(Exception):
    """Base exception. Every subclass carries an ErrorCode."""

    code: ErrorCode = ErrorCode.BACKEND_UNAVAILABLE

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class StorageError(HisabKitabError):
    """Base exception for storage operations."""
    code = ErrorCode.BACKEND_UNAVAILABLE


class NotFoundError(StorageError):
    """Entity not found in storage."""
    code = ErrorCode.NOT_FOUND


class BackendUnavailableError(StorageError):
    """Could not reach the storage backend or identity provider."""
    code = ErrorCode.BACKEND_UNAVAILABLE


class PermissionDeniedError(StorageError):
    """Backend or ownership rules rejected the access."""
    code = ErrorCode.PERMISSION_DENIED


class InsufficientFundsError(HisabKitabError):
    """Wallet balance cannot cover a deduction."""
    code = ErrorCode.INSUFFICIENT_FUNDS

    def __init__(self, balance: Decimal, requested: Decimal):
        super().__init__(
            f"Insufficient wallet balance: {balance} available, {requested} required"
        )
        self.balance = balance
        self.requested = requested


class CategoryInUseError(HisabKitabError):
    """Category is referenced by at least one expense."""
    code = ErrorCode.CATEGORY_IN_USE

    def __init__(self, name: str, usage_count: int):
        super().__init__(
            f"Cannot delete category '{name}': used by {usage_count} expense(s)"
        )
        self.name = name
        self.usage_count = usage_count


class UnauthenticatedError(HisabKitabError):
    """No active user session, or credentials were rejected."""
    code = ErrorCode.UNAUTHENTICATED


class ValidationError(HisabKitabError):
    """Malformed input (non-positive amount, missing required field)."""
    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, issues: Optional[list[dict]] = None):
        super().__init__(message)
        self.issues = issues or []
