"""
In-Memory Storage Implementation

Used for tests and for running locally without Firebase credentials
(STORAGE_BACKEND=memory).

Transactions are serialized with an asyncio.Lock, which gives the same
serializable isolation the ledger relies on from Firestore. Writes are
buffered and applied to a staged copy of the collections, so a failing
write leaves every collection untouched.
"""

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, TypeVar
from uuid import UUID, uuid4

from hisabkitab.models.audit import AuditEvent
from hisabkitab.models.finance import (
    Category,
    Expense,
    ExpenseCreate,
    User,
    Wallet,
    as_utc,
    to_money,
    utcnow,
)
from hisabkitab.services.storage.interface import (
    AuditStore,
    CategoryStore,
    ExpenseStore,
    LedgerStore,
    LedgerTransaction,
    NotFoundError,
    StorageError,
    UserStore,
    WalletStore,
)


T = TypeVar("T")

COLLECTIONS = ("users", "expenses", "categories", "wallets", "audit_log")


def new_document_id() -> str:
    """20-character id, same shape as a Firestore auto id."""
    return uuid4().hex[:20]


class InMemoryDatabase:
    """
    Shared document state for all in-memory stores.

    Plays the role the Firestore client plays for the Firestore stores.
    """

    def __init__(self):
        self.collections: dict[str, dict[str, Any]] = {name: {} for name in COLLECTIONS}
        self.lock = asyncio.Lock()

    def collection(self, name: str) -> dict[str, Any]:
        return self.collections[name]


class InMemoryLedgerTransaction(LedgerTransaction):
    """Buffers writes until the enclosing transaction commits."""

    def __init__(self, db: InMemoryDatabase):
        self._db = db
        self._writes: list[Callable[[dict[str, dict[str, Any]]], None]] = []

    def _check_read_allowed(self) -> None:
        if self._writes:
            raise StorageError("Transactions must perform all reads before any writes")

    async def get_wallet(self, wallet_id: str) -> Optional[Wallet]:
        self._check_read_allowed()
        wallet = self._db.collection("wallets").get(wallet_id)
        return wallet.model_copy(deep=True) if wallet else None

    async def get_expense(self, expense_id: str) -> Optional[Expense]:
        self._check_read_allowed()
        expense = self._db.collection("expenses").get(expense_id)
        return expense.model_copy(deep=True) if expense else None

    def create_expense(self, user_id: str, payload: ExpenseCreate) -> Expense:
        now = utcnow()
        expense = Expense(
            id=new_document_id(),
            user_id=user_id,
            created_at=now,
            updated_at=now,
            **payload.model_dump(),
        )

        def apply(staged: dict[str, dict[str, Any]]) -> None:
            staged["expenses"][expense.id] = expense.model_copy(deep=True)

        self._writes.append(apply)
        return expense

    def update_expense(self, expense_id: str, updates: dict[str, Any]) -> None:
        def apply(staged: dict[str, dict[str, Any]]) -> None:
            current = staged["expenses"].get(expense_id)
            if current is None:
                raise NotFoundError(f"Expense not found: {expense_id}")
            staged["expenses"][expense_id] = Expense.model_validate({
                **current.model_dump(),
                **updates,
                "updated_at": utcnow(),
            })

        self._writes.append(apply)

    def delete_expense(self, expense_id: str) -> None:
        def apply(staged: dict[str, dict[str, Any]]) -> None:
            if staged["expenses"].pop(expense_id, None) is None:
                raise NotFoundError(f"Expense not found: {expense_id}")

        self._writes.append(apply)

    def set_wallet_balance(self, wallet_id: str, balance: Decimal) -> None:
        def apply(staged: dict[str, dict[str, Any]]) -> None:
            current = staged["wallets"].get(wallet_id)
            if current is None:
                raise NotFoundError(f"Wallet not found: {wallet_id}")
            staged["wallets"][wallet_id] = current.model_copy(
                update={"balance": to_money(balance), "updated_at": utcnow()}
            )

        self._writes.append(apply)

    def commit(self) -> None:
        """Apply all buffered writes atomically."""
        staged = {name: dict(docs) for name, docs in self._db.collections.items()}
        for apply in self._writes:
            apply(staged)
        self._db.collections = staged


class InMemoryLedgerStore(LedgerStore):
    """Serializable transactions over the in-memory collections."""

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    async def run_transaction(
        self,
        fn: Callable[[LedgerTransaction], Awaitable[T]],
    ) -> T:
        async with self._db.lock:
            transaction = InMemoryLedgerTransaction(self._db)
            result = await fn(transaction)
            transaction.commit()
            return result


class InMemoryExpenseStore(ExpenseStore):

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    async def create_expense(self, user_id: str, payload: ExpenseCreate) -> Expense:
        now = utcnow()
        expense = Expense(
            id=new_document_id(),
            user_id=user_id,
            created_at=now,
            updated_at=now,
            **payload.model_dump(),
        )
        async with self._db.lock:
            self._db.collection("expenses")[expense.id] = expense
        return expense.model_copy(deep=True)

    async def get_expense(self, expense_id: str) -> Optional[Expense]:
        expense = self._db.collection("expenses").get(expense_id)
        return expense.model_copy(deep=True) if expense else None

    async def list_expenses(
        self,
        user_id: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[Expense]:
        date_from = as_utc(date_from) if date_from else None
        date_to = as_utc(date_to) if date_to else None

        expenses = []
        for expense in self._db.collection("expenses").values():
            if expense.user_id != user_id:
                continue
            if date_from and expense.date < date_from:
                continue
            if date_to and expense.date > date_to:
                continue
            expenses.append(expense.model_copy(deep=True))

        expenses.sort(key=lambda e: e.date, reverse=True)
        return expenses[:limit] if limit else expenses

    async def update_expense(self, expense_id: str, updates: dict[str, Any]) -> Expense:
        async with self._db.lock:
            current = self._db.collection("expenses").get(expense_id)
            if current is None:
                raise NotFoundError(f"Expense not found: {expense_id}")
            updated = Expense.model_validate({
                **current.model_dump(),
                **updates,
                "updated_at": utcnow(),
            })
            self._db.collection("expenses")[expense_id] = updated
        return updated.model_copy(deep=True)

    async def delete_expense(self, expense_id: str) -> bool:
        async with self._db.lock:
            return self._db.collection("expenses").pop(expense_id, None) is not None


class InMemoryWalletStore(WalletStore):

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    async def get_wallet(self, user_id: str) -> Optional[Wallet]:
        for wallet in self._db.collection("wallets").values():
            if wallet.user_id == user_id:
                return wallet.model_copy(deep=True)
        return None

    async def create_wallet(self, user_id: str, balance: Decimal = Decimal("0")) -> Wallet:
        now = utcnow()
        wallet = Wallet(
            id=new_document_id(),
            user_id=user_id,
            balance=to_money(balance),
            created_at=now,
            updated_at=now,
        )
        async with self._db.lock:
            self._db.collection("wallets")[wallet.id] = wallet
        return wallet.model_copy(deep=True)

    async def set_balance(self, wallet_id: str, balance: Decimal) -> Wallet:
        async with self._db.lock:
            current = self._db.collection("wallets").get(wallet_id)
            if current is None:
                raise NotFoundError(f"Wallet not found: {wallet_id}")
            updated = current.model_copy(
                update={"balance": to_money(balance), "updated_at": utcnow()}
            )
            self._db.collection("wallets")[wallet_id] = updated
        return updated.model_copy(deep=True)


class InMemoryCategoryStore(CategoryStore):

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    async def list_categories(self, user_id: str) -> list[Category]:
        categories = [
            c.model_copy(deep=True)
            for c in self._db.collection("categories").values()
            if c.user_id == user_id
        ]
        categories.sort(key=lambda c: c.created_at, reverse=True)
        return categories

    async def list_default_categories(self) -> list[Category]:
        categories = [
            c.model_copy(deep=True)
            for c in self._db.collection("categories").values()
            if c.is_default
        ]
        categories.sort(key=lambda c: c.created_at)
        return categories

    async def get_category(self, category_id: str) -> Optional[Category]:
        category = self._db.collection("categories").get(category_id)
        return category.model_copy(deep=True) if category else None

    async def create_category(
        self,
        name: str,
        color: str,
        is_default: bool = False,
        user_id: Optional[str] = None,
    ) -> Category:
        now = utcnow()
        category = Category(
            id=new_document_id(),
            name=name,
            color=color,
            is_default=is_default,
            user_id=user_id,
            created_at=now,
            updated_at=now,
        )
        async with self._db.lock:
            self._db.collection("categories")[category.id] = category
        return category.model_copy(deep=True)

    async def update_category(self, category_id: str, updates: dict[str, Any]) -> Category:
        async with self._db.lock:
            current = self._db.collection("categories").get(category_id)
            if current is None:
                raise NotFoundError(f"Category not found: {category_id}")
            updated = Category.model_validate({
                **current.model_dump(),
                **updates,
                "updated_at": utcnow(),
            })
            self._db.collection("categories")[category_id] = updated
        return updated.model_copy(deep=True)

    async def delete_category(self, category_id: str) -> bool:
        async with self._db.lock:
            return self._db.collection("categories").pop(category_id, None) is not None


class InMemoryUserStore(UserStore):

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    async def get_user(self, user_id: str) -> Optional[User]:
        user = self._db.collection("users").get(user_id)
        return user.model_copy(deep=True) if user else None

    async def upsert_user(self, user: User) -> User:
        async with self._db.lock:
            existing = self._db.collection("users").get(user.id)
            if existing is not None:
                user = user.model_copy(update={
                    "created_at": existing.created_at,
                    "phone": user.phone or existing.phone,
                    "updated_at": utcnow(),
                })
            self._db.collection("users")[user.id] = user
        return user.model_copy(deep=True)

    async def update_user(self, user_id: str, updates: dict[str, Any]) -> User:
        async with self._db.lock:
            current = self._db.collection("users").get(user_id)
            if current is None:
                raise NotFoundError(f"User not found: {user_id}")
            updated = User.model_validate({
                **current.model_dump(),
                **updates,
                "updated_at": utcnow(),
            })
            self._db.collection("users")[user_id] = updated
        return updated.model_copy(deep=True)


class InMemoryAuditStore(AuditStore):

    def __init__(self, db: InMemoryDatabase):
        self._db = db

    async def append_event(self, event: AuditEvent) -> bool:
        self._db.collection("audit_log")[str(event.event_id)] = event
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [
            e for e in self._db.collection("audit_log").values()
            if e.correlation_id == correlation_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, user_id: str, limit: int = 100) -> list[AuditEvent]:
        events = [
            e for e in self._db.collection("audit_log").values()
            if e.user_id == user_id
        ]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
