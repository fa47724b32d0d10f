"""
Shared test helpers.

Async code is driven with run_async rather than an async pytest plugin.
Each test should run its whole scenario inside a single run_async call.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from hisabkitab.audit import AuditLogger
from hisabkitab.ledger import CategoryService, WalletLedger, WalletService
from hisabkitab.models.finance import ExpenseCreate, User
from hisabkitab.services.auth import AuthSession
from hisabkitab.services.storage import (
    InMemoryAuditStore,
    InMemoryCategoryStore,
    InMemoryDatabase,
    InMemoryExpenseStore,
    InMemoryLedgerStore,
    InMemoryUserStore,
    InMemoryWalletStore,
)


def run_async(coro):
    """Run a coroutine to completion on a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def when(year: int = 2024, month: int = 6, day: int = 15, hour: int = 12) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


def make_payload(
    amount: str = "100.00",
    category: str = "Food & Dining",
    deduct: bool = False,
    date: Optional[datetime] = None,
    **kwargs,
) -> ExpenseCreate:
    return ExpenseCreate(
        amount=Decimal(amount),
        date=date or when(),
        category=category,
        deduct_from_wallet=deduct,
        **kwargs,
    )


class MemoryBackend:
    """All in-memory stores and services over one database."""

    def __init__(self):
        self.db = InMemoryDatabase()
        self.expenses = InMemoryExpenseStore(self.db)
        self.wallets = InMemoryWalletStore(self.db)
        self.categories = InMemoryCategoryStore(self.db)
        self.users = InMemoryUserStore(self.db)
        self.audit = InMemoryAuditStore(self.db)
        self.ledger_store = InMemoryLedgerStore(self.db)

        self.audit_logger = AuditLogger(self.audit)
        self.ledger = WalletLedger(self.ledger_store, self.expenses)
        self.wallet_service = WalletService(self.wallets, self.ledger_store)
        self.category_service = CategoryService(self.categories, self.expenses)

    def session_for(self, user_id: str = "user-1", name: str = "Asha") -> AuthSession:
        user = User(id=user_id, name=name, email=f"{user_id}@example.com")
        return AuthSession.for_user(user, user_store=self.users, audit_logger=self.audit_logger)

    async def wallet_with(self, user_id: str, balance: str):
        wallet = await self.wallets.create_wallet(user_id, Decimal(balance))
        return wallet

    async def balance_of(self, user_id: str) -> Decimal:
        wallet = await self.wallets.get_wallet(user_id)
        return wallet.balance

    def audit_types(self) -> list[str]:
        return [e.event_type.value for e in self.db.collection("audit_log").values()]
