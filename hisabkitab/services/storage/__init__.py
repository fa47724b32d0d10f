"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Firestore is the production backend; the in-memory backend serves tests
and local runs. Both honor the same transaction contract.
"""

from hisabkitab.services.storage.interface import (
    AuditStore,
    BackendUnavailableError,
    CategoryInUseError,
    CategoryStore,
    ExpenseStore,
    HisabKitabError,
    InsufficientFundsError,
    LedgerStore,
    LedgerTransaction,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    UnauthenticatedError,
    UserStore,
    ValidationError,
    WalletStore,
)
from hisabkitab.services.storage.memory import (
    InMemoryAuditStore,
    InMemoryCategoryStore,
    InMemoryDatabase,
    InMemoryExpenseStore,
    InMemoryLedgerStore,
    InMemoryUserStore,
    InMemoryWalletStore,
)
from hisabkitab.services.storage.firestore import (
    FirestoreAuditStore,
    FirestoreCategoryStore,
    FirestoreClient,
    FirestoreExpenseStore,
    FirestoreLedgerStore,
    FirestoreUserStore,
    FirestoreWalletStore,
)

__all__ = [
    # Interfaces
    "AuditStore",
    "CategoryStore",
    "ExpenseStore",
    "LedgerStore",
    "LedgerTransaction",
    "UserStore",
    "WalletStore",
    # Exceptions
    "BackendUnavailableError",
    "CategoryInUseError",
    "HisabKitabError",
    "InsufficientFundsError",
    "NotFoundError",
    "PermissionDeniedError",
    "StorageError",
    "UnauthenticatedError",
    "ValidationError",
    # In-memory implementation
    "InMemoryAuditStore",
    "InMemoryCategoryStore",
    "InMemoryDatabase",
    "InMemoryExpenseStore",
    "InMemoryLedgerStore",
    "InMemoryUserStore",
    "InMemoryWalletStore",
    # Firestore implementation
    "FirestoreAuditStore",
    "FirestoreCategoryStore",
    "FirestoreClient",
    "FirestoreExpenseStore",
    "FirestoreLedgerStore",
    "FirestoreUserStore",
    "FirestoreWalletStore",
]
