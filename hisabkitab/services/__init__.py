"""
Services package.

Only the storage layer is re-exported here. Import the auth services
from hisabkitab.services.auth; they depend on hisabkitab.audit, which
itself depends on the storage layer.
"""

from hisabkitab.services.storage import (
    AuditStore,
    BackendUnavailableError,
    CategoryInUseError,
    CategoryStore,
    ExpenseStore,
    HisabKitabError,
    InsufficientFundsError,
    LedgerStore,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    UnauthenticatedError,
    UserStore,
    ValidationError,
    WalletStore,
)

__all__ = [
    # Storage interfaces
    "AuditStore",
    "CategoryStore",
    "ExpenseStore",
    "LedgerStore",
    "UserStore",
    "WalletStore",
    # Errors
    "BackendUnavailableError",
    "CategoryInUseError",
    "HisabKitabError",
    "InsufficientFundsError",
    "NotFoundError",
    "PermissionDeniedError",
    "StorageError",
    "UnauthenticatedError",
    "ValidationError",
]
