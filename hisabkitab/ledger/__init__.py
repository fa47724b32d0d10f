"""Expense ledger, wallet and category services."""

from hisabkitab.ledger.ledger import LedgerOutcome, WalletLedger, compute_wallet_delta
from hisabkitab.ledger.wallet import WalletService
from hisabkitab.ledger.categories import CategoryGroups, CategoryService

__all__ = [
    "LedgerOutcome",
    "WalletLedger",
    "compute_wallet_delta",
    "WalletService",
    "CategoryGroups",
    "CategoryService",
]
