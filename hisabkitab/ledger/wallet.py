"""
Wallet Service

Direct wallet operations that are not tied to an expense: top-ups,
setting the balance, manual deductions and affordability checks.

A user's wallet is created lazily with a zero balance the first time
anything asks for it.
"""

from decimal import Decimal

import structlog

from hisabkitab.ledger.ledger import LedgerOutcome
from hisabkitab.models.finance import Wallet, to_money
from hisabkitab.services.storage.interface import (
    InsufficientFundsError,
    LedgerStore,
    LedgerTransaction,
    NotFoundError,
    ValidationError,
    WalletStore,
)


logger = structlog.get_logger(__name__)


class WalletService:
    """Balance changes go through the ledger store so they serialize with expense edits."""

    def __init__(self, wallet_store: WalletStore, ledger_store: LedgerStore):
        self._wallet_store = wallet_store
        self._ledger_store = ledger_store

    async def get_wallet(self, user_id: str) -> Wallet:
        """The user's wallet. Raises NotFoundError if it was never created."""
        wallet = await self._wallet_store.get_wallet(user_id)
        if wallet is None:
            raise NotFoundError(f"Wallet not found for user: {user_id}")
        return wallet

    async def get_or_create(self, user_id: str) -> tuple[Wallet, bool]:
        """
        Get the user's wallet, creating it at zero if missing.

        Returns:
            (wallet, created)
        """
        wallet = await self._wallet_store.get_wallet(user_id)
        if wallet is not None:
            return wallet, False

        wallet = await self._wallet_store.create_wallet(user_id, Decimal("0"))
        logger.info("wallet_created", user_id=user_id, wallet_id=wallet.id)
        return wallet, True

    async def _adjust(self, user_id: str, delta: Decimal, check_funds: bool) -> LedgerOutcome:
        wallet, _ = await self.get_or_create(user_id)

        async def _apply(transaction: LedgerTransaction) -> LedgerOutcome:
            current = await transaction.get_wallet(wallet.id)
            if current is None:
                raise NotFoundError(f"Wallet not found: {wallet.id}")

            new_balance = current.balance + delta
            if check_funds and new_balance < 0:
                raise InsufficientFundsError(current.balance, -delta)

            transaction.set_wallet_balance(wallet.id, new_balance)
            return LedgerOutcome(
                wallet_id=wallet.id,
                balance_before=current.balance,
                balance_after=to_money(new_balance),
            )

        return await self._ledger_store.run_transaction(_apply)

    async def add_money(self, user_id: str, amount: Decimal) -> LedgerOutcome:
        """Credit the wallet. amount must be positive."""
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        return await self._adjust(user_id, amount, check_funds=False)

    async def deduct_money(self, user_id: str, amount: Decimal) -> LedgerOutcome:
        """
        Debit the wallet without recording an expense.

        Raises:
            InsufficientFundsError: balance < amount
        """
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        return await self._adjust(user_id, -amount, check_funds=True)

    async def set_balance(self, user_id: str, balance: Decimal) -> LedgerOutcome:
        """Overwrite the balance. Negative balances are rejected."""
        balance = to_money(balance)
        if balance < 0:
            raise ValidationError("Balance cannot be negative")
        wallet, _ = await self.get_or_create(user_id)

        async def _set(transaction: LedgerTransaction) -> LedgerOutcome:
            current = await transaction.get_wallet(wallet.id)
            if current is None:
                raise NotFoundError(f"Wallet not found: {wallet.id}")
            transaction.set_wallet_balance(wallet.id, balance)
            return LedgerOutcome(
                wallet_id=wallet.id,
                balance_before=current.balance,
                balance_after=balance,
            )

        return await self._ledger_store.run_transaction(_set)

    async def can_afford(self, user_id: str, amount: Decimal) -> bool:
        """Advisory check only; the ledger re-checks inside its transaction."""
        wallet = await self._wallet_store.get_wallet(user_id)
        if wallet is None:
            return False
        return wallet.can_afford(to_money(amount))

