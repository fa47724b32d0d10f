"""
Wallet-Linked Expense Ledger

Keeps an expense document and its wallet balance consistent across
create, update and delete. If an expense has deduct_from_wallet set,
the wallet reflects exactly one deduction of its current amount.

Every wallet-linked operation runs inside LedgerStore.run_transaction:
all reads first, then buffered writes that commit together or not at
all. Any precondition failure raises out of the transaction function,
so nothing is written.

No retry layer here; the backend retries conflicting transactions.
"""

from decimal import Decimal
from typing import Any, Optional

import structlog
from pydantic import BaseModel

from hisabkitab.models.finance import (
    Expense,
    ExpenseCreate,
    Wallet,
    to_money,
    utcnow,
)
from hisabkitab.services.storage.interface import (
    ExpenseStore,
    InsufficientFundsError,
    LedgerStore,
    LedgerTransaction,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)


logger = structlog.get_logger(__name__)


class LedgerOutcome(BaseModel):
    """
    Authoritative result of a ledger operation.

    expense is None after a delete. balance_before/balance_after are
    None when the wallet was not touched.
    """

    expense: Optional[Expense] = None
    wallet_id: Optional[str] = None
    balance_before: Optional[Decimal] = None
    balance_after: Optional[Decimal] = None

    @property
    def wallet_changed(self) -> bool:
        return (
            self.balance_before is not None
            and self.balance_after is not None
            and self.balance_before != self.balance_after
        )


def compute_wallet_delta(
    previous_deduction: bool,
    previous_amount: Decimal,
    new_deduction: bool,
    new_amount: Decimal,
) -> Decimal:
    """
    Net change to the wallet when an expense is edited.

    Undo the old deduction (if any), then apply the new one (if any).
    """
    delta = Decimal("0")
    if previous_deduction:
        delta += previous_amount
    if new_deduction:
        delta -= new_amount
    return to_money(delta)


async def _read_wallet(transaction: LedgerTransaction, wallet_id: str) -> Wallet:
    wallet = await transaction.get_wallet(wallet_id)
    if wallet is None:
        raise NotFoundError(f"Wallet not found: {wallet_id}")
    return wallet


async def _read_expense(transaction: LedgerTransaction, expense_id: str) -> Expense:
    expense = await transaction.get_expense(expense_id)
    if expense is None:
        raise NotFoundError(f"Expense not found: {expense_id}")
    return expense


def _check_owner(wallet: Wallet, user_id: str) -> None:
    if wallet.user_id != user_id:
        raise PermissionDeniedError("Wallet belongs to a different user")


class WalletLedger:
    """
    Expense CRUD with optional wallet coupling.

    Plain variants go straight to the ExpenseStore; wallet-linked
    variants go through a transaction on the LedgerStore.
    """

    def __init__(self, ledger_store: LedgerStore, expense_store: ExpenseStore):
        self._ledger_store = ledger_store
        self._expense_store = expense_store

    # -------------------------------------------------------------------------
    # Plain expense operations (no wallet involved)
    # -------------------------------------------------------------------------

    async def create(self, user_id: str, payload: ExpenseCreate) -> LedgerOutcome:
        expense = await self._expense_store.create_expense(user_id, payload)
        return LedgerOutcome(expense=expense)

    async def update(self, expense_id: str, updates: dict[str, Any]) -> LedgerOutcome:
        expense = await self._expense_store.update_expense(expense_id, updates)
        return LedgerOutcome(expense=expense)

    async def delete(self, expense_id: str) -> LedgerOutcome:
        if not await self._expense_store.delete_expense(expense_id):
            raise NotFoundError(f"Expense not found: {expense_id}")
        return LedgerOutcome()

    # -------------------------------------------------------------------------
    # Wallet-linked operations
    # -------------------------------------------------------------------------

    async def create_with_deduction(
        self,
        user_id: str,
        payload: ExpenseCreate,
        wallet_id: str,
        deduction_amount: Decimal,
    ) -> LedgerOutcome:
        """
        Create an expense and debit the wallet in one transaction.

        Raises:
            NotFoundError: Wallet missing
            InsufficientFundsError: balance < deduction_amount
        """
        deduction_amount = to_money(deduction_amount)
        if deduction_amount <= 0:
            raise ValidationError("Deduction amount must be greater than zero")

        async def _create(transaction: LedgerTransaction) -> LedgerOutcome:
            wallet = await _read_wallet(transaction, wallet_id)
            _check_owner(wallet, user_id)

            if wallet.balance < deduction_amount:
                raise InsufficientFundsError(wallet.balance, deduction_amount)

            expense = transaction.create_expense(user_id, payload)
            new_balance = wallet.balance - deduction_amount
            transaction.set_wallet_balance(wallet_id, new_balance)

            return LedgerOutcome(
                expense=expense,
                wallet_id=wallet_id,
                balance_before=wallet.balance,
                balance_after=to_money(new_balance),
            )

        outcome = await self._ledger_store.run_transaction(_create)
        logger.info(
            "expense_created_with_deduction",
            expense_id=outcome.expense.id,
            wallet_id=wallet_id,
            amount=str(deduction_amount),
        )
        return outcome

    async def update_with_wallet_adjustment(
        self,
        expense_id: str,
        updates: dict[str, Any],
        wallet_id: str,
        previous_deduction: bool,
        previous_amount: Decimal,
        new_deduction: bool,
        new_amount: Decimal,
    ) -> LedgerOutcome:
        """
        Update an expense and re-balance the wallet in one transaction.

        Handles every transition of the deduction flag:
            deducted -> deducted:     net adjustment by the amount change
            deducted -> not deducted: full refund
            not deducted -> deducted: full charge, checked against balance
            not -> not:               wallet untouched

        new_amount must already be resolved by the caller when the
        patch does not carry an amount; nothing is inferred here.
        If the stored expense no longer matches previous_deduction and
        previous_amount, an overlapping edit committed first and the
        stored values are used instead, so no deduction is applied twice.

        Raises:
            NotFoundError: Wallet or expense missing
            InsufficientFundsError: new deduction would make the balance negative
        """
        previous_amount = to_money(previous_amount)
        new_amount = to_money(new_amount)
        if previous_amount < 0 or new_amount < 0:
            raise ValidationError("Amounts cannot be negative")

        async def _update(transaction: LedgerTransaction) -> LedgerOutcome:
            wallet = await _read_wallet(transaction, wallet_id)
            current = await _read_expense(transaction, expense_id)
            _check_owner(wallet, current.user_id)

            prev_deduction, prev_amount = previous_deduction, previous_amount
            next_deduction, next_amount = new_deduction, new_amount
            if (current.deduct_from_wallet, current.amount) != (prev_deduction, prev_amount):
                # Another edit committed since the caller read the expense
                logger.warning(
                    "ledger_stale_previous_state",
                    expense_id=expense_id,
                    expected_deduction=prev_deduction,
                    expected_amount=str(prev_amount),
                    stored_deduction=current.deduct_from_wallet,
                    stored_amount=str(current.amount),
                )
                prev_deduction, prev_amount = current.deduct_from_wallet, current.amount
                if "deduct_from_wallet" not in updates:
                    next_deduction = current.deduct_from_wallet
                if "amount" not in updates:
                    next_amount = current.amount

            delta = compute_wallet_delta(
                prev_deduction, prev_amount, next_deduction, next_amount
            )
            new_balance = wallet.balance + delta
            if next_deduction and new_balance < 0:
                raise InsufficientFundsError(wallet.balance, next_amount)

            transaction.update_expense(expense_id, updates)
            if delta != 0:
                transaction.set_wallet_balance(wallet_id, new_balance)

            updated = Expense.model_validate({
                **current.model_dump(),
                **updates,
                "updated_at": utcnow(),
            })
            return LedgerOutcome(
                expense=updated,
                wallet_id=wallet_id,
                balance_before=wallet.balance,
                balance_after=to_money(new_balance),
            )

        outcome = await self._ledger_store.run_transaction(_update)
        logger.info(
            "expense_updated_with_wallet_adjustment",
            expense_id=expense_id,
            wallet_id=wallet_id,
            delta=str(outcome.balance_after - outcome.balance_before),
        )
        return outcome


    async def delete_with_refund(
        self,
        expense_id: str,
        wallet_id: str,
        refund_amount: Decimal,
    ) -> LedgerOutcome:
        """
        Delete an expense and credit its amount back to the wallet.

        The refund is the stored amount read inside the transaction;
        refund_amount is the caller's expectation and only logged if stale.

        Raises:
            NotFoundError: Expense or wallet missing
        """
        refund_amount = to_money(refund_amount)
        if refund_amount < 0:
            raise ValidationError("Refund amount cannot be negative")

        async def _delete(transaction: LedgerTransaction) -> LedgerOutcome:
            expense = await _read_expense(transaction, expense_id)
            wallet = await _read_wallet(transaction, wallet_id)
            _check_owner(wallet, expense.user_id)

            # The stored expense decides the refund, not the caller's copy
            refund = expense.amount if expense.deduct_from_wallet else Decimal("0.00")
            if refund != refund_amount:
                logger.warning(
                    "ledger_stale_refund_amount",
                    expense_id=expense_id,
                    expected=str(refund_amount),
                    stored=str(refund),
                )

            transaction.delete_expense(expense_id)
            new_balance = wallet.balance + refund
            if refund:
                transaction.set_wallet_balance(wallet_id, new_balance)

            return LedgerOutcome(
                wallet_id=wallet_id,
                balance_before=wallet.balance,
                balance_after=to_money(new_balance),
            )

        outcome = await self._ledger_store.run_transaction(_delete)
        logger.info(
            "expense_deleted_with_refund",
            expense_id=expense_id,
            wallet_id=wallet_id,
            refund=str(outcome.balance_after - outcome.balance_before),
        )
        return outcome
