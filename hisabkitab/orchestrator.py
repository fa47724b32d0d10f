"""
Main Orchestrator for HisabKitab

This module ties together all the components and defines the
user-facing flows for:
1. Expenses (validate → route to wallet-linked or plain ledger op → audit)
2. Wallet (top up, set, deduct)
3. Categories (create, rename, guarded delete)
4. Dashboard (load once → aggregate in memory)

DESIGN DECISION: The orchestrator is the component boundary.
- Lower layers raise typed exceptions
- Flows catch them and return OperationResult; nothing is thrown past here
- Every failure is logged and audited
- Mutations return the authoritative document; callers never re-fetch

Stores and services are injected. There is no module-level singleton.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, NamedTuple, Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from hisabkitab.analytics import by_category, by_month, recent, summarize
from hisabkitab.audit import AuditLogger, create_correlation_id
from hisabkitab.config import get_settings
from hisabkitab.ledger import CategoryService, WalletLedger, WalletService
from hisabkitab.models.finance import (
    DashboardData,
    ErrorCode,
    Expense,
    ExpenseCreate,
    ExpenseUpdate,
    OperationResult,
    Wallet,
    as_utc,
    utcnow,
)
from hisabkitab.services.auth import AuthSession, FirebaseIdentityProvider
from hisabkitab.services.storage import (
    BackendUnavailableError,
    CategoryInUseError,
    ExpenseStore,
    FirestoreAuditStore,
    FirestoreCategoryStore,
    FirestoreClient,
    FirestoreExpenseStore,
    FirestoreLedgerStore,
    FirestoreUserStore,
    FirestoreWalletStore,
    HisabKitabError,
    InMemoryAuditStore,
    InMemoryCategoryStore,
    InMemoryDatabase,
    InMemoryExpenseStore,
    InMemoryLedgerStore,
    InMemoryUserStore,
    InMemoryWalletStore,
    InsufficientFundsError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from hisabkitab.validation import ExpenseValidator, normalize_input


logger = structlog.get_logger(__name__)

FlowError = (HisabKitabError, PydanticValidationError)


class _Flow:
    """Shared failure handling: log, audit, convert to OperationResult."""

    def __init__(self, audit_logger: Optional[AuditLogger] = None):
        self._audit_logger = audit_logger or AuditLogger()

    async def _fail(
        self,
        error: Exception,
        operation: str,
        user_id: Optional[str] = None,
        entity_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        if isinstance(error, PydanticValidationError):
            issues = [
                {"field": ".".join(str(p) for p in d.get("loc", ())), "message": d.get("msg")}
                for d in error.errors()
            ]
            await self._audit_logger.log_validation_failed(user_id, operation, issues)
            message = "; ".join(f"{i['field']}: {i['message']}" for i in issues)
            return OperationResult.fail(ErrorCode.VALIDATION_ERROR, message or "Invalid input")

        if isinstance(error, ValidationError):
            await self._audit_logger.log_validation_failed(user_id, operation, error.issues)
        elif isinstance(error, InsufficientFundsError):
            await self._audit_logger.log_insufficient_funds(
                user_id=user_id,
                wallet_id=entity_id,
                requested=str(error.requested),
                correlation_id=correlation_id,
            )
        elif isinstance(error, CategoryInUseError):
            await self._audit_logger.log_category_delete_blocked(
                user_id=user_id,
                category_id=entity_id,
                name=error.name,
                usage_count=error.usage_count,
            )
        elif isinstance(error, StorageError) and not isinstance(
            error, (NotFoundError, PermissionDeniedError)
        ):
            await self._audit_logger.log_backend_error(
                error_code=error.code.value,
                error_message=error.message,
                user_id=user_id,
                correlation_id=correlation_id,
            )
        else:
            await self._audit_logger.log_error(
                error_type=type(error).__name__,
                error_message=error.message,
                details={"operation": operation, "entity_id": entity_id},
                user_id=user_id,
                correlation_id=correlation_id,
            )

        logger.warning(
            "operation_failed",
            operation=operation,
            error_code=error.code.value,
            error=error.message,
            user_id=user_id,
        )
        return OperationResult.fail(error.code, error.message)

    async def _wallet_for(self, wallet_service: WalletService, user_id: str) -> Wallet:
        wallet, created = await wallet_service.get_or_create(user_id)
        if created:
            await self._audit_logger.log_wallet_created(user_id, wallet.id)
        return wallet


class ExpenseFlow(_Flow):
    """
    Create, edit and delete expenses.

    The flow resolves the previous and new deduction state before
    calling the ledger, so the ledger never has to guess whether a
    patch without an amount keeps the old one.
    """

    def __init__(
        self,
        ledger: WalletLedger,
        expense_store: ExpenseStore,
        wallet_service: WalletService,
        category_service: Optional[CategoryService] = None,
        validator: Optional[ExpenseValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(audit_logger)
        self._ledger = ledger
        self._expense_store = expense_store
        self._wallet_service = wallet_service
        self._category_service = category_service
        self._validator = validator or ExpenseValidator()

    async def _known_categories(self, user_id: str) -> Optional[set[str]]:
        if self._category_service is None:
            return None
        groups = await self._category_service.grouped(user_id)
        return groups.names

    async def _get_owned(self, user_id: str, expense_id: str) -> Expense:
        expense = await self._expense_store.get_expense(expense_id)
        if expense is None:
            raise NotFoundError(f"Expense not found: {expense_id}")
        if expense.user_id != user_id:
            raise PermissionDeniedError("Expense belongs to a different user")
        return expense

    async def create_expense(
        self,
        session: AuthSession,
        data: Union[ExpenseCreate, dict[str, Any]],
    ) -> OperationResult:
        """
        Validate and save a new expense, debiting the wallet if asked.

        Returns:
            OperationResult with the stored Expense as data
        """
        correlation_id = create_correlation_id()
        user_id = None
        wallet_id = None
        try:
            user_id = session.require_user().id

            validation = self._validator.ensure_valid(
                data, known_categories=await self._known_categories(user_id)
            )
            payload = data if isinstance(data, ExpenseCreate) else ExpenseCreate.model_validate(
                normalize_input(data)
            )

            if payload.deduct_from_wallet:
                wallet = await self._wallet_for(self._wallet_service, user_id)
                wallet_id = wallet.id
                outcome = await self._ledger.create_with_deduction(
                    user_id, payload, wallet.id, payload.amount
                )
            else:
                outcome = await self._ledger.create(user_id, payload)

            expense = outcome.expense
            await self._audit_logger.log_expense_created(
                user_id=user_id,
                expense_id=expense.id,
                amount=str(expense.amount),
                category=expense.category,
                deducted=expense.deduct_from_wallet,
                correlation_id=correlation_id,
            )
            if outcome.wallet_changed:
                await self._audit_logger.log_wallet_adjusted(
                    user_id=user_id,
                    wallet_id=outcome.wallet_id,
                    old_balance=str(outcome.balance_before),
                    new_balance=str(outcome.balance_after),
                    reason=f"expense {expense.id} created",
                    correlation_id=correlation_id,
                )
            return OperationResult.ok(expense, warnings=validation.warnings)

        except FlowError as e:
            return await self._fail(e, "create_expense", user_id, wallet_id, correlation_id)

    async def update_expense(
        self,
        session: AuthSession,
        expense_id: str,
        data: Union[ExpenseUpdate, dict[str, Any]],
    ) -> OperationResult:
        """
        Apply a partial update, re-balancing the wallet if the
        deduction flag or the amount changed.
        """
        correlation_id = create_correlation_id()
        user_id = None
        wallet_id = None
        try:
            user_id = session.require_user().id
            current = await self._get_owned(user_id, expense_id)

            if isinstance(data, dict):
                data = ExpenseUpdate.model_validate(normalize_input(data))
            updates = data.field_updates()
            if not updates:
                raise ValidationError("Nothing to update")

            validation = self._validator.ensure_valid(
                updates,
                known_categories=await self._known_categories(user_id),
                partial=True,
            )

            previous_deduction = current.deduct_from_wallet
            previous_amount = current.amount
            new_deduction = updates.get("deduct_from_wallet", previous_deduction)
            new_amount = updates.get("amount", previous_amount)

            if previous_deduction or new_deduction:
                wallet = await self._wallet_for(self._wallet_service, user_id)
                wallet_id = wallet.id
                outcome = await self._ledger.update_with_wallet_adjustment(
                    expense_id=expense_id,
                    updates=updates,
                    wallet_id=wallet.id,
                    previous_deduction=previous_deduction,
                    previous_amount=previous_amount,
                    new_deduction=new_deduction,
                    new_amount=new_amount,
                )
            else:
                outcome = await self._ledger.update(expense_id, updates)

            await self._audit_logger.log_expense_updated(
                user_id=user_id,
                expense_id=expense_id,
                fields=sorted(updates),
                correlation_id=correlation_id,
            )
            if outcome.wallet_changed:
                await self._audit_logger.log_wallet_adjusted(
                    user_id=user_id,
                    wallet_id=outcome.wallet_id,
                    old_balance=str(outcome.balance_before),
                    new_balance=str(outcome.balance_after),
                    reason=f"expense {expense_id} updated",
                    correlation_id=correlation_id,
                )
            return OperationResult.ok(outcome.expense, warnings=validation.warnings)

        except FlowError as e:
            return await self._fail(e, "update_expense", user_id, wallet_id or expense_id, correlation_id)

    async def delete_expense(self, session: AuthSession, expense_id: str) -> OperationResult:
        """Delete an expense, refunding the wallet if it was deducted."""
        correlation_id = create_correlation_id()
        user_id = None
        try:
            user_id = session.require_user().id
            current = await self._get_owned(user_id, expense_id)

            if current.deduct_from_wallet:
                wallet = await self._wallet_service.get_wallet(user_id)
                outcome = await self._ledger.delete_with_refund(
                    expense_id, wallet.id, current.amount
                )
                refunded = str(current.amount)
            else:
                outcome = await self._ledger.delete(expense_id)
                refunded = None

            await self._audit_logger.log_expense_deleted(
                user_id=user_id,
                expense_id=expense_id,
                refunded=refunded,
                correlation_id=correlation_id,
            )
            if outcome.wallet_changed:
                await self._audit_logger.log_wallet_adjusted(
                    user_id=user_id,
                    wallet_id=outcome.wallet_id,
                    old_balance=str(outcome.balance_before),
                    new_balance=str(outcome.balance_after),
                    reason=f"expense {expense_id} deleted",
                    correlation_id=correlation_id,
                )
            return OperationResult.ok({
                "expense_id": expense_id,
                "wallet_balance": outcome.balance_after,
            })

        except FlowError as e:
            return await self._fail(e, "delete_expense", user_id, expense_id, correlation_id)

    async def get_expense(self, session: AuthSession, expense_id: str) -> OperationResult:
        user_id = None
        try:
            user_id = session.require_user().id
            return OperationResult.ok(await self._get_owned(user_id, expense_id))
        except FlowError as e:
            return await self._fail(e, "get_expense", user_id, expense_id)

    async def list_expenses(
        self,
        session: AuthSession,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> OperationResult:
        """The user's expenses, newest first."""
        user_id = None
        try:
            user_id = session.require_user().id
            expenses = await self._expense_store.list_expenses(
                user_id, date_from=date_from, date_to=date_to, limit=limit
            )
            return OperationResult.ok(expenses)
        except FlowError as e:
            return await self._fail(e, "list_expenses", user_id)


class WalletFlow(_Flow):
    """Wallet operations not tied to an expense."""

    def __init__(
        self,
        wallet_service: WalletService,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(audit_logger)
        self._wallet_service = wallet_service

    async def get_wallet(self, session: AuthSession) -> OperationResult:
        """The user's wallet, created at zero on first access."""
        user_id = None
        try:
            user_id = session.require_user().id
            return OperationResult.ok(await self._wallet_for(self._wallet_service, user_id))
        except FlowError as e:
            return await self._fail(e, "get_wallet", user_id)

    async def add_money(self, session: AuthSession, amount: Decimal) -> OperationResult:
        correlation_id = create_correlation_id()
        user_id = None
        try:
            user_id = session.require_user().id
            await self._wallet_for(self._wallet_service, user_id)
            outcome = await self._wallet_service.add_money(user_id, amount)
            await self._audit_logger.log_wallet_adjusted(
                user_id=user_id,
                wallet_id=outcome.wallet_id,
                old_balance=str(outcome.balance_before),
                new_balance=str(outcome.balance_after),
                reason="money added",
                correlation_id=correlation_id,
            )
            return OperationResult.ok(outcome.balance_after)
        except FlowError as e:
            return await self._fail(e, "add_money", user_id, correlation_id=correlation_id)

    async def deduct_money(self, session: AuthSession, amount: Decimal) -> OperationResult:
        correlation_id = create_correlation_id()
        user_id = None
        wallet_id = None
        try:
            user_id = session.require_user().id
            wallet_id = (await self._wallet_for(self._wallet_service, user_id)).id
            outcome = await self._wallet_service.deduct_money(user_id, amount)
            await self._audit_logger.log_wallet_adjusted(
                user_id=user_id,
                wallet_id=outcome.wallet_id,
                old_balance=str(outcome.balance_before),
                new_balance=str(outcome.balance_after),
                reason="money deducted",
                correlation_id=correlation_id,
            )
            return OperationResult.ok(outcome.balance_after)
        except FlowError as e:
            return await self._fail(e, "deduct_money", user_id, wallet_id, correlation_id)

    async def set_balance(self, session: AuthSession, balance: Decimal) -> OperationResult:
        user_id = None
        try:
            user_id = session.require_user().id
            await self._wallet_for(self._wallet_service, user_id)
            outcome = await self._wallet_service.set_balance(user_id, balance)
            await self._audit_logger.log_wallet_balance_set(
                user_id, outcome.wallet_id, str(outcome.balance_after)
            )
            return OperationResult.ok(outcome.balance_after)
        except FlowError as e:
            return await self._fail(e, "set_balance", user_id)

    async def can_afford(self, session: AuthSession, amount: Decimal) -> OperationResult:
        user_id = None
        try:
            user_id = session.require_user().id
            return OperationResult.ok(await self._wallet_service.can_afford(user_id, amount))
        except FlowError as e:
            return await self._fail(e, "can_afford", user_id)


class CategoryFlow(_Flow):
    """Category management with the in-use guard."""

    def __init__(
        self,
        category_service: CategoryService,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(audit_logger)
        self._category_service = category_service

    async def list_categories(self, session: AuthSession) -> OperationResult:
        """Default and custom categories, grouped."""
        user_id = None
        try:
            user_id = session.require_user().id
            return OperationResult.ok(await self._category_service.grouped(user_id))
        except FlowError as e:
            return await self._fail(e, "list_categories", user_id)

    async def ensure_defaults(self) -> OperationResult:
        try:
            created = await self._category_service.ensure_defaults()
            return OperationResult.ok(created)
        except FlowError as e:
            return await self._fail(e, "ensure_defaults")

    async def create_category(
        self,
        session: AuthSession,
        name: str,
        color: Optional[str] = None,
    ) -> OperationResult:
        user_id = None
        try:
            user_id = session.require_user().id
            category = await self._category_service.create(user_id, name, color)
            await self._audit_logger.log_category_created(user_id, category.id, category.name)
            return OperationResult.ok(category)
        except FlowError as e:
            return await self._fail(e, "create_category", user_id)

    async def update_category(
        self,
        session: AuthSession,
        category_id: str,
        name: Optional[str] = None,
        color: Optional[str] = None,
    ) -> OperationResult:
        user_id = None
        try:
            user_id = session.require_user().id
            category = await self._category_service.update(user_id, category_id, name, color)
            fields = [f for f, v in (("name", name), ("color", color)) if v is not None]
            await self._audit_logger.log_category_updated(user_id, category_id, fields)
            return OperationResult.ok(category)
        except FlowError as e:
            return await self._fail(e, "update_category", user_id, category_id)

    async def delete_category(self, session: AuthSession, category_id: str) -> OperationResult:
        """
        Delete a custom category.

        Fails with CATEGORY_IN_USE, deleting nothing, if any of the
        user's expenses still carries its name.
        """
        user_id = None
        try:
            user_id = session.require_user().id
            category = await self._category_service.delete(user_id, category_id)
            await self._audit_logger.log_category_deleted(user_id, category_id, category.name)
            return OperationResult.ok(category)
        except FlowError as e:
            return await self._fail(e, "delete_category", user_id, category_id)


class DashboardFlow(_Flow):
    """
    Loads the user's expenses once and aggregates them in memory.

    Analytics never query storage per chart.
    """

    def __init__(
        self,
        expense_store: ExpenseStore,
        wallet_service: Optional[WalletService] = None,
        recent_limit: Optional[int] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        super().__init__(audit_logger)
        self._expense_store = expense_store
        self._wallet_service = wallet_service
        self._recent_limit = recent_limit or get_settings().app.recent_expenses_limit

    async def get_dashboard(
        self,
        session: AuthSession,
        year: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> OperationResult:
        """
        Summary, all-time category split, monthly trend and recent list.

        Args:
            year: Year for the monthly trend (defaults to the current one)
            now: Reference instant for "this month" (defaults to now)
        """
        user_id = None
        try:
            user_id = session.require_user().id
            now = as_utc(now) if now else utcnow()
            expenses = await self._expense_store.list_expenses(user_id)

            balance = None
            if self._wallet_service is not None:
                wallet = await self._wallet_for(self._wallet_service, user_id)
                balance = wallet.balance

            return OperationResult.ok(DashboardData(
                summary=summarize(expenses, now),
                categories=by_category(expenses),
                monthly=by_month(expenses, year or now.year),
                recent=recent(expenses, self._recent_limit),
                wallet_balance=balance,
            ))
        except FlowError as e:
            return await self._fail(e, "get_dashboard", user_id)

    async def category_breakdown(
        self,
        session: AuthSession,
        range_start: Optional[datetime] = None,
        range_end: Optional[datetime] = None,
    ) -> OperationResult:
        user_id = None
        try:
            user_id = session.require_user().id
            expenses = await self._expense_store.list_expenses(user_id)
            return OperationResult.ok(by_category(expenses, range_start, range_end))
        except FlowError as e:
            return await self._fail(e, "category_breakdown", user_id)

    async def monthly_trend(self, session: AuthSession, year: int) -> OperationResult:
        user_id = None
        try:
            user_id = session.require_user().id
            expenses = await self._expense_store.list_expenses(user_id)
            return OperationResult.ok(by_month(expenses, year))
        except FlowError as e:
            return await self._fail(e, "monthly_trend", user_id)


class AppComponents(NamedTuple):
    """Everything a presentation layer needs."""

    session: AuthSession
    expense_flow: ExpenseFlow
    wallet_flow: WalletFlow
    category_flow: CategoryFlow
    dashboard_flow: DashboardFlow


def create_app_components(backend: Optional[str] = None) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        backend: "firestore" or "memory". Defaults to STORAGE_BACKEND.

    Raises:
        BackendUnavailableError: Firestore selected but not reachable
    """
    settings = get_settings()
    backend = backend or settings.app.storage_backend

    if backend == "memory":
        db = InMemoryDatabase()
        expense_store = InMemoryExpenseStore(db)
        wallet_store = InMemoryWalletStore(db)
        category_store = InMemoryCategoryStore(db)
        user_store = InMemoryUserStore(db)
        audit_store = InMemoryAuditStore(db)
        ledger_store = InMemoryLedgerStore(db)
    elif backend == "firestore":
        client = FirestoreClient()
        client.connect()
        expense_store = FirestoreExpenseStore(client)
        wallet_store = FirestoreWalletStore(client)
        category_store = FirestoreCategoryStore(client)
        user_store = FirestoreUserStore(client)
        audit_store = FirestoreAuditStore(client)
        ledger_store = FirestoreLedgerStore(client)
    else:
        raise BackendUnavailableError(f"Unknown storage backend: {backend}")

    audit_logger = AuditLogger(audit_store)

    # Local in-memory runs may have no Firebase settings at all
    try:
        provider = FirebaseIdentityProvider()
    except PydanticValidationError as e:
        if backend == "firestore":
            raise
        logger.warning("identity_provider_not_configured", backend=backend, error=str(e))
        provider = None

    session = AuthSession(provider=provider, user_store=user_store, audit_logger=audit_logger)

    wallet_service = WalletService(wallet_store, ledger_store)
    category_service = CategoryService(category_store, expense_store)
    ledger = WalletLedger(ledger_store, expense_store)

    return AppComponents(
        session=session,
        expense_flow=ExpenseFlow(
            ledger=ledger,
            expense_store=expense_store,
            wallet_service=wallet_service,
            category_service=category_service,
            audit_logger=audit_logger,
        ),
        wallet_flow=WalletFlow(wallet_service, audit_logger=audit_logger),
        category_flow=CategoryFlow(category_service, audit_logger=audit_logger),
        dashboard_flow=DashboardFlow(
            expense_store,
            wallet_service=wallet_service,
            audit_logger=audit_logger,
        ),
    )
