"""
Tests for the orchestrator flows.

Flows never raise past their boundary: every failure comes back as an
OperationResult with an error code, and is audited.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from hisabkitab.models.finance import ErrorCode, ExpenseUpdate, utcnow
from hisabkitab.orchestrator import (
    AppComponents,
    CategoryFlow,
    DashboardFlow,
    ExpenseFlow,
    WalletFlow,
    create_app_components,
)
from hisabkitab.services.auth import AuthSession
from hisabkitab.services.storage import InMemoryExpenseStore

from helpers import MemoryBackend, run_async


def expense_input(amount="100.00", category="Groceries", deduct=False, **extra):
    data = {
        "amount": amount,
        "date": utcnow() - timedelta(hours=2),
        "category": category,
        "deduct_from_wallet": deduct,
    }
    data.update(extra)
    return data


class YieldingExpenseStore(InMemoryExpenseStore):
    """Expense store that gives up the loop before each read, like a network call."""

    async def get_expense(self, expense_id):
        await asyncio.sleep(0)
        return await super().get_expense(expense_id)


class Flows:
    def __init__(self):
        self.backend = MemoryBackend()
        b = self.backend
        self.expenses = ExpenseFlow(
            ledger=b.ledger,
            expense_store=b.expenses,
            wallet_service=b.wallet_service,
            category_service=b.category_service,
            audit_logger=b.audit_logger,
        )
        self.wallet = WalletFlow(b.wallet_service, audit_logger=b.audit_logger)
        self.categories = CategoryFlow(b.category_service, audit_logger=b.audit_logger)
        self.dashboard = DashboardFlow(
            b.expenses,
            wallet_service=b.wallet_service,
            recent_limit=2,
            audit_logger=b.audit_logger,
        )
        self.session = b.session_for("user-1")


class TestExpenseFlow:
    """Tests for create/update/delete through the flow."""

    def test_create_with_deduction(self):
        """Test the flow creates the wallet lazily and debits it."""
        flows = Flows()

        async def scenario():
            await flows.categories.ensure_defaults()
            await flows.wallet.add_money(flows.session, Decimal("500"))
            result = await flows.expenses.create_expense(
                flows.session, expense_input("120.00", deduct=True)
            )
            balance = await flows.backend.balance_of("user-1")
            return result, balance

        result, balance = run_async(scenario())

        assert result.success
        assert result.data.amount == Decimal("120.00")
        assert result.data.id
        assert result.warnings == []
        assert balance == Decimal("380.00")
        types = flows.backend.audit_types()
        assert "wallet_created" in types
        assert "expense_created" in types
        assert types.count("wallet_adjusted") == 2

    def test_create_insufficient_funds(self):
        """Test an unaffordable expense is refused and audited."""
        flows = Flows()

        async def scenario():
            result = await flows.expenses.create_expense(
                flows.session, expense_input("10.00", deduct=True)
            )
            listing = await flows.expenses.list_expenses(flows.session)
            return result, listing

        result, listing = run_async(scenario())

        assert not result.success
        assert result.error_code == ErrorCode.INSUFFICIENT_FUNDS
        assert listing.data == []
        assert "insufficient_funds" in flows.backend.audit_types()

    def test_create_invalid_input(self):
        """Test validation errors come back as VALIDATION_ERROR."""
        flows = Flows()

        result = run_async(flows.expenses.create_expense(
            flows.session, expense_input(amount="0")
        ))

        assert result.error_code == ErrorCode.VALIDATION_ERROR
        assert "validation_failed" in flows.backend.audit_types()

    def test_create_warns_about_unknown_category(self):
        """Test warnings are passed back with a successful result."""
        flows = Flows()

        result = run_async(flows.expenses.create_expense(
            flows.session, expense_input(category="Yachts")
        ))

        assert result.success
        assert any("Yachts" in w for w in result.warnings)

    def test_update_resolves_previous_amount(self):
        """Test a flag-only patch deducts the stored amount."""
        flows = Flows()

        async def scenario():
            await flows.wallet.set_balance(flows.session, Decimal("500"))
            created = await flows.expenses.create_expense(
                flows.session, expense_input("80.00")
            )
            updated = await flows.expenses.update_expense(
                flows.session, created.data.id, {"deduct_from_wallet": True}
            )
            return updated, await flows.backend.balance_of("user-1")

        updated, balance = run_async(scenario())

        assert updated.success
        assert updated.data.deduct_from_wallet is True
        assert updated.data.amount == Decimal("80.00")
        assert balance == Decimal("420.00")

    def test_update_amount_adjusts_wallet(self):
        """Test deduction(100) -> deduction(150) on 500 gives 450 via the flow."""
        flows = Flows()

        async def scenario():
            await flows.wallet.set_balance(flows.session, Decimal("600"))
            created = await flows.expenses.create_expense(
                flows.session, expense_input("100.00", deduct=True)
            )
            updated = await flows.expenses.update_expense(
                flows.session, created.data.id, ExpenseUpdate(amount=Decimal("150.00"))
            )
            return updated, await flows.backend.balance_of("user-1")

        updated, balance = run_async(scenario())

        assert updated.success
        assert updated.data.amount == Decimal("150.00")
        assert balance == Decimal("450.00")

    def test_overlapping_updates_deduct_once(self):
        """Test two edits read before either commits still leave one deduction."""
        flows = Flows()
        b = flows.backend
        racing = ExpenseFlow(
            ledger=b.ledger,
            expense_store=YieldingExpenseStore(b.db),
            wallet_service=b.wallet_service,
            audit_logger=b.audit_logger,
        )

        async def scenario():
            await flows.wallet.set_balance(flows.session, Decimal("500"))
            created = await flows.expenses.create_expense(
                flows.session, expense_input("100.00", deduct=True)
            )
            results = await asyncio.gather(
                racing.update_expense(flows.session, created.data.id, {"amount": "150.00"}),
                racing.update_expense(flows.session, created.data.id, {"amount": "200.00"}),
            )
            stored = await b.expenses.get_expense(created.data.id)
            return results, stored, await b.balance_of("user-1")

        results, stored, balance = run_async(scenario())

        assert all(r.success for r in results)
        assert balance == Decimal("500.00") - stored.amount

    def test_update_empty_patch(self):
        """Test an empty patch is a validation error."""
        flows = Flows()

        async def scenario():
            created = await flows.expenses.create_expense(flows.session, expense_input())
            return await flows.expenses.update_expense(flows.session, created.data.id, {})

        result = run_async(scenario())

        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_delete_refunds(self):
        """Test deleting a deducted expense returns the money."""
        flows = Flows()

        async def scenario():
            await flows.wallet.set_balance(flows.session, Decimal("275"))
            created = await flows.expenses.create_expense(
                flows.session, expense_input("75.00", deduct=True)
            )
            deleted = await flows.expenses.delete_expense(flows.session, created.data.id)
            return deleted, await flows.backend.balance_of("user-1")

        deleted, balance = run_async(scenario())

        assert deleted.success
        assert deleted.data["wallet_balance"] == Decimal("275.00")
        assert balance == Decimal("275.00")

    def test_cannot_touch_another_users_expense(self):
        """Test ownership is enforced on update and delete."""
        flows = Flows()
        intruder = flows.backend.session_for("user-2")

        async def scenario():
            created = await flows.expenses.create_expense(flows.session, expense_input())
            update = await flows.expenses.update_expense(
                intruder, created.data.id, {"amount": "1.00"}
            )
            delete = await flows.expenses.delete_expense(intruder, created.data.id)
            return update, delete

        update, delete = run_async(scenario())

        assert update.error_code == ErrorCode.PERMISSION_DENIED
        assert delete.error_code == ErrorCode.PERMISSION_DENIED

    def test_missing_expense(self):
        """Test NOT_FOUND for unknown ids."""
        flows = Flows()

        result = run_async(flows.expenses.delete_expense(flows.session, "nope"))

        assert result.error_code == ErrorCode.NOT_FOUND

    def test_signed_out_session(self):
        """Test every flow refuses to work without a user."""
        flows = Flows()
        anonymous = AuthSession()

        async def scenario():
            return [
                await flows.expenses.create_expense(anonymous, expense_input()),
                await flows.expenses.list_expenses(anonymous),
                await flows.wallet.get_wallet(anonymous),
                await flows.categories.list_categories(anonymous),
                await flows.dashboard.get_dashboard(anonymous),
            ]

        results = run_async(scenario())

        assert all(r.error_code == ErrorCode.UNAUTHENTICATED for r in results)


class TestWalletAndCategoryFlows:
    """Tests for wallet and category flows."""

    def test_wallet_operations(self):
        """Test top-up, deduction and affordability through the flow."""
        flows = Flows()

        async def scenario():
            added = await flows.wallet.add_money(flows.session, Decimal("100"))
            deducted = await flows.wallet.deduct_money(flows.session, Decimal("30"))
            overdrawn = await flows.wallet.deduct_money(flows.session, Decimal("500"))
            affordable = await flows.wallet.can_afford(flows.session, Decimal("70"))
            return added, deducted, overdrawn, affordable

        added, deducted, overdrawn, affordable = run_async(scenario())

        assert added.data == Decimal("100.00")
        assert deducted.data == Decimal("70.00")
        assert overdrawn.error_code == ErrorCode.INSUFFICIENT_FUNDS
        assert affordable.data is True

    def test_delete_in_use_category(self):
        """Test the guard surfaces as CATEGORY_IN_USE and is audited."""
        flows = Flows()

        async def scenario():
            category = await flows.categories.create_category(flows.session, "Pets")
            await flows.expenses.create_expense(flows.session, expense_input(category="Pets"))
            blocked = await flows.categories.delete_category(flows.session, category.data.id)
            listing = await flows.categories.list_categories(flows.session)
            return blocked, listing

        blocked, listing = run_async(scenario())

        assert blocked.error_code == ErrorCode.CATEGORY_IN_USE
        assert [c.name for c in listing.data.custom] == ["Pets"]
        assert "category_delete_blocked" in flows.backend.audit_types()

    def test_invalid_color(self):
        """Test a malformed colour is a validation error, not a crash."""
        flows = Flows()

        result = run_async(flows.categories.create_category(flows.session, "Pets", "red"))

        assert result.error_code == ErrorCode.VALIDATION_ERROR


class TestDashboardFlow:
    """Tests for the dashboard load."""

    def test_dashboard(self):
        """Test the dashboard combines summary, charts, recent list and balance."""
        flows = Flows()

        async def scenario():
            await flows.wallet.set_balance(flows.session, Decimal("1000"))
            for amount, category in (("100.00", "Food"), ("50.00", "Food"), ("25.00", "Travel")):
                await flows.expenses.create_expense(
                    flows.session, expense_input(amount, category=category, deduct=True)
                )
            return await flows.dashboard.get_dashboard(flows.session)

        result = run_async(scenario())
        data = result.data

        assert result.success
        assert data.summary.total_spent == Decimal("175.00")
        assert data.summary.expense_count == 3
        assert {c.category: c.amount for c in data.categories} == {
            "Food": Decimal("150.00"),
            "Travel": Decimal("25.00"),
        }
        assert len(data.monthly) == 12
        assert len(data.recent) == 2
        assert data.wallet_balance == Decimal("825.00")


class TestCreateAppComponents:
    """Tests for the component factory."""

    def test_memory_backend(self):
        """Test the in-memory backend wires a working set of flows."""
        components = create_app_components(backend="memory")

        assert isinstance(components, AppComponents)
        assert isinstance(components.expense_flow, ExpenseFlow)
        assert components.session.is_authenticated is False

        result = run_async(components.category_flow.ensure_defaults())
        assert result.success
        assert len(result.data) == 12


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
