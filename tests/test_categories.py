"""Tests for CategoryService and the delete guard."""

import pytest

from hisabkitab.models.finance import DEFAULT_CATEGORIES
from hisabkitab.services.storage import (
    CategoryInUseError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

from helpers import MemoryBackend, make_payload, run_async


USER = "user-1"


class TestDefaults:
    """Tests for the shared default categories."""

    def test_ensure_defaults_creates_all_once(self):
        """Test defaults are created on the first call only."""
        backend = MemoryBackend()

        async def scenario():
            first = await backend.category_service.ensure_defaults()
            second = await backend.category_service.ensure_defaults()
            defaults = await backend.categories.list_default_categories()
            return first, second, defaults

        first, second, defaults = run_async(scenario())

        assert len(first) == len(DEFAULT_CATEGORIES)
        assert second == []
        assert all(c.is_default and c.user_id is None for c in defaults)

    def test_grouped_splits_default_and_custom(self):
        """Test grouping and that other users' categories are invisible."""
        backend = MemoryBackend()

        async def scenario():
            await backend.category_service.ensure_defaults()
            await backend.category_service.create(USER, "Pets", "#123456")
            await backend.category_service.create("user-2", "Boats")
            return await backend.category_service.grouped(USER)

        groups = run_async(scenario())

        assert len(groups.default) == len(DEFAULT_CATEGORIES)
        assert [c.name for c in groups.custom] == ["Pets"]
        assert "Boats" not in groups.names
        assert "Groceries" in groups.names


class TestCustomCategories:
    """Tests for creating and editing user-owned categories."""

    def test_create_uses_default_color(self):
        """Test a category without a colour gets the default one."""
        backend = MemoryBackend()

        category = run_async(backend.category_service.create(USER, "  Pets  "))

        assert category.name == "Pets"
        assert category.color == "#6366f1"
        assert category.user_id == USER
        assert category.is_custom

    def test_create_rejects_empty_name(self):
        """Test a blank name is refused."""
        backend = MemoryBackend()

        with pytest.raises(ValidationError):
            run_async(backend.category_service.create(USER, "   "))

    def test_create_rejects_duplicate_name(self):
        """Test a name clashing with a default (any case) is refused."""
        backend = MemoryBackend()

        async def scenario():
            await backend.category_service.ensure_defaults()
            with pytest.raises(ValidationError):
                await backend.category_service.create(USER, "groceries")

        run_async(scenario())

    def test_update_renames(self):
        """Test renaming and recolouring a custom category."""
        backend = MemoryBackend()

        async def scenario():
            category = await backend.category_service.create(USER, "Pets")
            return await backend.category_service.update(
                USER, category.id, name="Pet Care", color="#abcdef"
            )

        updated = run_async(scenario())

        assert updated.name == "Pet Care"
        assert updated.color == "#abcdef"

    def test_update_default_is_denied(self):
        """Test defaults cannot be edited by a user."""
        backend = MemoryBackend()

        async def scenario():
            created = await backend.category_service.ensure_defaults()
            with pytest.raises(PermissionDeniedError):
                await backend.category_service.update(USER, created[0].id, name="Mine")

        run_async(scenario())


class TestDeleteGuard:
    """Tests for deleting categories that may still be in use."""

    def test_in_use_category_is_kept(self):
        """Test deletion fails and nothing changes while an expense uses the name."""
        backend = MemoryBackend()

        async def scenario():
            category = await backend.category_service.create(USER, "Pets")
            await backend.expenses.create_expense(USER, make_payload(category="Pets"))
            await backend.expenses.create_expense(USER, make_payload(category="Pets"))
            with pytest.raises(CategoryInUseError) as exc_info:
                await backend.category_service.delete(USER, category.id)
            remaining = await backend.categories.list_categories(USER)
            return exc_info.value, remaining

        error, remaining = run_async(scenario())

        assert error.usage_count == 2
        assert error.name == "Pets"
        assert [c.name for c in remaining] == ["Pets"]

    def test_unused_category_is_deleted(self):
        """Test a category nobody references can be deleted."""
        backend = MemoryBackend()

        async def scenario():
            category = await backend.category_service.create(USER, "Pets")
            await backend.expenses.create_expense(USER, make_payload(category="Groceries"))
            await backend.category_service.delete(USER, category.id)
            return await backend.categories.list_categories(USER)

        assert run_async(scenario()) == []

    def test_join_is_by_name_not_id(self):
        """Test an expense whose category equals the category id does not block deletion."""
        backend = MemoryBackend()

        async def scenario():
            category = await backend.category_service.create(USER, "Pets")
            await backend.expenses.create_expense(USER, make_payload(category=category.id))
            await backend.category_service.delete(USER, category.id)
            return await backend.categories.get_category(category.id)

        assert run_async(scenario()) is None

    def test_other_users_expenses_do_not_block(self):
        """Test only the owner's expenses count towards the guard."""
        backend = MemoryBackend()

        async def scenario():
            category = await backend.category_service.create(USER, "Pets")
            await backend.expenses.create_expense("user-2", make_payload(category="Pets"))
            await backend.category_service.delete(USER, category.id)
            return await backend.categories.get_category(category.id)

        assert run_async(scenario()) is None

    def test_other_users_category_is_denied(self):
        """Test a user cannot delete someone else's category."""
        backend = MemoryBackend()

        async def scenario():
            category = await backend.category_service.create("user-2", "Boats")
            with pytest.raises(PermissionDeniedError):
                await backend.category_service.delete(USER, category.id)
            return await backend.categories.get_category(category.id)

        assert run_async(scenario()) is not None

    def test_missing_category_is_not_found(self):
        """Test deleting a category that doesn't exist."""
        backend = MemoryBackend()

        with pytest.raises(NotFoundError):
            run_async(backend.category_service.delete(USER, "missing"))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
