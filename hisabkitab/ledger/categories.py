"""
Category Service

Default categories are shared by everyone and carry no user_id.
Custom categories belong to one user.

DESIGN DECISION: Expenses reference categories by NAME, not id.
The delete guard therefore scans the user's expenses for the
category's name. Renaming a category does not rewrite old expenses;
they keep the old name.
"""

from typing import Any, Optional

import structlog
from pydantic import BaseModel

from hisabkitab.models.finance import DEFAULT_CATEGORIES, Category
from hisabkitab.services.storage.interface import (
    CategoryInUseError,
    CategoryStore,
    ExpenseStore,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)


logger = structlog.get_logger(__name__)

DEFAULT_COLOR = "#6366f1"


class CategoryGroups(BaseModel):
    """Categories split the way the picker shows them."""

    default: list[Category]
    custom: list[Category]

    @property
    def all(self) -> list[Category]:
        return self.default + self.custom

    @property
    def names(self) -> set[str]:
        return {c.name for c in self.all}


class CategoryService:
    """Category CRUD plus the in-use guard on delete."""

    def __init__(self, category_store: CategoryStore, expense_store: ExpenseStore):
        self._category_store = category_store
        self._expense_store = expense_store

    async def list_for_user(self, user_id: str) -> list[Category]:
        """Defaults first, then the user's custom categories (newest first)."""
        groups = await self.grouped(user_id)
        return groups.all

    async def grouped(self, user_id: str) -> CategoryGroups:
        defaults = await self._category_store.list_default_categories()
        custom = await self._category_store.list_categories(user_id)
        return CategoryGroups(default=defaults, custom=custom)

    async def ensure_defaults(self) -> list[Category]:
        """Create any missing default categories. Returns the ones created."""
        existing = {c.name for c in await self._category_store.list_default_categories()}
        created = []
        for default in DEFAULT_CATEGORIES:
            if default["name"] in existing:
                continue
            category = await self._category_store.create_category(
                name=default["name"],
                color=default["color"],
                is_default=True,
            )
            created.append(category)
        if created:
            logger.info("default_categories_created", count=len(created))
        return created

    async def create(self, user_id: str, name: str, color: Optional[str] = None) -> Category:
        """
        Create a custom category.

        Raises:
            ValidationError: Empty name, or a category with this name already exists
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError(
                "Category name is required",
                issues=[{"field": "name", "issue_type": "missing"}],
            )

        groups = await self.grouped(user_id)
        if name.lower() in {n.lower() for n in groups.names}:
            raise ValidationError(
                f"Category '{name}' already exists",
                issues=[{"field": "name", "issue_type": "duplicate"}],
            )

        return await self._category_store.create_category(
            name=name,
            color=color or DEFAULT_COLOR,
            is_default=False,
            user_id=user_id,
        )

    async def _get_owned(self, user_id: str, category_id: str) -> Category:
        category = await self._category_store.get_category(category_id)
        if category is None:
            raise NotFoundError(f"Category not found: {category_id}")
        if category.is_default:
            raise PermissionDeniedError("Default categories cannot be modified")
        if category.user_id != user_id:
            raise PermissionDeniedError("Category belongs to a different user")
        return category

    async def update(
        self,
        user_id: str,
        category_id: str,
        name: Optional[str] = None,
        color: Optional[str] = None,
    ) -> Category:
        """Rename or recolour a custom category."""
        await self._get_owned(user_id, category_id)

        updates: dict[str, Any] = {}
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError(
                    "Category name cannot be empty",
                    issues=[{"field": "name", "issue_type": "missing"}],
                )
            updates["name"] = name
        if color is not None:
            updates["color"] = color
        if not updates:
            raise ValidationError("Nothing to update")

        return await self._category_store.update_category(category_id, updates)

    async def usage_count(self, user_id: str, name: str) -> int:
        """How many of the user's expenses carry this category name."""
        expenses = await self._expense_store.list_expenses(user_id)
        return sum(1 for e in expenses if e.category == name)

    async def delete(self, user_id: str, category_id: str) -> Category:
        """
        Delete a custom category if no expense uses it.

        The scan covers the user's full expense history, not a page.

        Raises:
            NotFoundError: Category missing
            PermissionDeniedError: Default category or another user's category
            CategoryInUseError: At least one expense carries the category name
        """
        category = await self._get_owned(user_id, category_id)

        count = await self.usage_count(user_id, category.name)
        if count > 0:
            raise CategoryInUseError(category.name, count)

        if not await self._category_store.delete_category(category_id):
            raise NotFoundError(f"Category not found: {category_id}")
        return category
