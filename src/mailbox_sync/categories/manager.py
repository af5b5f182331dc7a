"""Category management for connected accounts.

Categories are the labels the enricher may assign. An account without
categories cannot be enriched, so reading, replacing and adding categories
create the account record when it is missing.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

import structlog

from mailbox_sync.exceptions import NotFoundError, ValidationError
from mailbox_sync.models import Account, Category
from mailbox_sync.store import MessageStore

logger = structlog.get_logger()


def _normalize(category: Category) -> Category:
    name = category.name.strip()
    if not name:
        raise ValidationError("Category name must not be empty")
    label = category.label.strip() or name
    return category.model_copy(update={"name": name, "label": label})


class CategoryManager:
    """Reads and edits the category list stored on an account."""

    def __init__(self, store: MessageStore) -> None:
        self._store = store
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    async def list_categories(self, owner_id: str, mailbox: str) -> list[Category]:
        async with self._lock_for(owner_id, mailbox):
            account = await self._get_or_create(owner_id, mailbox)
        return account.categories

    async def replace_categories(
        self, owner_id: str, mailbox: str, categories: Iterable[Category]
    ) -> list[Category]:
        """Replace the whole category list of an account.

        Raises:
            ValidationError: A category has no name, or two share a name.
        """

        normalized = [_normalize(c) for c in categories]
        names = [c.name for c in normalized]
        if len(set(names)) != len(names):
            raise ValidationError("Category names must be unique")

        async with self._lock_for(owner_id, mailbox):
            await self._get_or_create(owner_id, mailbox)
            await self._store.save_categories(owner_id, mailbox, normalized)

        logger.info("categories_replaced", mailbox=mailbox, count=len(normalized))
        return normalized

    async def add_category(self, owner_id: str, mailbox: str, category: Category) -> list[Category]:
        """Append a category and return the account's updated list.

        Raises:
            ValidationError: Empty name, or a category with this name exists.
        """

        category = _normalize(category)
        async with self._lock_for(owner_id, mailbox):
            account = await self._get_or_create(owner_id, mailbox)
            if any(c.name == category.name for c in account.categories):
                raise ValidationError("Category with this name already exists")

            categories = [*account.categories, category]
            await self._store.save_categories(owner_id, mailbox, categories)

        logger.info("category_added", mailbox=mailbox, category=category.name)
        return categories

    async def delete_category(self, owner_id: str, mailbox: str, name: str) -> list[Category]:
        """Remove a category by name. Unknown names leave the list unchanged.

        Raises:
            NotFoundError: The account does not exist.
        """

        async with self._lock_for(owner_id, mailbox):
            account = await self._store.get_account(owner_id, mailbox)
            if account is None:
                raise NotFoundError(f"Email account not found: {mailbox}")

            categories = [c for c in account.categories if c.name != name]
            await self._store.save_categories(owner_id, mailbox, categories)

        logger.info(
            "category_deleted",
            mailbox=mailbox,
            category=name,
            removed=len(account.categories) - len(categories),
        )
        return categories

    async def _get_or_create(self, owner_id: str, mailbox: str) -> Account:
        account = await self._store.get_account(owner_id, mailbox)
        if account is None:
            account = Account(owner_id=owner_id, mailbox=mailbox)
            await self._store.save_account(account)
            logger.info("account_created", mailbox=mailbox)
        return account

    def _lock_for(self, owner_id: str, mailbox: str) -> asyncio.Lock:
        return self._locks.setdefault((owner_id, mailbox), asyncio.Lock())
