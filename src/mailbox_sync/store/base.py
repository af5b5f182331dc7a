"""Store interface consumed by the sync and enrichment pipeline."""

from __future__ import annotations

from typing import Protocol

from mailbox_sync.models import Account, Category, FocusItem, Message, MessageFilters, Owner


class MessageStore(Protocol):
    """Keyed document store for messages, accounts and owners.

    Messages are keyed by ``(mailbox, id)``.
    """

    async def get_owner(self, external_id: str) -> Owner | None: ...

    async def save_owner(self, owner: Owner) -> None: ...

    async def get_account(self, owner_id: str, mailbox: str) -> Account | None: ...

    async def save_account(self, account: Account) -> None: ...

    async def save_focus_items(
        self, owner_id: str, mailbox: str, items: list[FocusItem]
    ) -> None: ...

    async def save_categories(
        self, owner_id: str, mailbox: str, categories: list[Category]
    ) -> None: ...

    async def find_message(self, mailbox: str, message_id: str) -> Message | None: ...

    async def upsert_message(self, message: Message) -> Message: ...

    async def find_messages(
        self,
        owner_id: str,
        mailbox: str,
        folder: str,
        filters: MessageFilters | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> list[Message]: ...

    async def count_messages(
        self,
        owner_id: str,
        mailbox: str,
        folder: str,
        filters: MessageFilters | None = None,
    ) -> int: ...

    async def update_flags(
        self,
        mailbox: str,
        message_id: str,
        *,
        read: bool | None = None,
        important: bool | None = None,
    ) -> Message | None: ...

    async def update_category(
        self, mailbox: str, message_id: str, category: str
    ) -> Message | None: ...

    async def clear_enrichment(self, mailbox: str, message_ids: list[str]) -> int: ...

    async def delete_message(self, mailbox: str, message_id: str) -> bool: ...

    async def find_by_focus_folder(
        self,
        owner_id: str,
        mailbox: str,
        focus_folder: str,
        offset: int = 0,
        limit: int = 20,
    ) -> list[Message]: ...

    async def count_by_focus_folder(
        self, owner_id: str, mailbox: str, focus_folder: str
    ) -> int: ...
