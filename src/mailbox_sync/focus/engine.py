"""Focus folder classification.

Focus items are user rules that route messages into virtual buckets. A
bucket is advisory metadata on the message (``focus_folder``); the message
stays in its native folder.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import datetime, timezone

import structlog

from mailbox_sync.config import Settings
from mailbox_sync.exceptions import NotFoundError, ValidationError
from mailbox_sync.models import (
    BucketStatistics,
    FocusItem,
    FocusRuleType,
    FocusStatistics,
    Message,
    PageResult,
    make_bucket_name,
)
from mailbox_sync.store import MessageStore

logger = structlog.get_logger()


def rule_matches(item: FocusItem, message: Message, sender_policy: str = "substring") -> bool:
    """Check a single rule against a message."""

    needle = item.value.strip().lower()
    if not needle:
        return False
    if item.type == FocusRuleType.SUBJECT:
        return needle in (message.subject or "").lower()
    if item.type == FocusRuleType.SENDER:
        address = message.sender_address
        if sender_policy == "exact":
            return address == needle
        return needle in address
    return False


class FocusAssignmentEngine:
    """Classifies messages into focus buckets and keeps bucket counters."""

    def __init__(self, store: MessageStore, settings: Settings | None = None) -> None:
        from mailbox_sync.config import get_settings

        self.settings = settings or get_settings()
        self._store = store
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def assign(
        self,
        message: Message,
        items: Iterable[FocusItem],
        now: datetime | None = None,
    ) -> str | None:
        """Return the bucket of the first matching active rule, or None.

        Rules are tried in creation order. The winning rule's counter and
        last-activity time are updated in place.
        """

        active = sorted((i for i in items if i.is_active), key=lambda i: i.created_at)
        for item in active:
            if rule_matches(item, message, self.settings.sender_match_policy):
                item.message_count += 1
                item.last_activity = now or datetime.now(timezone.utc)
                return item.folder_name
        return None

    async def classify(self, owner_id: str, mailbox: str, message: Message) -> str | None:
        """Assign ``message`` using the account's stored rules and persist counters."""

        async with self._lock_for(owner_id, mailbox):
            account = await self._store.get_account(owner_id, mailbox)
            if account is None or not account.focus_items:
                return None

            items = account.focus_items
            bucket = self.assign(message, items)
            if bucket is None:
                return None

            await self._store.save_focus_items(owner_id, mailbox, items)
            logger.info("focus_assigned", message_id=message.id, bucket=bucket)
            return bucket

    async def add_item(
        self,
        owner_id: str,
        mailbox: str,
        rule_type: FocusRuleType | str,
        value: str,
    ) -> FocusItem:
        """Create a new focus rule for an account.

        Raises:
            NotFoundError: The account does not exist.
            ValidationError: Empty value, or an identical rule already exists.
        """

        rule_type = FocusRuleType(rule_type)
        value = (value or "").strip()
        if not value:
            raise ValidationError("Focus value must not be empty")

        async with self._lock_for(owner_id, mailbox):
            account = await self._store.get_account(owner_id, mailbox)
            if account is None:
                raise NotFoundError(f"Email account not found: {mailbox}")

            for existing in account.focus_items:
                if existing.type == rule_type and existing.value.lower() == value.lower():
                    raise ValidationError(f"Focus item already exists: {rule_type.value} '{value}'")

            item = FocusItem(
                type=rule_type,
                value=value,
                folder_name=make_bucket_name(rule_type, value),
            )
            await self._store.save_focus_items(owner_id, mailbox, [*account.focus_items, item])

        logger.info("focus_item_added", mailbox=mailbox, type=rule_type.value, bucket=item.folder_name)
        return item

    async def get_statistics(self, owner_id: str, mailbox: str) -> FocusStatistics:
        account = await self._store.get_account(owner_id, mailbox)
        if account is None:
            raise NotFoundError(f"Email account not found: {mailbox}")

        per_bucket = {
            item.folder_name: BucketStatistics(
                count=item.message_count, last_activity=item.last_activity
            )
            for item in account.focus_items
        }
        return FocusStatistics(
            per_bucket=per_bucket,
            total_classified=sum(item.message_count for item in account.focus_items),
        )

    async def messages_in_bucket(
        self,
        owner_id: str,
        mailbox: str,
        bucket: str,
        page: int = 1,
        page_size: int | None = None,
    ) -> PageResult:
        size = page_size or self.settings.page_size
        messages = await self._store.find_by_focus_folder(
            owner_id, mailbox, bucket, offset=(page - 1) * size, limit=size
        )
        total = await self._store.count_by_focus_folder(owner_id, mailbox, bucket)
        return PageResult(folder_id=bucket, page=page, messages=messages, has_more=total > page * size)

    def _lock_for(self, owner_id: str, mailbox: str) -> asyncio.Lock:
        return self._locks.setdefault((owner_id, mailbox), asyncio.Lock())
