"""Diff-aware upserts of provider messages into the local store.

A single field table drives both the equality check and the merge, so the
two can never drift apart. Enrichment metadata, ``is_processed``, the focus
bucket and record identity are not in the table: a sync write always carries
them forward from the stored record.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

import structlog

from mailbox_sync.exceptions import StoreError, ValidationError
from mailbox_sync.models import Message, RemoteMessage
from mailbox_sync.store import MessageStore

logger = structlog.get_logger()


# Provider field -> compared on sync. Non-compared fields are still merged
# whenever a compared field changes, and are compared on an explicit refresh.
FIELD_TABLE: dict[str, bool] = {
    "subject": True,
    "sender": True,
    "to": True,
    "cc": True,
    "bcc": True,
    "preview": True,
    "read": True,
    "important": True,
    "flagged": True,
    "content": False,
    "timestamp": False,
    "folder": False,
    "conversation_id": False,
}

SYNC_COMPARED_FIELDS = tuple(name for name, compared in FIELD_TABLE.items() if compared)
MERGED_FIELDS = tuple(FIELD_TABLE)


class UpsertStatus(str, Enum):
    CREATED = "created"
    CHANGED = "changed"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class UpsertOutcome:
    """Result of reconciling one incoming message with the stored record."""

    status: UpsertStatus
    record: Message

    @property
    def changed(self) -> bool:
        return self.status is not UpsertStatus.UNCHANGED


def validate_incoming(incoming: RemoteMessage, owner_id: str, mailbox: str) -> None:
    """Reject records missing identity, owner or mailbox."""

    missing = [
        name
        for name, value in (("id", incoming.id), ("owner_id", owner_id), ("mailbox", mailbox))
        if not value or not str(value).strip()
    ]
    if missing:
        raise ValidationError(f"Message missing required fields: {', '.join(missing)}")


def diff_message(
    incoming: RemoteMessage,
    existing: Message | None,
    *,
    owner_id: str,
    mailbox: str,
    fields: Iterable[str] = SYNC_COMPARED_FIELDS,
) -> UpsertOutcome:
    """Decide whether ``incoming`` differs materially from ``existing``.

    Args:
        incoming: Provider representation.
        existing: Stored record, or None for a new message.
        owner_id: Owner reference for new records.
        mailbox: Mailbox address for new records.
        fields: Fields compared for equality.

    Returns:
        UpsertOutcome carrying the record to persist (or the untouched one).
    """

    if existing is None:
        return UpsertOutcome(
            UpsertStatus.CREATED,
            Message.from_remote(incoming, owner_id=owner_id, mailbox=mailbox),
        )

    if all(getattr(incoming, name) == getattr(existing, name) for name in fields):
        return UpsertOutcome(UpsertStatus.UNCHANGED, existing)

    update = {name: getattr(incoming, name) for name in MERGED_FIELDS}
    update["updated_at"] = datetime.now(timezone.utc)
    return UpsertOutcome(UpsertStatus.CHANGED, existing.model_copy(update=update))


class UpsertEngine:
    """Apply minimal writes for incoming provider messages."""

    def __init__(self, store: MessageStore) -> None:
        self._store = store

    async def upsert(self, incoming: RemoteMessage, *, owner_id: str, mailbox: str) -> UpsertOutcome:
        """Sync write: compares provider-sourced fields only."""

        return await self._apply(incoming, owner_id, mailbox, SYNC_COMPARED_FIELDS)

    async def refresh(self, incoming: RemoteMessage, *, owner_id: str, mailbox: str) -> UpsertOutcome:
        """Explicit refresh: any merged field, including content, counts as a change.

        A stored record keeps its folder. A single-message fetch does not know
        which folder listing the record was synced from.
        """

        return await self._apply(incoming, owner_id, mailbox, MERGED_FIELDS, keep_folder=True)

    async def upsert_batch(
        self,
        messages: Iterable[RemoteMessage],
        *,
        owner_id: str,
        mailbox: str,
    ) -> list[UpsertOutcome]:
        """Upsert a page of messages.

        Invalid or unpersistable messages are logged and left out of the
        result; they never abort the rest of the batch.
        """

        outcomes: list[UpsertOutcome] = []
        for incoming in messages:
            try:
                outcomes.append(await self.upsert(incoming, owner_id=owner_id, mailbox=mailbox))
            except ValidationError as exc:
                logger.warning("message_rejected", message_id=incoming.id, error=str(exc))
            except StoreError as exc:
                logger.exception("message_persist_failed", message_id=incoming.id, error=str(exc))
        return outcomes

    async def _apply(
        self,
        incoming: RemoteMessage,
        owner_id: str,
        mailbox: str,
        fields: tuple[str, ...],
        *,
        keep_folder: bool = False,
    ) -> UpsertOutcome:
        validate_incoming(incoming, owner_id, mailbox)
        existing = await self._store.find_message(mailbox, incoming.id)
        if keep_folder and existing is not None:
            incoming = incoming.model_copy(update={"folder": existing.folder})
        outcome = diff_message(incoming, existing, owner_id=owner_id, mailbox=mailbox, fields=fields)
        if outcome.changed:
            await self._store.upsert_message(outcome.record)
            logger.debug("message_upserted", message_id=incoming.id, status=outcome.status.value)
        return outcome
