"""Enrichment dispatch queue.

Accepted messages are enriched by a bounded pool of asyncio tasks. The
in-flight table is the only shared mutable state; reserving a message in it
is a single check-and-insert under one lock, so a message is never enriched
by two jobs at once no matter how many channels submit it.

Job lifecycle and the status events pushed to the owner's channels:

    queued -> analyzing -> completed | error | waiting

``waiting`` means the account has no categories yet.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timezone
from typing import Any

import structlog

from mailbox_sync.config import Settings
from mailbox_sync.enrichment.base import DeliveryChannel, Enricher
from mailbox_sync.enrichment.channels import ChannelRegistry
from mailbox_sync.exceptions import (
    CategoriesMissingError,
    EnrichmentError,
    MailboxSyncError,
    NotFoundError,
)
from mailbox_sync.models import EnrichmentMetadata, Message, Owner
from mailbox_sync.store import MessageStore
from mailbox_sync.utils import bounded

logger = structlog.get_logger()

ENRICHMENT_STATUS_EVENT = "mail:enrichmentStatus"
WAITING_FOR_CATEGORIES = "Waiting for user to create categories"
CATEGORIES_PROMPT = "Please create email categories first to enable AI analysis"

Refresher = Callable[[Owner, str, str], Awaitable[Message]]
JobKey = tuple[str, str]


def needs_enrichment(message: Message) -> bool:
    """True for never-enriched messages and for stale in-flight markers.

    Callers must also check the in-flight table; a marker only counts as
    stale when no job holds the message.
    """

    return message.enrichment is None or message.enrichment.is_in_flight


def _key(message: Message) -> JobKey:
    return (message.mailbox, message.id)


class EnrichmentDispatchQueue:
    """At-most-one-in-flight enrichment with asynchronous result delivery."""

    def __init__(
        self,
        store: MessageStore,
        enricher: Enricher,
        registry: ChannelRegistry | None = None,
        settings: Settings | None = None,
        refresher: Refresher | None = None,
    ) -> None:
        """Initialize the queue.

        Args:
            store: Local message store.
            enricher: Enrichment collaborator.
            registry: Channel registry used for result delivery.
            settings: Application settings. If None, uses default settings.
            refresher: Re-fetches a message's latest content before a retry.
        """
        from mailbox_sync.config import get_settings

        self.settings = settings or get_settings()
        self.registry = registry or ChannelRegistry()
        self._store = store
        self._enricher = enricher
        self._refresher = refresher
        self._in_flight: dict[JobKey, datetime] = {}
        self._lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(self.settings.enrichment_workers)
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def is_in_flight(self, mailbox: str, message_id: str) -> bool:
        return (mailbox, message_id) in self._in_flight

    async def submit(
        self,
        messages: Iterable[Message],
        channel: DeliveryChannel | None = None,
        *,
        force_reanalyze: bool = False,
    ) -> list[str]:
        """Queue messages for enrichment.

        Without ``force_reanalyze`` only messages lacking enrichment are
        accepted. With it, every message not already in flight is accepted
        and its prior enrichment is cleared in one batch per mailbox first.

        Returns:
            IDs of the messages actually queued.
        """

        messages = list(messages)
        if channel is not None:
            for owner_id in {m.owner_id for m in messages}:
                self.registry.register(owner_id, channel)

        accepted: list[Message] = []
        now = datetime.now(timezone.utc)
        async with self._lock:
            for message in messages:
                key = _key(message)
                if key in self._in_flight:
                    continue
                if not force_reanalyze and not needs_enrichment(message):
                    continue
                self._in_flight[key] = now
                accepted.append(message)

        if not accepted:
            logger.info("enrichment_nothing_to_queue", submitted=len(messages))
            return []

        if force_reanalyze:
            try:
                await self._clear_batch(accepted)
            except MailboxSyncError:
                await self._release(*(_key(m) for m in accepted))
                raise
            accepted = [
                m.model_copy(update={"enrichment": None, "is_processed": False}) for m in accepted
            ]

        for message in accepted:
            await self._broadcast(message.owner_id, message.id, "queued", "Queued for analysis")
            task = asyncio.create_task(self._run(message))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        logger.info(
            "enrichment_queued",
            submitted=len(messages),
            queued=len(accepted),
            force=force_reanalyze,
        )
        return [m.id for m in accepted]

    async def retry(
        self,
        owner: Owner,
        mailbox: str,
        message_id: str,
        channel: DeliveryChannel | None = None,
    ) -> bool:
        """Refresh a message's content, clear its enrichment and re-queue it.

        Returns:
            False if the message is already being enriched.

        Raises:
            NotFoundError: The message is not in the store.
            RemoteFetchError: The refresh failed; the stored enrichment is kept.
        """

        if self.is_in_flight(mailbox, message_id):
            logger.info("enrichment_retry_skipped_in_flight", message_id=message_id)
            return False

        stored = await self._store.find_message(mailbox, message_id)
        if stored is None or stored.owner_id != owner.id:
            raise NotFoundError(f"Message not found: {message_id}")

        message = stored
        if self._refresher is not None:
            message = await self._refresher(owner, mailbox, message_id)

        await self._store.clear_enrichment(mailbox, [message_id])
        message = message.model_copy(update={"enrichment": None, "is_processed": False})
        queued = await self.submit([message], channel)
        return bool(queued)

    async def drain(self) -> None:
        """Wait until every queued job has finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        await self.drain()
        logger.info("enrichment_queue_stopped")

    async def _clear_batch(self, messages: list[Message]) -> None:
        by_mailbox: dict[str, list[str]] = {}
        for message in messages:
            by_mailbox.setdefault(message.mailbox, []).append(message.id)
        for mailbox, ids in by_mailbox.items():
            cleared = await self._store.clear_enrichment(mailbox, ids)
            logger.info("enrichment_cleared", mailbox=mailbox, count=cleared)

    async def _release(self, *keys: JobKey) -> None:
        async with self._lock:
            for key in keys:
                self._in_flight.pop(key, None)

    async def _run(self, message: Message) -> None:
        status: dict[str, Any] | None = None
        try:
            async with self._semaphore:
                status = await self._process(message)
        except Exception as exc:  # noqa: BLE001 - a crashed job must not take down the pool
            logger.exception("enrichment_job_crashed", message_id=message.id, error=str(exc))
            status = self._status(message.id, "error", str(exc))
        finally:
            await self._release(_key(message))

        await self.registry.broadcast(message.owner_id, ENRICHMENT_STATUS_EVENT, status)

    async def _process(self, message: Message) -> dict[str, Any]:
        version = self.settings.enrichment_schema_version
        await self._broadcast(message.owner_id, message.id, "analyzing", "Analyzing email content...")

        latest = await self._store.find_message(message.mailbox, message.id)
        if latest is None:
            logger.warning("enrichment_message_missing", message_id=message.id)
            return self._status(message.id, "error", f"Message not found: {message.id}")

        await self._store.upsert_message(
            latest.model_copy(
                update={"enrichment": EnrichmentMetadata.in_flight(version), "is_processed": False}
            )
        )

        account = await self._store.get_account(message.owner_id, message.mailbox)
        categories = account.categories if account is not None else []

        try:
            meta = await bounded(
                self._enricher.enrich(latest, categories),
                timeout=self.settings.enrichment_timeout_seconds,
                error_cls=EnrichmentError,
                operation="enrich",
            )
        except CategoriesMissingError:
            await self._persist(message, EnrichmentMetadata.failed(WAITING_FOR_CATEGORIES, version))
            logger.info("enrichment_waiting_for_categories", message_id=message.id)
            return self._status(
                message.id,
                "waiting",
                CATEGORIES_PROMPT,
            )
        except EnrichmentError as exc:
            await self._persist(message, EnrichmentMetadata.failed(str(exc), version))
            logger.warning("enrichment_failed", message_id=message.id, error=str(exc))
            return self._status(message.id, "error", str(exc))

        meta = meta.model_copy(
            update={
                "enriched_at": meta.enriched_at or datetime.now(timezone.utc),
                "version": version,
                "error": None,
            }
        )
        updated = await self._persist(message, meta, processed=True)
        logger.info("enrichment_completed", message_id=message.id, category=meta.category)

        payload = self._status(message.id, "completed", "Analysis complete")
        payload["enrichment"] = meta.model_dump(mode="json")
        if updated is not None:
            payload["email"] = updated.summary_view()
        return payload

    async def _persist(
        self,
        message: Message,
        meta: EnrichmentMetadata,
        *,
        processed: bool = False,
    ) -> Message | None:
        # Re-read so flag or content changes made while the job ran survive.
        latest = await self._store.find_message(message.mailbox, message.id)
        if latest is None:
            return None
        return await self._store.upsert_message(
            latest.model_copy(
                update={
                    "enrichment": meta,
                    "is_processed": processed,
                    "updated_at": datetime.now(timezone.utc),
                }
            )
        )

    async def _broadcast(self, owner_id: str, message_id: str, status: str, text: str) -> None:
        await self.registry.broadcast(
            owner_id, ENRICHMENT_STATUS_EVENT, self._status(message_id, status, text)
        )

    @staticmethod
    def _status(message_id: str, status: str, text: str) -> dict[str, Any]:
        return {"messageId": message_id, "status": status, "message": text}
