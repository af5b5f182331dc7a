"""Folder sync orchestration.

Drives the fetch -> merge -> persist -> classify cycle for one folder page:

1. Resolve the owner (server-trusted identity wins over the client's).
2. Reset the continuation cursor on page 1, otherwise resume from it.
3. Fetch one provider page (time-bounded).
4. Remember the new cursor, or forget it when the provider has no more pages.
5. Diff-aware upsert of every message; bad messages are skipped, not fatal.
6. Focus-classify new or changed messages that have no bucket yet.
7. Build the page result.

Enrichment is never triggered from here.
"""

from __future__ import annotations

from collections.abc import Hashable

import structlog
from pydantic import BaseModel, ConfigDict, Field

from mailbox_sync.config import Settings
from mailbox_sync.exceptions import (
    CredentialMissingError,
    MailboxSyncError,
    NotFoundError,
    RemoteFetchError,
)
from mailbox_sync.focus import FocusAssignmentEngine
from mailbox_sync.models import Credential, Message, MessageFilters, Owner, PageResult
from mailbox_sync.provider import CredentialResolver, MailboxProvider
from mailbox_sync.store import MessageStore
from mailbox_sync.sync.continuation import ContinuationKey, ContinuationTracker
from mailbox_sync.sync.diff import UpsertEngine, UpsertOutcome
from mailbox_sync.utils import bounded

logger = structlog.get_logger()


class FolderPageRequest(BaseModel):
    """A client request for one page of a folder."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    owner_id: str = Field(alias="ownerId", min_length=1)
    mailbox: str = Field(min_length=1)
    folder_id: str = Field(alias="folderId", min_length=1)
    page: int = Field(default=1, ge=1)
    filters: MessageFilters = Field(default_factory=MessageFilters)

    def debounce_key(self) -> Hashable:
        """Full request identity; requests differing in filters never collapse."""

        return (self.owner_id, self.mailbox, self.folder_id, self.page, self.filters.cache_key())


class FolderSyncOrchestrator:
    """Reconciles remote folder pages with the local store."""

    def __init__(
        self,
        store: MessageStore,
        provider: MailboxProvider,
        credentials: CredentialResolver,
        focus: FocusAssignmentEngine,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store: Local message store.
            provider: Remote mailbox provider.
            credentials: Credential resolver.
            focus: Focus assignment engine used at ingest time.
            settings: Application settings. If None, uses default settings.
        """
        from mailbox_sync.config import get_settings

        self.settings = settings or get_settings()
        self._store = store
        self._provider = provider
        self._credentials = credentials
        self._focus = focus
        self._upserts = UpsertEngine(store)

    async def resolve_owner(self, client_owner_id: str, trusted_owner_id: str | None = None) -> Owner:
        external_id = trusted_owner_id or client_owner_id
        owner = await self._store.get_owner(external_id)
        if owner is None:
            raise NotFoundError(f"User not found: {external_id}")
        return owner

    async def credential_for(self, owner: Owner, mailbox: str) -> Credential:
        credential = await self._credentials.get_token(
            owner.external_id, mailbox, self.settings.provider_name
        )
        if credential is None:
            raise CredentialMissingError(f"Token not found for {mailbox}")
        return credential

    async def sync_page(
        self,
        request: FolderPageRequest,
        *,
        tracker: ContinuationTracker,
        connection_id: str,
        trusted_owner_id: str | None = None,
    ) -> PageResult:
        """Sync one folder page and return it.

        Raises:
            NotFoundError: Owner unknown.
            CredentialMissingError: No credential for the mailbox.
            RemoteFetchError: Provider call failed or timed out (no partial page).
        """

        owner = await self.resolve_owner(request.owner_id, trusted_owner_id)
        credential = await self.credential_for(owner, request.mailbox)
        page_size = self.settings.page_size

        key = ContinuationKey(connection_id, request.mailbox, request.folder_id)
        if request.page == 1:
            tracker.clear(key)
            token = None
        else:
            token = tracker.get(key)
            if token is None:
                logger.info(
                    "continuation_exhausted",
                    folder_id=request.folder_id,
                    page=request.page,
                )

        outcomes: list[UpsertOutcome] = []
        if request.page == 1 or token is not None:
            remote = await bounded(
                self._provider.list_messages(credential, request.folder_id, token, page_size),
                timeout=self.settings.remote_timeout_seconds,
                error_cls=RemoteFetchError,
                operation="list_messages",
            )
            if remote.continuation_token:
                tracker.set(key, remote.continuation_token)
            else:
                tracker.clear(key)
            token = remote.continuation_token

            outcomes = await self._upserts.upsert_batch(
                remote.messages, owner_id=owner.id, mailbox=request.mailbox
            )
            outcomes = [await self._classify(owner, request.mailbox, o) for o in outcomes]

        if request.filters.is_empty:
            messages = [o.record for o in outcomes]
            has_more = token is not None
        else:
            messages = await self._store.find_messages(
                owner.id,
                request.mailbox,
                request.folder_id,
                request.filters,
                offset=(request.page - 1) * page_size,
                limit=page_size,
            )
            total = await self._store.count_messages(
                owner.id, request.mailbox, request.folder_id, request.filters
            )
            has_more = total > request.page * page_size

        changed = sum(1 for o in outcomes if o.changed)
        logger.info(
            "folder_page_synced",
            mailbox=request.mailbox,
            folder_id=request.folder_id,
            page=request.page,
            fetched=len(outcomes),
            changed=changed,
            returned=len(messages),
            has_more=has_more,
        )
        return PageResult(
            folder_id=request.folder_id,
            page=request.page,
            messages=messages,
            has_more=has_more,
        )

    async def refresh_message(self, owner: Owner, mailbox: str, message_id: str) -> Message:
        """Re-fetch one message from the provider and store its latest content."""

        credential = await self.credential_for(owner, mailbox)
        remote = await bounded(
            self._provider.get_message(credential, message_id),
            timeout=self.settings.remote_timeout_seconds,
            error_cls=RemoteFetchError,
            operation="get_message",
        )
        if remote is None:
            raise NotFoundError(f"Message not found: {message_id}")

        outcome = await self._upserts.refresh(remote, owner_id=owner.id, mailbox=mailbox)
        outcome = await self._classify(owner, mailbox, outcome)
        return outcome.record

    async def _classify(self, owner: Owner, mailbox: str, outcome: UpsertOutcome) -> UpsertOutcome:
        record = outcome.record
        if not outcome.changed or record.focus_folder is not None:
            return outcome
        try:
            bucket = await self._focus.classify(owner.id, mailbox, record)
            if bucket is None:
                return outcome
            record = record.model_copy(update={"focus_folder": bucket})
            await self._store.upsert_message(record)
        except MailboxSyncError as exc:
            logger.warning("focus_assignment_failed", message_id=record.id, error=str(exc))
            return outcome
        return UpsertOutcome(outcome.status, record)
