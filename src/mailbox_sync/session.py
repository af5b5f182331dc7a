"""Per-connection request handling.

A ``MailSession`` owns the state that lives exactly as long as one client
connection: its pagination cursors and its debounce timers. Requests arrive
as ``(event, payload)`` pairs and answers are pushed back on the same
channel. Every rejected request produces exactly one ``mail:error`` event.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any, Optional, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from mailbox_sync.categories import CategoryManager
from mailbox_sync.config import Settings
from mailbox_sync.enrichment import (
    CATEGORIES_PROMPT,
    ENRICHMENT_STATUS_EVENT,
    ChannelRegistry,
    DeliveryChannel,
    Enricher,
    EnrichmentDispatchQueue,
    WAITING_FOR_CATEGORIES,
)
from mailbox_sync.exceptions import (
    CredentialMissingError,
    MailboxSyncError,
    NotFoundError,
    RemoteFetchError,
    ValidationError,
)
from mailbox_sync.focus import FocusAssignmentEngine
from mailbox_sync.models import Category, Owner
from mailbox_sync.provider import CredentialResolver, MailboxProvider, OutgoingMessage, ReplyDraft
from mailbox_sync.store import MessageStore
from mailbox_sync.sync import (
    ContinuationTracker,
    DebounceCoordinator,
    FolderPageRequest,
    FolderSyncOrchestrator,
)
from mailbox_sync.utils import bounded

logger = structlog.get_logger()

T = TypeVar("T")
Handler = Callable[[dict[str, Any]], Awaitable[None]]


def _split_addresses(v: Any) -> Any:
    if v is None:
        return []
    if isinstance(v, str):
        return [a.strip() for a in v.split(",") if a.strip()]
    return v


class MailRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    owner_id: str = Field(alias="ownerId", min_length=1)
    mailbox: str = Field(min_length=1)


class InitRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    owner_id: str = Field(alias="ownerId", min_length=1)
    mailbox: Optional[str] = None


class MessageRequest(MailRequest):
    message_id: str = Field(alias="messageId", min_length=1)


class ImportantRequest(MessageRequest):
    flag: bool = True


class CategoryRequest(MessageRequest):
    category: str = Field(min_length=1)


class SendRequest(MailRequest):
    to: list[str] = Field(min_length=1)
    subject: str = ""
    body: str = ""
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)

    @field_validator("to", "cc", "bcc", mode="before")
    @classmethod
    def _split(cls, v: Any) -> Any:
        return _split_addresses(v)


class ReplyRequest(MessageRequest):
    comment: str = ""
    to: list[str] = Field(default_factory=list, alias="toRecipients")
    cc: list[str] = Field(default_factory=list, alias="ccRecipients")
    bcc: list[str] = Field(default_factory=list, alias="bccRecipients")

    @field_validator("to", "cc", "bcc", mode="before")
    @classmethod
    def _split(cls, v: Any) -> Any:
        return _split_addresses(v)


class EnrichRequest(MailRequest):
    message_ids: list[str] = Field(alias="messageIds", min_length=1)
    force_reanalyze: bool = Field(default=False, alias="forceReanalyze")


class BucketRequest(MailRequest):
    bucket: str = Field(min_length=1)
    page: int = Field(default=1, ge=1)


class CategoryAddRequest(MailRequest):
    category: Category


class CategoriesUpdateRequest(MailRequest):
    categories: list[Category]


class CategoryDeleteRequest(MailRequest):
    category_name: str = Field(alias="categoryName", min_length=1)


@dataclass
class Services:
    """Shared collaborators, built once per process and used by every session."""

    store: MessageStore
    provider: MailboxProvider
    credentials: CredentialResolver
    focus: FocusAssignmentEngine
    categories: CategoryManager
    orchestrator: FolderSyncOrchestrator
    enrichment: EnrichmentDispatchQueue
    settings: Settings

    @classmethod
    def build(
        cls,
        store: MessageStore,
        provider: MailboxProvider,
        credentials: CredentialResolver,
        enricher: Enricher,
        settings: Settings | None = None,
    ) -> Services:
        from mailbox_sync.config import get_settings

        settings = settings or get_settings()
        focus = FocusAssignmentEngine(store, settings)
        orchestrator = FolderSyncOrchestrator(store, provider, credentials, focus, settings)
        enrichment = EnrichmentDispatchQueue(
            store,
            enricher,
            ChannelRegistry(),
            settings,
            refresher=orchestrator.refresh_message,
        )
        return cls(
            store=store,
            provider=provider,
            credentials=credentials,
            focus=focus,
            categories=CategoryManager(store),
            orchestrator=orchestrator,
            enrichment=enrichment,
            settings=settings,
        )


class MailSession:
    """Request handlers for one client connection."""

    def __init__(
        self,
        channel: DeliveryChannel,
        services: Services,
        trusted_owner_id: str | None = None,
    ) -> None:
        """Create a session.

        Args:
            channel: Where responses and pushed events go.
            services: Shared collaborators.
            trusted_owner_id: Owner established by the transport's
                authentication. Overrides any owner id a client sends.
        """

        self.channel = channel
        self.services = services
        self.trusted_owner_id = trusted_owner_id
        self.connection_id = uuid.uuid4().hex
        self.tracker = ContinuationTracker()
        self.debounce = DebounceCoordinator(services.settings.debounce_delay_seconds)
        self.closed = False
        self._handlers: dict[str, Handler] = {
            "mail:init": self._on_init,
            "mail:getFolder": self._on_get_folder,
            "mail:getMessage": self._on_get_message,
            "mail:getAttachments": self._on_get_attachments,
            "mail:send": self._on_send,
            "mail:reply": self._on_reply,
            "mail:replyAll": self._on_reply_all,
            "mail:markRead": self._on_mark_read,
            "mail:markImportant": self._on_mark_important,
            "mail:updateCategory": self._on_update_category,
            "mail:delete": self._on_delete,
            "mail:enrichEmails": self._on_enrich,
            "mail:retryEnrichment": self._on_retry_enrichment,
            "focus:getStatistics": self._on_focus_statistics,
            "focus:getMessages": self._on_focus_messages,
            "categories:get": self._on_categories_get,
            "categories:update": self._on_categories_update,
            "categories:add": self._on_category_add,
            "categories:delete": self._on_category_delete,
        }

    @property
    def events(self) -> list[str]:
        return sorted(self._handlers)

    async def handle(self, event: str, payload: dict[str, Any] | None = None) -> None:
        """Dispatch one client request."""

        handler = self._handlers.get(event)
        if handler is None:
            await self._emit_error(ValidationError(f"Unknown event: {event}"), event)
            return
        await self._guarded(event, handler, payload or {})

    async def close(self) -> None:
        """Tear down per-connection state. In-flight enrichment keeps running."""

        if self.closed:
            return
        self.closed = True
        self.debounce.cancel_all()
        self.tracker.clear_connection(self.connection_id)
        self.services.enrichment.registry.unregister(self.channel)
        logger.info("session_closed", connection_id=self.connection_id)

    # Handlers

    async def _on_init(self, payload: dict[str, Any]) -> None:
        request = InitRequest.model_validate(self._with_owner(payload))
        owner = await self._owner(request.owner_id)

        credentials = await self.services.credentials.list_credentials(owner.external_id)
        if not credentials:
            raise CredentialMissingError(
                "No email accounts connected. Please connect your email account first."
            )
        mailboxes = [c.mailbox for c in credentials]
        mailbox = request.mailbox or mailboxes[0]
        if mailbox not in mailboxes:
            raise CredentialMissingError(
                f"Email account {mailbox} not connected. "
                "Please connect this account or use a connected account."
            )

        self.services.enrichment.registry.register(owner.id, self.channel)
        credential = await self.services.orchestrator.credential_for(owner, mailbox)
        folders = await self._remote(
            self.services.provider.list_folders(credential), "list_folders"
        )
        await self.channel.emit(
            "mail:folders", {"mailbox": mailbox, "folders": [asdict(f) for f in folders]}
        )

    async def _on_get_folder(self, payload: dict[str, Any]) -> None:
        request = FolderPageRequest.model_validate(self._with_owner(payload))

        async def run() -> None:
            await self._guarded("mail:getFolder", self._sync_folder, request)

        self.debounce.schedule(request.debounce_key(), run)

    async def _sync_folder(self, request: FolderPageRequest) -> None:
        result = await self.services.orchestrator.sync_page(
            request,
            tracker=self.tracker,
            connection_id=self.connection_id,
            trusted_owner_id=self.trusted_owner_id,
        )
        if not self.closed:
            await self.channel.emit("mail:folderMessages", result.to_payload())

    async def _on_get_message(self, payload: dict[str, Any]) -> None:
        request = MessageRequest.model_validate(self._with_owner(payload))
        owner = await self._owner(request.owner_id)
        message = await self.services.orchestrator.refresh_message(
            owner, request.mailbox, request.message_id
        )
        await self.channel.emit("mail:message", message.model_dump(mode="json"))

    async def _on_get_attachments(self, payload: dict[str, Any]) -> None:
        request = MessageRequest.model_validate(self._with_owner(payload))
        owner = await self._owner(request.owner_id)
        credential = await self.services.orchestrator.credential_for(owner, request.mailbox)
        attachments = await self._remote(
            self.services.provider.get_attachments(credential, request.message_id),
            "get_attachments",
        )
        await self.channel.emit(
            "mail:attachments",
            {"messageId": request.message_id, "attachments": [asdict(a) for a in attachments]},
        )

    async def _on_send(self, payload: dict[str, Any]) -> None:
        request = SendRequest.model_validate(self._with_owner(payload))
        owner = await self._owner(request.owner_id)
        credential = await self.services.orchestrator.credential_for(owner, request.mailbox)
        sent_id = await self._remote(
            self.services.provider.send(
                credential,
                OutgoingMessage(
                    to=request.to,
                    subject=request.subject,
                    body=request.body,
                    cc=request.cc,
                    bcc=request.bcc,
                ),
            ),
            "send",
        )
        await self.channel.emit("mail:sent", {"success": True, "messageId": sent_id})

    async def _on_reply(self, payload: dict[str, Any]) -> None:
        await self._reply(payload, reply_all=False)

    async def _on_reply_all(self, payload: dict[str, Any]) -> None:
        await self._reply(payload, reply_all=True)

    async def _reply(self, payload: dict[str, Any], *, reply_all: bool) -> None:
        request = ReplyRequest.model_validate(self._with_owner(payload))
        owner = await self._owner(request.owner_id)
        credential = await self.services.orchestrator.credential_for(owner, request.mailbox)
        draft = ReplyDraft(comment=request.comment, to=request.to, cc=request.cc, bcc=request.bcc)
        sent_id = await self._remote(
            self.services.provider.reply(credential, request.message_id, draft, reply_all=reply_all),
            "reply_all" if reply_all else "reply",
        )
        event = "mail:repliedAll" if reply_all else "mail:replied"
        await self.channel.emit(event, {"success": True, "messageId": sent_id})

    async def _on_mark_read(self, payload: dict[str, Any]) -> None:
        request = MessageRequest.model_validate(self._with_owner(payload))
        owner = await self._owner(request.owner_id)
        credential = await self.services.orchestrator.credential_for(owner, request.mailbox)
        await self._remote(
            self.services.provider.mark_read(credential, request.message_id), "mark_read"
        )
        await self.services.store.update_flags(request.mailbox, request.message_id, read=True)
        await self.channel.emit("mail:read", {"messageId": request.message_id})

    async def _on_mark_important(self, payload: dict[str, Any]) -> None:
        request = ImportantRequest.model_validate(self._with_owner(payload))
        owner = await self._owner(request.owner_id)
        credential = await self.services.orchestrator.credential_for(owner, request.mailbox)
        await self._remote(
            self.services.provider.mark_important(credential, request.message_id, request.flag),
            "mark_important",
        )
        await self.services.store.update_flags(
            request.mailbox, request.message_id, important=request.flag
        )
        await self.channel.emit(
            "mail:important", {"messageId": request.message_id, "flag": request.flag}
        )

    async def _on_update_category(self, payload: dict[str, Any]) -> None:
        request = CategoryRequest.model_validate(self._with_owner(payload))
        owner = await self._owner(request.owner_id)
        account = await self.services.store.get_account(owner.id, request.mailbox)
        if account is None:
            raise NotFoundError("Email account not found")
        if request.category not in {c.name for c in account.categories}:
            raise ValidationError("Invalid category")

        updated = await self.services.store.update_category(
            request.mailbox, request.message_id, request.category
        )
        if updated is None:
            raise NotFoundError("Message not found")
        await self.channel.emit(
            "mail:categoryUpdated",
            {
                "messageId": request.message_id,
                "category": request.category,
                "email": updated.summary_view(),
            },
        )

    async def _on_delete(self, payload: dict[str, Any]) -> None:
        request = MessageRequest.model_validate(self._with_owner(payload))
        owner = await self._owner(request.owner_id)
        credential = await self.services.orchestrator.credential_for(owner, request.mailbox)
        await self._remote(self.services.provider.delete(credential, request.message_id), "delete")
        await self.services.store.delete_message(request.mailbox, request.message_id)
        await self.channel.emit("mail:deleted", {"messageId": request.message_id})

    async def _on_enrich(self, payload: dict[str, Any]) -> None:
        request = EnrichRequest.model_validate(self._with_owner(payload))
        owner = await self._owner(request.owner_id)
        queue = self.services.enrichment

        messages = []
        for message_id in dict.fromkeys(request.message_ids):
            message = await self.services.store.find_message(request.mailbox, message_id)
            if message is None or message.owner_id != owner.id:
                await self._status(message_id, "error", f"Message not found: {message_id}")
                continue
            messages.append(message)

        queued = set(
            await queue.submit(messages, self.channel, force_reanalyze=request.force_reanalyze)
        )

        for message in messages:
            if message.id in queued or queue.is_in_flight(message.mailbox, message.id):
                continue
            if message.enrichment is not None and message.enrichment.is_failed:
                # Failed markers are only cleared by an explicit retry.
                if message.enrichment.error == WAITING_FOR_CATEGORIES:
                    await self._status(message.id, "waiting", CATEGORIES_PROMPT)
                else:
                    await self._status(message.id, "error", message.enrichment.error)
                continue
            payload_out = {
                "messageId": message.id,
                "status": "completed",
                "message": "Already enriched",
                "email": message.summary_view(),
            }
            if message.enrichment is not None:
                payload_out["enrichment"] = message.enrichment.model_dump(mode="json")
            await self.channel.emit(ENRICHMENT_STATUS_EVENT, payload_out)

    async def _on_retry_enrichment(self, payload: dict[str, Any]) -> None:
        request = MessageRequest.model_validate(self._with_owner(payload))
        owner = await self._owner(request.owner_id)
        queued = await self.services.enrichment.retry(
            owner, request.mailbox, request.message_id, self.channel
        )
        if not queued:
            await self._status(request.message_id, "analyzing", "Enrichment already in progress")

    async def _on_focus_statistics(self, payload: dict[str, Any]) -> None:
        request = MailRequest.model_validate(self._with_owner(payload))
        owner = await self._owner(request.owner_id)
        stats = await self.services.focus.get_statistics(owner.id, request.mailbox)
        await self.channel.emit("focus:statistics", stats.model_dump(mode="json"))

    async def _on_focus_messages(self, payload: dict[str, Any]) -> None:
        request = BucketRequest.model_validate(self._with_owner(payload))
        owner = await self._owner(request.owner_id)
        result = await self.services.focus.messages_in_bucket(
            owner.id, request.mailbox, request.bucket, page=request.page
        )
        await self.channel.emit("focus:messages", result.to_payload())

    async def _on_categories_get(self, payload: dict[str, Any]) -> None:
        request = MailRequest.model_validate(self._with_owner(payload))
        owner = await self._owner(request.owner_id)
        categories = await self.services.categories.list_categories(owner.id, request.mailbox)
        await self._emit_categories(request.mailbox, categories)

    async def _on_categories_update(self, payload: dict[str, Any]) -> None:
        request = CategoriesUpdateRequest.model_validate(self._with_owner(payload))
        owner = await self._owner(request.owner_id)
        categories = await self.services.categories.replace_categories(
            owner.id, request.mailbox, request.categories
        )
        await self._emit_categories(request.mailbox, categories)

    async def _on_category_add(self, payload: dict[str, Any]) -> None:
        request = CategoryAddRequest.model_validate(self._with_owner(payload))
        owner = await self._owner(request.owner_id)
        categories = await self.services.categories.add_category(
            owner.id, request.mailbox, request.category
        )
        await self._emit_categories(request.mailbox, categories)

    async def _on_category_delete(self, payload: dict[str, Any]) -> None:
        request = CategoryDeleteRequest.model_validate(self._with_owner(payload))
        owner = await self._owner(request.owner_id)
        categories = await self.services.categories.delete_category(
            owner.id, request.mailbox, request.category_name
        )
        await self._emit_categories(request.mailbox, categories)

    # Helpers

    def _with_owner(self, payload: dict[str, Any]) -> dict[str, Any]:
        if self.trusted_owner_id is None:
            return payload
        return {**payload, "ownerId": self.trusted_owner_id}

    async def _owner(self, client_owner_id: str) -> Owner:
        return await self.services.orchestrator.resolve_owner(client_owner_id, self.trusted_owner_id)

    async def _remote(self, awaitable: Awaitable[T], operation: str) -> T:
        return await bounded(
            awaitable,
            timeout=self.services.settings.remote_timeout_seconds,
            error_cls=RemoteFetchError,
            operation=operation,
        )

    async def _emit_categories(self, mailbox: str, categories: list[Category]) -> None:
        await self.channel.emit(
            "categories:list",
            {"mailbox": mailbox, "categories": [c.model_dump(mode="json") for c in categories]},
        )

    async def _status(self, message_id: str, status: str, text: str) -> None:
        await self.channel.emit(
            ENRICHMENT_STATUS_EVENT, {"messageId": message_id, "status": status, "message": text}
        )

    async def _guarded(
        self, event: str, handler: Callable[[Any], Awaitable[None]], arg: Any
    ) -> None:
        try:
            await handler(arg)
        except MailboxSyncError as exc:
            await self._emit_error(exc, event)
        except PydanticValidationError as exc:
            error = ValidationError(f"Invalid {event} request: {exc.error_count()} error(s)")
            await self._emit_error(error, event)

    async def _emit_error(self, exc: MailboxSyncError, event: str) -> None:
        logger.warning("request_failed", event_name=event, kind=exc.kind.value, error=str(exc))
        if self.closed:
            return
        await self.channel.emit(
            "mail:error", {"message": str(exc), "kind": exc.kind.value, "event": event}
        )
