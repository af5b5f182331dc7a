"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import base64
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio

from mailbox_sync.config import Settings
from mailbox_sync.exceptions import EnrichmentError
from mailbox_sync.models import (
    Account,
    Category,
    Credential,
    EnrichmentMetadata,
    Message,
    Owner,
    Priority,
    RemoteMessage,
    Sentiment,
)
from mailbox_sync.provider import Attachment, Folder, ProviderPage
from mailbox_sync.store import SqliteMessageStore

OWNER_ID = "owner-1"
EXTERNAL_ID = "user-ext-1"
MAILBOX = "me@co.com"

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_remote(message_id: str, **overrides: Any) -> RemoteMessage:
    """Build a provider message with stable defaults."""

    index = int("".join(c for c in message_id if c.isdigit()) or 0)
    data: dict[str, Any] = {
        "id": message_id,
        "folder": "INBOX",
        "sender": "Team <team@co.com>",
        "to": MAILBOX,
        "subject": f"Subject {message_id}",
        "preview": f"Preview {message_id}",
        "content": f"<p>Body of {message_id}</p>",
        "timestamp": BASE_TIME - timedelta(minutes=index),
    }
    data.update(overrides)
    return RemoteMessage(**data)


def make_message(message_id: str, **overrides: Any) -> Message:
    enrichment = overrides.pop("enrichment", None)
    is_processed = overrides.pop("is_processed", enrichment is not None)
    return Message.from_remote(
        make_remote(message_id, **overrides), owner_id=OWNER_ID, mailbox=MAILBOX
    ).model_copy(update={"enrichment": enrichment, "is_processed": is_processed})


def make_enrichment(**overrides: Any) -> EnrichmentMetadata:
    data: dict[str, Any] = {
        "summary": "Already summarized",
        "category": "work",
        "priority": Priority.HIGH,
        "sentiment": Sentiment.NEUTRAL,
        "action_items": ["Reply"],
        "enriched_at": BASE_TIME,
        "version": "1.0",
    }
    data.update(overrides)
    return EnrichmentMetadata(**data)


class FakeProvider:
    """In-memory mailbox provider.

    ``folders`` maps a folder id to a list of pages. Continuation tokens are
    ``"t<page index>"``.
    """

    def __init__(self) -> None:
        self.folders: dict[str, list[list[RemoteMessage]]] = {}
        self.messages: dict[str, RemoteMessage] = {}
        self.list_calls: list[tuple[str, str | None]] = []
        self.calls: list[tuple[str, Any]] = []
        self.error: Exception | None = None
        self.delay: float = 0.0

    def set_pages(self, folder_id: str, pages: list[list[RemoteMessage]]) -> None:
        self.folders[folder_id] = pages
        for page in pages:
            for message in page:
                self.messages[message.id] = message

    async def _maybe_fail(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

    async def list_folders(self, credential: Credential) -> list[Folder]:
        await self._maybe_fail()
        return [Folder(id=f, name=f.title(), total_count=len(p)) for f, p in self.folders.items()]

    async def list_messages(
        self,
        credential: Credential,
        folder_id: str,
        continuation_token: str | None,
        page_size: int,
    ) -> ProviderPage:
        self.list_calls.append((folder_id, continuation_token))
        await self._maybe_fail()
        pages = self.folders.get(folder_id, [])
        index = 0 if continuation_token is None else int(continuation_token[1:])
        messages = pages[index] if index < len(pages) else []
        token = f"t{index + 1}" if index + 1 < len(pages) else None
        return ProviderPage(messages=list(messages), continuation_token=token)

    async def get_message(self, credential: Credential, message_id: str) -> RemoteMessage | None:
        self.calls.append(("get_message", message_id))
        await self._maybe_fail()
        return self.messages.get(message_id)

    async def get_attachments(self, credential: Credential, message_id: str) -> list[Attachment]:
        self.calls.append(("get_attachments", message_id))
        await self._maybe_fail()
        return [Attachment(id="a1", filename="report.pdf", content_type="application/pdf", size=3)]

    async def send(self, credential: Credential, message: Any) -> str:
        self.calls.append(("send", message))
        await self._maybe_fail()
        return "sent-1"

    async def reply(
        self, credential: Credential, message_id: str, draft: Any, *, reply_all: bool = False
    ) -> str:
        self.calls.append(("reply_all" if reply_all else "reply", (message_id, draft)))
        await self._maybe_fail()
        return "reply-1"

    async def mark_read(self, credential: Credential, message_id: str) -> bool:
        self.calls.append(("mark_read", message_id))
        await self._maybe_fail()
        return True

    async def mark_important(self, credential: Credential, message_id: str, flag: bool) -> bool:
        self.calls.append(("mark_important", (message_id, flag)))
        await self._maybe_fail()
        return True

    async def delete(self, credential: Credential, message_id: str) -> bool:
        self.calls.append(("delete", message_id))
        await self._maybe_fail()
        return True


class FakeCredentialResolver:
    def __init__(self, mailboxes: dict[str, list[str]] | None = None) -> None:
        self.mailboxes = mailboxes if mailboxes is not None else {EXTERNAL_ID: [MAILBOX]}

    async def get_token(self, owner_id: str, mailbox: str, provider_name: str) -> Credential | None:
        if mailbox not in self.mailboxes.get(owner_id, []):
            return None
        return Credential(
            owner_id=owner_id, mailbox=mailbox, provider=provider_name, token_info={"token": "x"}
        )

    async def list_credentials(self, owner_id: str) -> list[Credential]:
        return [
            Credential(owner_id=owner_id, mailbox=m, provider="gmail")
            for m in self.mailboxes.get(owner_id, [])
        ]


class FakeEnricher:
    """Enricher returning deterministic metadata.

    Set ``gate`` to an ``asyncio.Event`` to hold jobs until it is set.
    """

    def __init__(self) -> None:
        self.calls: list[Message] = []
        self.errors: dict[str, Exception] = {}
        self.gate: asyncio.Event | None = None
        self.delay: float = 0.0

    async def enrich(self, message: Message, categories: list[Category]) -> EnrichmentMetadata:
        self.calls.append(message)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if message.id in self.errors:
            raise self.errors[message.id]
        if not categories:
            from mailbox_sync.exceptions import CategoriesMissingError

            raise CategoriesMissingError("No categories defined yet")
        if categories[0].name == "broken":
            raise EnrichmentError("model unavailable")
        return EnrichmentMetadata(
            summary=f"Summary of {message.content}",
            category=categories[0].name,
            priority=Priority.HIGH,
            sentiment=Sentiment.POSITIVE,
            action_items=["Follow up"],
            enriched_at=datetime.now(timezone.utc),
            version="1.0",
        )


class RecordingChannel:
    """Delivery channel that records every emitted event."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    def of(self, event: str) -> list[dict[str, Any]]:
        return [p for e, p in self.events if e == event]

    def statuses(self, message_id: str) -> list[str]:
        return [
            p["status"]
            for e, p in self.events
            if e == "mail:enrichmentStatus" and p.get("messageId") == message_id
        ]


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Provide settings tuned for fast tests."""

    return Settings(
        page_size=2,
        debounce_delay_seconds=0.05,
        remote_timeout_seconds=0.5,
        enrichment_timeout_seconds=0.5,
        enrichment_workers=2,
        store_db_path=tmp_path / "store.sqlite3",
        ollama_host="http://test:11434",
        ollama_model="test-model",
        log_level="DEBUG",
        debug=True,
    )


@pytest_asyncio.fixture
async def store(settings) -> SqliteMessageStore:
    """Provide an initialized store with one owner and one account."""

    store = SqliteMessageStore(settings.store_db_path)
    store.initialize()
    await store.save_owner(Owner(id=OWNER_ID, external_id=EXTERNAL_ID, email=MAILBOX))
    await store.save_account(
        Account(
            owner_id=OWNER_ID,
            mailbox=MAILBOX,
            categories=[
                Category(name="work", label="Work", description="Work related mail"),
                Category(name="personal", label="Personal"),
            ],
        )
    )
    return store


@pytest.fixture
def owner() -> Owner:
    return Owner(id=OWNER_ID, external_id=EXTERNAL_ID, email=MAILBOX)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def credentials() -> FakeCredentialResolver:
    return FakeCredentialResolver()


@pytest.fixture
def enricher() -> FakeEnricher:
    return FakeEnricher()


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


def _b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


@pytest.fixture
def sample_email_data() -> dict:
    """Provide a Gmail API message (format=full)."""
    return {
        "id": "msg123456",
        "threadId": "thread789",
        "labelIds": ["INBOX", "UNREAD", "STARRED"],
        "snippet": "Weekly Newsletter - Python Tips",
        "internalDate": "1714564800000",
        "payload": {
            "mimeType": "multipart/mixed",
            "headers": [
                {"name": "Subject", "value": "Weekly Newsletter - Python Tips"},
                {"name": "From", "value": "Python <newsletter@python.org>"},
                {"name": "To", "value": "user@example.com"},
                {"name": "Cc", "value": "team@example.com"},
                {"name": "Message-ID", "value": "<abc@python.org>"},
            ],
            "parts": [
                {
                    "mimeType": "multipart/alternative",
                    "parts": [
                        {"mimeType": "text/plain", "body": {"data": _b64("Plain tips")}},
                        {"mimeType": "text/html", "body": {"data": _b64("<b>Tips</b>")}},
                    ],
                },
                {
                    "mimeType": "application/pdf",
                    "filename": "tips.pdf",
                    "headers": [{"name": "Content-ID", "value": "<tips-1>"}],
                    "body": {"attachmentId": "att-1", "size": 1024},
                },
            ],
        },
    }
