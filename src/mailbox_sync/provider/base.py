"""Collaborator interfaces for the remote mailbox provider and credentials."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from mailbox_sync.models import Credential, RemoteMessage


@dataclass(frozen=True)
class Folder:
    """A provider folder (Gmail label, Outlook mail folder)."""

    id: str
    name: str
    total_count: int | None = None
    unread_count: int | None = None


@dataclass(frozen=True)
class ProviderPage:
    """One page of a provider folder listing.

    ``continuation_token`` is None when the provider has no further pages.
    """

    messages: list[RemoteMessage]
    continuation_token: str | None = None


@dataclass(frozen=True)
class Attachment:
    """Attachment metadata and base64 content."""

    id: str
    filename: str
    content_type: str
    size: int
    content_id: str | None = None
    content_b64: str | None = None


@dataclass(frozen=True)
class OutgoingMessage:
    """A new message to send."""

    to: list[str]
    subject: str
    body: str
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ReplyDraft:
    """A reply to an existing message."""

    comment: str
    to: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    bcc: list[str] = field(default_factory=list)


class MailboxProvider(Protocol):
    """Remote mailbox transport."""

    async def list_folders(self, credential: Credential) -> list[Folder]: ...

    async def list_messages(
        self,
        credential: Credential,
        folder_id: str,
        continuation_token: str | None,
        page_size: int,
    ) -> ProviderPage: ...

    async def get_message(self, credential: Credential, message_id: str) -> RemoteMessage | None: ...

    async def get_attachments(self, credential: Credential, message_id: str) -> list[Attachment]: ...

    async def send(self, credential: Credential, message: OutgoingMessage) -> str: ...

    async def reply(
        self,
        credential: Credential,
        message_id: str,
        draft: ReplyDraft,
        *,
        reply_all: bool = False,
    ) -> str: ...

    async def mark_read(self, credential: Credential, message_id: str) -> bool: ...

    async def mark_important(self, credential: Credential, message_id: str, flag: bool) -> bool: ...

    async def delete(self, credential: Credential, message_id: str) -> bool: ...


class CredentialResolver(Protocol):
    """Issues provider credentials for an owner's mailbox."""

    async def get_token(
        self, owner_id: str, mailbox: str, provider_name: str
    ) -> Credential | None: ...

    async def list_credentials(self, owner_id: str) -> list[Credential]: ...
