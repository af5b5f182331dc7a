"""Gmail implementation of the mailbox provider interface.

Notes:
    The Google API client is synchronous. This provider wraps those calls using
    `asyncio.to_thread` so the rest of the codebase can remain async-friendly.
"""

from __future__ import annotations

import asyncio
import base64
from collections.abc import Callable
from email.message import EmailMessage
from email.utils import getaddresses
from typing import Any

import structlog

from mailbox_sync.config import Settings
from mailbox_sync.exceptions import RemoteFetchError
from mailbox_sync.models import Credential, RemoteMessage
from mailbox_sync.provider.base import (
    Attachment,
    Folder,
    OutgoingMessage,
    ProviderPage,
    ReplyDraft,
)
from mailbox_sync.provider.parsing import (
    message_attachments,
    message_to_remote,
    primary_folder,
    reply_headers,
)

logger = structlog.get_logger()

ServiceFactory = Callable[[Credential], Any]


def build_gmail_service(credential: Credential) -> Any:
    """Build a Gmail API service from an authorized-user token payload."""

    # Imported lazily to keep import-time cost low and tests fast.
    from google.oauth2.credentials import Credentials
    from googleapiclient.discovery import build

    creds = Credentials.from_authorized_user_info(credential.token_info)
    # cache_discovery=False prevents writing discovery docs to disk.
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


class GmailMailboxProvider:
    """Gmail API mailbox provider.

    Gmail labels act as folders and Gmail ``pageToken`` values act as
    continuation tokens.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        service_factory: ServiceFactory | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            settings: Application settings. If None, uses default settings.
            service_factory: Builds a Gmail service for a credential.
        """
        from mailbox_sync.config import get_settings

        self.settings = settings or get_settings()
        self._service_factory = service_factory or build_gmail_service
        self._services: dict[tuple[str, str], Any] = {}
        logger.info("gmail_provider_initialized")

    async def list_folders(self, credential: Credential) -> list[Folder]:
        logger.info("listing_folders", mailbox=credential.mailbox)
        return await self._call("list_folders", self._list_folders_sync, credential)

    async def list_messages(
        self,
        credential: Credential,
        folder_id: str,
        continuation_token: str | None,
        page_size: int,
    ) -> ProviderPage:
        logger.info(
            "listing_messages",
            mailbox=credential.mailbox,
            folder_id=folder_id,
            page_size=page_size,
            resumed=continuation_token is not None,
        )
        return await self._call(
            "list_messages",
            self._list_messages_sync,
            credential,
            folder_id,
            continuation_token,
            page_size,
        )

    async def get_message(self, credential: Credential, message_id: str) -> RemoteMessage | None:
        logger.info("getting_message", message_id=message_id)
        raw = await self._call("get_message", self._get_raw_sync, credential, message_id, "full")
        if raw is None:
            return None
        return message_to_remote(raw, folder_id=primary_folder(raw.get("labelIds") or []))

    async def get_attachments(self, credential: Credential, message_id: str) -> list[Attachment]:
        logger.info("getting_attachments", message_id=message_id)
        return await self._call(
            "get_attachments", self._get_attachments_sync, credential, message_id
        )

    async def send(self, credential: Credential, message: OutgoingMessage) -> str:
        mime = EmailMessage()
        mime["From"] = credential.mailbox
        mime["To"] = ", ".join(message.to)
        if message.cc:
            mime["Cc"] = ", ".join(message.cc)
        if message.bcc:
            mime["Bcc"] = ", ".join(message.bcc)
        mime["Subject"] = message.subject
        mime.set_content(message.body)
        logger.info("sending_message", mailbox=credential.mailbox, recipients=len(message.to))
        return await self._call("send", self._send_sync, credential, mime, None)

    async def reply(
        self,
        credential: Credential,
        message_id: str,
        draft: ReplyDraft,
        *,
        reply_all: bool = False,
    ) -> str:
        original = await self._call(
            "reply", self._get_raw_sync, credential, message_id, "metadata"
        )
        if original is None:
            raise RemoteFetchError(f"Message {message_id} not found")

        hm = reply_headers(original)
        own = credential.mailbox.lower()
        to = list(draft.to) or [addr for _, addr in getaddresses([hm.get("from", "")]) if addr]
        cc = list(draft.cc)
        if reply_all:
            for _, addr in getaddresses([hm.get("to", ""), hm.get("cc", "")]):
                if addr and addr.lower() != own and addr not in to and addr not in cc:
                    cc.append(addr)

        subject = hm.get("subject", "")
        if not subject.lower().startswith("re:"):
            subject = f"Re: {subject}"

        mime = EmailMessage()
        mime["From"] = credential.mailbox
        mime["To"] = ", ".join(to)
        if cc:
            mime["Cc"] = ", ".join(cc)
        if draft.bcc:
            mime["Bcc"] = ", ".join(draft.bcc)
        mime["Subject"] = subject
        if hm.get("message-id"):
            mime["In-Reply-To"] = hm["message-id"]
            mime["References"] = " ".join(filter(None, [hm.get("references"), hm["message-id"]]))
        mime.set_content(draft.comment)

        logger.info("replying_to_message", message_id=message_id, reply_all=reply_all)
        return await self._call(
            "reply", self._send_sync, credential, mime, original.get("threadId")
        )

    async def mark_read(self, credential: Credential, message_id: str) -> bool:
        await self._call(
            "mark_read", self._modify_sync, credential, message_id, [], ["UNREAD"]
        )
        return True

    async def mark_important(self, credential: Credential, message_id: str, flag: bool) -> bool:
        add, remove = (["IMPORTANT"], []) if flag else ([], ["IMPORTANT"])
        await self._call("mark_important", self._modify_sync, credential, message_id, add, remove)
        return True

    async def delete(self, credential: Credential, message_id: str) -> bool:
        await self._call("delete", self._trash_sync, credential, message_id)
        return True

    async def _call(self, operation: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except RemoteFetchError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("gmail_call_failed", operation=operation, error=str(exc))
            raise RemoteFetchError(f"Gmail {operation} failed: {exc}") from exc

    def _service(self, credential: Credential) -> Any:
        key = (credential.owner_id, credential.mailbox)
        service = self._services.get(key)
        if service is None:
            service = self._service_factory(credential)
            self._services[key] = service
        return service

    def _messages(self, credential: Credential) -> Any:
        return self._service(credential).users().messages()

    def _list_folders_sync(self, credential: Credential) -> list[Folder]:
        response = (
            self._service(credential)
            .users()
            .labels()
            .list(userId=self.settings.gmail_user_id)
            .execute()
        )
        return [
            Folder(
                id=str(label["id"]),
                name=str(label.get("name") or label["id"]),
                total_count=label.get("messagesTotal"),
                unread_count=label.get("messagesUnread"),
            )
            for label in response.get("labels", []) or []
        ]

    def _list_messages_sync(
        self,
        credential: Credential,
        folder_id: str,
        continuation_token: str | None,
        page_size: int,
    ) -> ProviderPage:
        response = (
            self._messages(credential)
            .list(
                userId=self.settings.gmail_user_id,
                labelIds=[folder_id],
                maxResults=page_size,
                pageToken=continuation_token,
            )
            .execute()
        )
        messages: list[RemoteMessage] = []
        for ref in response.get("messages", []) or []:
            message_id = ref.get("id")
            if not isinstance(message_id, str) or not message_id:
                continue
            raw = self._get_raw_sync(credential, message_id, "full")
            if raw is not None:
                messages.append(message_to_remote(raw, folder_id=folder_id))
        return ProviderPage(messages=messages, continuation_token=response.get("nextPageToken"))

    def _get_raw_sync(self, credential: Credential, message_id: str, format: str) -> dict[str, Any] | None:
        return (
            self._messages(credential)
            .get(userId=self.settings.gmail_user_id, id=message_id, format=format)
            .execute()
        )

    def _get_attachments_sync(self, credential: Credential, message_id: str) -> list[Attachment]:
        raw = self._get_raw_sync(credential, message_id, "full") or {}
        result: list[Attachment] = []
        for attachment in message_attachments(raw):
            body = (
                self._messages(credential)
                .attachments()
                .get(userId=self.settings.gmail_user_id, messageId=message_id, id=attachment.id)
                .execute()
            )
            data = body.get("data") or ""
            content = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
            result.append(
                Attachment(
                    id=attachment.id,
                    filename=attachment.filename,
                    content_type=attachment.content_type,
                    size=attachment.size,
                    content_id=attachment.content_id,
                    content_b64=base64.b64encode(content).decode("ascii"),
                )
            )
        return result

    def _send_sync(self, credential: Credential, mime: EmailMessage, thread_id: str | None) -> str:
        body: dict[str, Any] = {"raw": base64.urlsafe_b64encode(mime.as_bytes()).decode("ascii")}
        if thread_id:
            body["threadId"] = thread_id
        response = (
            self._messages(credential)
            .send(userId=self.settings.gmail_user_id, body=body)
            .execute()
        )
        return str(response.get("id") or "")

    def _modify_sync(
        self,
        credential: Credential,
        message_id: str,
        add: list[str],
        remove: list[str],
    ) -> None:
        (
            self._messages(credential)
            .modify(
                userId=self.settings.gmail_user_id,
                id=message_id,
                body={"addLabelIds": add, "removeLabelIds": remove},
            )
            .execute()
        )

    def _trash_sync(self, credential: Credential, message_id: str) -> None:
        self._messages(credential).trash(userId=self.settings.gmail_user_id, id=message_id).execute()
