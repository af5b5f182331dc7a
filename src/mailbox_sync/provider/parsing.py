"""Helpers for parsing Gmail API messages into internal models."""

from __future__ import annotations

import base64
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from mailbox_sync.models import NO_SUBJECT, RemoteMessage
from mailbox_sync.provider.base import Attachment


def _header_map(message: dict[str, Any]) -> dict[str, str]:
    payload = message.get("payload") or {}
    headers = payload.get("headers") or []
    result: dict[str, str] = {}
    for h in headers:
        name = h.get("name")
        value = h.get("value")
        if isinstance(name, str) and isinstance(value, str):
            # Gmail can include duplicates; keep the first for now.
            result.setdefault(name.lower(), value)
    return result


def _decode_body(data: str | None) -> str:
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def _iter_parts(part: dict[str, Any]):
    yield part
    for child in part.get("parts") or []:
        yield from _iter_parts(child)


def _extract_content(payload: dict[str, Any]) -> str:
    html = None
    plain = None
    for part in _iter_parts(payload):
        if part.get("filename"):
            continue
        mime = part.get("mimeType", "")
        data = (part.get("body") or {}).get("data")
        if mime == "text/html" and html is None and data:
            html = _decode_body(data)
        elif mime == "text/plain" and plain is None and data:
            plain = _decode_body(data)
    return html or plain or ""


def _parse_timestamp(message: dict[str, Any], date_header: str | None) -> datetime:
    internal = message.get("internalDate")
    try:
        if internal is not None:
            return datetime.fromtimestamp(int(internal) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        pass
    if date_header:
        try:
            return parsedate_to_datetime(date_header)
        except (TypeError, ValueError, OverflowError):
            pass
    return datetime.now(timezone.utc)


# Labels that mark state rather than a folder a message lives in.
_STATE_LABELS = {"UNREAD", "IMPORTANT", "STARRED"}
_FOLDER_PRECEDENCE = ("INBOX", "SENT", "DRAFT", "SPAM", "TRASH")


def primary_folder(label_ids: list[str]) -> str:
    """Pick the folder a message belongs to from its Gmail labels."""

    for folder in _FOLDER_PRECEDENCE:
        if folder in label_ids:
            return folder
    for label in label_ids:
        if label not in _STATE_LABELS and not label.startswith("CATEGORY_"):
            return label
    return ""


def message_to_remote(message: dict[str, Any], folder_id: str = "") -> RemoteMessage:
    """Convert a Gmail API message (format=full) to RemoteMessage.

    Args:
        message: Gmail API message dict.
        folder_id: Folder (label) the message was listed from.

    Returns:
        RemoteMessage: Provider-sourced message fields.
    """

    hm = _header_map(message)

    label_ids = message.get("labelIds") or []
    if not isinstance(label_ids, list):
        label_ids = []

    payload = message.get("payload") or {}

    return RemoteMessage(
        id=str(message.get("id") or ""),
        folder=folder_id,
        sender=hm.get("from") or "",
        to=hm.get("to") or "",
        cc=hm.get("cc") or "",
        bcc=hm.get("bcc") or "",
        subject=hm.get("subject") or NO_SUBJECT,
        preview=str(message.get("snippet") or ""),
        content=_extract_content(payload),
        timestamp=_parse_timestamp(message, hm.get("date")),
        read="UNREAD" not in label_ids,
        important="IMPORTANT" in label_ids,
        flagged="STARRED" in label_ids,
        conversation_id=str(message.get("threadId") or "") or None,
    )


def message_attachments(message: dict[str, Any]) -> list[Attachment]:
    """List attachment parts of a Gmail message (content not included)."""

    result: list[Attachment] = []
    for part in _iter_parts(message.get("payload") or {}):
        body = part.get("body") or {}
        attachment_id = body.get("attachmentId")
        if not part.get("filename") or not attachment_id:
            continue
        headers = {h.get("name", "").lower(): h.get("value", "") for h in part.get("headers") or []}
        content_id = headers.get("content-id", "").strip("<>") or None
        result.append(
            Attachment(
                id=str(attachment_id),
                filename=str(part["filename"]),
                content_type=str(part.get("mimeType") or "application/octet-stream"),
                size=int(body.get("size") or 0),
                content_id=content_id,
            )
        )
    return result


def reply_headers(message: dict[str, Any]) -> dict[str, str]:
    """Headers needed to thread a reply to a Gmail message."""

    return _header_map(message)
