"""Message models.

``RemoteMessage`` is the shape returned by a mailbox provider. ``Message`` is
the locally stored record: the provider fields plus ownership, focus bucket,
processing state and enrichment metadata.
"""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import getaddresses

from pydantic import BaseModel, Field

from mailbox_sync.models.enrichment import EnrichmentMetadata

NO_SUBJECT = "(No Subject)"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RemoteMessage(BaseModel):
    """A message as reported by the remote provider."""

    id: str = Field(description="Provider-assigned message ID, unique per mailbox")
    folder: str = Field(default="", description="Provider folder identifier")

    # Raw header values, e.g. "Team <team@co.com>"
    sender: str = Field(default="", description="From header")
    to: str = Field(default="", description="To header")
    cc: str = Field(default="", description="Cc header")
    bcc: str = Field(default="", description="Bcc header")

    subject: str = Field(default=NO_SUBJECT, description="Subject header")
    preview: str = Field(default="", description="Short body preview")
    content: str = Field(default="", description="Full body content")
    timestamp: datetime = Field(default_factory=_utcnow, description="Received time")

    read: bool = Field(default=False, description="Whether the message has been read")
    important: bool = Field(default=False, description="Whether marked important")
    flagged: bool = Field(default=False, description="Whether flagged/starred")

    conversation_id: str | None = Field(default=None, description="Provider thread ID")

    @property
    def sender_address(self) -> str:
        """Parsed address of the sender, lower-cased."""

        addrs = [addr for _, addr in getaddresses([self.sender]) if addr]
        return (addrs[0] if addrs else self.sender).strip().lower()


class Message(RemoteMessage):
    """A locally stored message."""

    owner_id: str = Field(description="Owner reference")
    mailbox: str = Field(description="Mailbox address the message belongs to")

    focus_folder: str | None = Field(default=None, description="Assigned focus bucket")
    is_processed: bool = Field(default=False, description="Whether enrichment completed")
    enrichment: EnrichmentMetadata | None = Field(
        default=None, description="Derived metadata, absent until enriched"
    )
    updated_at: datetime = Field(default_factory=_utcnow, description="Last local write")

    @classmethod
    def from_remote(cls, remote: RemoteMessage, *, owner_id: str, mailbox: str) -> Message:
        """Build a fresh, never-enriched record from a provider message."""

        return cls(**remote.model_dump(), owner_id=owner_id, mailbox=mailbox)

    def summary_view(self) -> dict:
        """Serialize for list responses (body content omitted)."""

        return self.model_dump(mode="json", exclude={"content"})
