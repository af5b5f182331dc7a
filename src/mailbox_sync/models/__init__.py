"""Data models for Mailbox Sync.

This module contains Pydantic models for data validation and serialization.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from mailbox_sync.models.enrichment import (
    FAILED_SUMMARY,
    IN_FLIGHT_SUMMARY,
    EnrichmentMetadata,
    Priority,
    Sentiment,
)
from mailbox_sync.models.focus import (
    BucketStatistics,
    FocusItem,
    FocusRuleType,
    FocusStatistics,
    make_bucket_name,
)
from mailbox_sync.models.message import NO_SUBJECT, Message, RemoteMessage


class Category(BaseModel):
    """A user-defined enrichment category for an account."""

    name: str = Field(description="Internal name the enricher must return")
    label: str = Field(description="Display label")
    description: str = Field(default="", description="Guidance for the enricher")


class Owner(BaseModel):
    """An application user that owns one or more mailboxes."""

    id: str = Field(description="Internal owner reference")
    external_id: str = Field(description="Identity used by clients")
    email: str = Field(default="", description="Primary email address")
    name: str = Field(default="", description="Display name")


class Account(BaseModel):
    """A connected mailbox and its per-account configuration."""

    owner_id: str
    mailbox: str
    provider: str = "gmail"
    categories: list[Category] = Field(default_factory=list)
    focus_items: list[FocusItem] = Field(default_factory=list)
    is_active: bool = True


class Credential(BaseModel):
    """Opaque provider credential issued by the credential resolver."""

    owner_id: str
    mailbox: str
    provider: str
    token_info: dict[str, Any] = Field(default_factory=dict)


class MessageFilters(BaseModel):
    """Explicit filter structure for folder listings.

    ``"All"`` and empty values mean "no filter" for that field.
    """

    category: str | None = None
    priority: Priority | None = None
    sentiment: Sentiment | None = None

    @field_validator("category", "priority", "sentiment", mode="before")
    @classmethod
    def _all_means_none(cls, v: Any) -> Any:
        if v is None:
            return None
        if isinstance(v, str) and (not v.strip() or v.strip().lower() == "all"):
            return None
        return v

    @property
    def is_empty(self) -> bool:
        return self.category is None and self.priority is None and self.sentiment is None

    def cache_key(self) -> tuple[str, str, str]:
        return (
            self.category or "",
            self.priority.value if self.priority else "",
            self.sentiment.value if self.sentiment else "",
        )


class PageResult(BaseModel):
    """One page of a folder listing."""

    folder_id: str
    page: int
    messages: list[Message] = Field(default_factory=list)
    has_more: bool = False

    @property
    def next_page(self) -> int | None:
        return self.page + 1 if self.has_more else None

    def to_payload(self) -> dict[str, Any]:
        return {
            "messages": [m.summary_view() for m in self.messages],
            "folderId": self.folder_id,
            "page": self.page,
            "hasMore": self.has_more,
            "nextPage": self.next_page,
        }


__all__ = [
    "Account",
    "BucketStatistics",
    "Category",
    "Credential",
    "EnrichmentMetadata",
    "FAILED_SUMMARY",
    "FocusItem",
    "FocusRuleType",
    "FocusStatistics",
    "IN_FLIGHT_SUMMARY",
    "Message",
    "MessageFilters",
    "NO_SUBJECT",
    "Owner",
    "PageResult",
    "Priority",
    "RemoteMessage",
    "Sentiment",
    "make_bucket_name",
]
