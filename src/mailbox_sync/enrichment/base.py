"""Collaborator interfaces for the enrichment pipeline."""

from __future__ import annotations

from typing import Any, Protocol

from mailbox_sync.models import Category, EnrichmentMetadata, Message


class Enricher(Protocol):
    """Derives enrichment metadata for one message.

    Implementations raise ``CategoriesMissingError`` when ``categories`` is
    empty and ``EnrichmentError`` for any other failure.
    """

    async def enrich(self, message: Message, categories: list[Category]) -> EnrichmentMetadata: ...


class DeliveryChannel(Protocol):
    """A client connection that accepts pushed events."""

    async def emit(self, event: str, payload: dict[str, Any]) -> None: ...
