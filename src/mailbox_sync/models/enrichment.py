"""Enrichment metadata models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

IN_FLIGHT_SUMMARY = "Analyzing..."
FAILED_SUMMARY = "Analysis failed"


class Priority(str, Enum):
    """Message priority assigned by enrichment."""

    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Sentiment(str, Enum):
    """Message sentiment assigned by enrichment."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class EnrichmentMetadata(BaseModel):
    """Derived annotations for a message.

    Absent on a message means "not yet enriched". A record whose summary is
    ``IN_FLIGHT_SUMMARY`` is being analyzed; one with an ``error`` failed.
    """

    summary: str | None = Field(default=None, description="Short summary")
    category: str | None = Field(default=None, description="Account category name")
    priority: Priority | None = Field(default=None, description="Priority level")
    sentiment: Sentiment | None = Field(default=None, description="Overall sentiment")
    action_items: list[str] = Field(default_factory=list, description="Ordered next steps")
    enriched_at: datetime | None = Field(default=None, description="Completion time")
    version: str | None = Field(default=None, description="Enrichment schema version")
    error: str | None = Field(default=None, description="Failure reason")

    @classmethod
    def in_flight(cls, version: str) -> EnrichmentMetadata:
        return cls(summary=IN_FLIGHT_SUMMARY, version=version)

    @classmethod
    def failed(cls, error: str, version: str) -> EnrichmentMetadata:
        return cls(
            summary=FAILED_SUMMARY,
            error=error,
            enriched_at=datetime.now(timezone.utc),
            version=version,
        )

    @property
    def is_in_flight(self) -> bool:
        return self.summary == IN_FLIGHT_SUMMARY and self.enriched_at is None

    @property
    def is_failed(self) -> bool:
        return self.error is not None

    @property
    def is_enriched(self) -> bool:
        return self.enriched_at is not None and self.error is None
