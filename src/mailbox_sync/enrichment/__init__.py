"""Asynchronous message enrichment."""

from .base import DeliveryChannel, Enricher
from .channels import ChannelRegistry
from .ollama import OllamaEnricher, parse_enrichment_response
from .prompt import build_enrichment_prompt
from .queue import (
    CATEGORIES_PROMPT,
    ENRICHMENT_STATUS_EVENT,
    WAITING_FOR_CATEGORIES,
    EnrichmentDispatchQueue,
    needs_enrichment,
)

__all__ = [
    "CATEGORIES_PROMPT",
    "ChannelRegistry",
    "DeliveryChannel",
    "ENRICHMENT_STATUS_EVENT",
    "Enricher",
    "EnrichmentDispatchQueue",
    "OllamaEnricher",
    "WAITING_FOR_CATEGORIES",
    "build_enrichment_prompt",
    "needs_enrichment",
    "parse_enrichment_response",
]
