"""Ollama-backed enricher.

This module calls a local Ollama server to annotate a message with a
summary, category, priority, sentiment and action items.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import structlog

from mailbox_sync.config import Settings
from mailbox_sync.enrichment.prompt import build_enrichment_prompt
from mailbox_sync.exceptions import CategoriesMissingError, EnrichmentError
from mailbox_sync.models import Category, EnrichmentMetadata, Message, Priority, Sentiment

logger = structlog.get_logger()


def _extract_json_object(raw: str) -> dict[str, Any]:
    """Parse a JSON object, tolerating leading or trailing prose."""

    text = raw.strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        first, last = text.find("{"), text.rfind("}")
        if first == -1 or last <= first:
            raise EnrichmentError("Enricher returned no JSON object") from None
        try:
            data = json.loads(text[first : last + 1])
        except json.JSONDecodeError as exc:
            raise EnrichmentError(f"Failed to parse enricher response: {exc}") from exc

    if not isinstance(data, dict):
        raise EnrichmentError("Enricher response is not a JSON object")
    return data


def _coerce_enum(enum_cls: type, value: Any, default: Any) -> Any:
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            pass
    return default


def parse_enrichment_response(
    raw: str,
    categories: list[Category],
    *,
    version: str,
) -> EnrichmentMetadata:
    """Validate a model response against the account's categories.

    Raises:
        EnrichmentError: Unparseable response, or a category outside ``categories``.
    """

    data = _extract_json_object(raw)

    valid = [c.name for c in categories]
    category = data.get("category")
    if category not in valid:
        raise EnrichmentError(
            f'Enricher returned invalid category: "{category}". '
            f"Valid categories are: {', '.join(valid)}"
        )

    items = data.get("actionItems", data.get("action_items"))
    action_items = [str(i) for i in items if str(i).strip()] if isinstance(items, list) else []

    return EnrichmentMetadata(
        summary=str(data.get("summary") or "No summary available"),
        category=category,
        priority=_coerce_enum(Priority, data.get("priority"), Priority.MEDIUM),
        sentiment=_coerce_enum(Sentiment, data.get("sentiment"), Sentiment.NEUTRAL),
        action_items=action_items,
        enriched_at=datetime.now(timezone.utc),
        version=version,
        error=None,
    )


class OllamaEnricher:
    """Enricher using the Ollama ``/api/generate`` endpoint."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the enricher.

        Args:
            settings: Application settings. If None, uses default settings.
            client: HTTP client to reuse. If None, one is created per call.
        """
        from mailbox_sync.config import get_settings

        self.settings = settings or get_settings()
        self._client = client
        logger.info(
            "ollama_enricher_initialized",
            host=self.settings.ollama_host,
            model=self.settings.ollama_model,
        )

    async def enrich(self, message: Message, categories: list[Category]) -> EnrichmentMetadata:
        """Enrich one message.

        Raises:
            CategoriesMissingError: The account has no categories yet.
            EnrichmentError: Transport failure or invalid model output.
        """

        if not categories:
            raise CategoriesMissingError(
                "No categories defined yet. Please create categories first before processing emails."
            )

        prompt = build_enrichment_prompt(message, categories)
        raw = await self.generate(prompt)
        meta = parse_enrichment_response(
            raw, categories, version=self.settings.enrichment_schema_version
        )
        logger.info("message_enriched", message_id=message.id, category=meta.category)
        return meta

    async def generate(self, prompt: str, model: Optional[str] = None) -> str:
        """Run a non-streaming JSON-mode generation and return the response text."""

        model = model or self.settings.ollama_model
        body = {"model": model, "prompt": prompt, "stream": False, "format": "json"}
        logger.debug("generating_text", model=model, prompt_length=len(prompt))

        try:
            if self._client is not None:
                response = await self._client.post(self._url("/api/generate"), json=body)
            else:
                async with httpx.AsyncClient(
                    timeout=self.settings.enrichment_timeout_seconds
                ) as client:
                    response = await client.post(self._url("/api/generate"), json=body)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise EnrichmentError(f"Ollama request failed: {exc}") from exc
        except ValueError as exc:
            raise EnrichmentError(f"Ollama returned invalid JSON: {exc}") from exc

        text = payload.get("response") if isinstance(payload, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise EnrichmentError("Ollama returned empty response")
        return text

    def _url(self, path: str) -> str:
        return self.settings.ollama_host.rstrip("/") + path
