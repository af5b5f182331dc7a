"""Token-file credential resolver used by the CLI."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import structlog

from mailbox_sync.exceptions import ConfigurationError
from mailbox_sync.models import Credential

logger = structlog.get_logger()


class TokenFileCredentialResolver:
    """Serve a single authorized-user token file for one mailbox.

    Token issuance and refresh live elsewhere; this resolver only reads what
    was already written.
    """

    def __init__(self, token_path: Path, mailbox: str, provider: str = "gmail") -> None:
        self._token_path = token_path
        self._mailbox = mailbox
        self._provider = provider

    async def get_token(self, owner_id: str, mailbox: str, provider_name: str) -> Credential | None:
        if mailbox != self._mailbox or provider_name != self._provider:
            return None
        if not self._token_path.exists():
            logger.warning("token_file_missing", token_path=str(self._token_path))
            return None
        raw = await asyncio.to_thread(self._token_path.read_text, encoding="utf-8")
        try:
            info = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid token file {self._token_path}: {exc}") from exc
        return Credential(owner_id=owner_id, mailbox=mailbox, provider=provider_name, token_info=info)

    async def list_credentials(self, owner_id: str) -> list[Credential]:
        credential = await self.get_token(owner_id, self._mailbox, self._provider)
        return [credential] if credential else []
