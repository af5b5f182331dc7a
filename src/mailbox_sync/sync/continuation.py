"""Per-connection pagination cursors."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class ContinuationKey:
    """Identifies one pagination sequence."""

    connection_id: str
    mailbox: str
    folder_id: str


class ContinuationTracker:
    """Remembers the provider continuation token for each pagination sequence.

    Not safe for overlapping requests on the same key; callers serialize page
    requests per folder.
    """

    def __init__(self) -> None:
        self._tokens: dict[ContinuationKey, str] = {}

    def get(self, key: ContinuationKey) -> str | None:
        return self._tokens.get(key)

    def set(self, key: ContinuationKey, token: str) -> None:
        self._tokens[key] = token

    def clear(self, key: ContinuationKey) -> None:
        if self._tokens.pop(key, None) is not None:
            logger.debug("continuation_cleared", folder_id=key.folder_id, mailbox=key.mailbox)

    def clear_connection(self, connection_id: str) -> None:
        """Drop every cursor held for a connection (disconnect teardown)."""

        for key in [k for k in self._tokens if k.connection_id == connection_id]:
            del self._tokens[key]

    def __len__(self) -> int:
        return len(self._tokens)
