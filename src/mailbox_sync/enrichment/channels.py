"""Per-owner registry of delivery channels."""

from __future__ import annotations

import weakref
from typing import Any

import structlog

from mailbox_sync.enrichment.base import DeliveryChannel

logger = structlog.get_logger()


class ChannelRegistry:
    """Maps an owner to every channel currently interested in its events.

    Channels are held weakly: a closed session that is garbage collected
    drops out without an explicit ``unregister``.
    """

    def __init__(self) -> None:
        self._channels: dict[str, weakref.WeakSet[DeliveryChannel]] = {}

    def register(self, owner_id: str, channel: DeliveryChannel) -> None:
        self._channels.setdefault(owner_id, weakref.WeakSet()).add(channel)

    def unregister(self, channel: DeliveryChannel, owner_id: str | None = None) -> None:
        owners = [owner_id] if owner_id is not None else list(self._channels)
        for owner in owners:
            channels = self._channels.get(owner)
            if channels is None:
                continue
            channels.discard(channel)
            if not channels:
                del self._channels[owner]

    def channels_for(self, owner_id: str) -> list[DeliveryChannel]:
        return list(self._channels.get(owner_id, ()))

    def is_registered(self, owner_id: str, channel: DeliveryChannel) -> bool:
        return channel in self._channels.get(owner_id, ())

    async def broadcast(self, owner_id: str, event: str, payload: dict[str, Any]) -> int:
        """Emit ``event`` on every channel registered for ``owner_id``.

        A failing channel does not stop delivery to the others.

        Returns:
            Number of channels the event was delivered to.
        """

        delivered = 0
        for channel in self.channels_for(owner_id):
            try:
                await channel.emit(event, payload)
                delivered += 1
            except Exception as exc:  # noqa: BLE001 - one broken channel must not affect the rest
                logger.warning("channel_emit_failed", event=event, owner_id=owner_id, error=str(exc))
        return delivered
