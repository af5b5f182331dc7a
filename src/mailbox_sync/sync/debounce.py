"""Trailing-edge debounce for bursts of identical requests."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable

import structlog

logger = structlog.get_logger()

Action = Callable[[], Awaitable[None]]


class DebounceCoordinator:
    """Collapse repeated ``schedule(key, ...)`` calls into one execution.

    Each call re-arms the timer for ``key``; the most recent action runs once
    after ``delay`` seconds pass without another call for the same key.
    """

    def __init__(self, delay: float) -> None:
        self._delay = delay
        self._pending: dict[Hashable, asyncio.TimerHandle] = {}
        self._running: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def schedule(self, key: Hashable, action: Action) -> None:
        loop = asyncio.get_running_loop()
        previous = self._pending.pop(key, None)
        if previous is not None:
            previous.cancel()
            logger.debug("debounce_rearmed", key=str(key))
        self._pending[key] = loop.call_later(self._delay, self._fire, key, action)

    def cancel(self, key: Hashable) -> bool:
        handle = self._pending.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> None:
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()

    async def join(self) -> None:
        """Wait for actions that already fired to finish."""

        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    def _fire(self, key: Hashable, action: Action) -> None:
        self._pending.pop(key, None)
        task = asyncio.ensure_future(self._run(key, action))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self, key: Hashable, action: Action) -> None:
        try:
            await action()
        except Exception as exc:  # noqa: BLE001 - background action, nothing to propagate to
            logger.exception("debounced_action_failed", key=str(key), error=str(exc))
