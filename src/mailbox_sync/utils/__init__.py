"""Utility functions for Mailbox Sync."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

import structlog

from mailbox_sync.exceptions import MailboxSyncError

logger = structlog.get_logger()

T = TypeVar("T")


async def bounded(
    awaitable: Awaitable[T],
    *,
    timeout: float,
    error_cls: type[MailboxSyncError],
    operation: str,
) -> T:
    """Await a collaborator call with an upper time bound.

    Timeouts and unexpected collaborator failures are converted to
    ``error_cls`` so callers only deal with one error kind per operation.
    Errors that already belong to the Mailbox Sync hierarchy pass through.
    Nothing is retried here.

    Args:
        awaitable: The collaborator call.
        timeout: Upper bound in seconds.
        error_cls: Error raised on timeout or failure.
        operation: Name used in logs and error messages.

    Returns:
        The awaited result.
    """

    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("operation_timed_out", operation=operation, timeout=timeout)
        raise error_cls(f"{operation} timed out after {timeout:g}s") from exc
    except MailboxSyncError:
        raise
    except Exception as exc:  # noqa: BLE001
        logger.warning("operation_failed", operation=operation, error=str(exc))
        raise error_cls(f"{operation} failed: {exc}") from exc
