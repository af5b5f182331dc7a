"""Mailbox Sync - incremental mailbox mirroring with asynchronous enrichment.

This package keeps a local store consistent with a remote mailbox using
minimal writes, routes messages into focus folders, and annotates them
with LLM-derived metadata off the interactive read path.
"""

__version__ = "0.1.0"

from mailbox_sync.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
