"""Folder synchronization: pagination cursors, debouncing, diffing and orchestration."""

from .continuation import ContinuationKey, ContinuationTracker
from .debounce import DebounceCoordinator
from .diff import UpsertEngine, UpsertOutcome, UpsertStatus, diff_message
from .orchestrator import FolderPageRequest, FolderSyncOrchestrator

__all__ = [
    "ContinuationKey",
    "ContinuationTracker",
    "DebounceCoordinator",
    "FolderPageRequest",
    "FolderSyncOrchestrator",
    "UpsertEngine",
    "UpsertOutcome",
    "UpsertStatus",
    "diff_message",
]
