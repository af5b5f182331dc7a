"""Local message store.

The pipeline depends on the ``MessageStore`` protocol; ``SqliteMessageStore``
is the bundled implementation.
"""

from .base import MessageStore
from .sqlite import SqliteMessageStore

__all__ = ["MessageStore", "SqliteMessageStore"]
