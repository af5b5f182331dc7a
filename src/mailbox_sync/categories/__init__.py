"""Per-account enrichment categories."""

from .manager import CategoryManager

__all__ = ["CategoryManager"]
