"""Focus folder assignment."""

from .engine import FocusAssignmentEngine, rule_matches

__all__ = ["FocusAssignmentEngine", "rule_matches"]
