"""Focus folder rule models."""

from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

_NON_WORD_RE = re.compile(r"[^a-zA-Z0-9\s]")
_SPACE_RE = re.compile(r"\s+")


class FocusRuleType(str, Enum):
    """What a focus rule matches against."""

    SUBJECT = "subject"
    SENDER = "sender"


def make_bucket_name(rule_type: FocusRuleType, value: str) -> str:
    """Derive a bucket name such as ``focus_subject_project_update_123456``."""

    sanitized = _SPACE_RE.sub("_", _NON_WORD_RE.sub("", value).strip()).lower()[:30]
    suffix = str(time.time_ns() // 1_000)[-6:]
    return f"focus_{rule_type.value}_{sanitized}_{suffix}"


class FocusItem(BaseModel):
    """A user-defined classification rule and its running counters."""

    type: FocusRuleType = Field(description="Rule type")
    value: str = Field(min_length=1, description="Value to match")
    folder_name: str = Field(description="Derived bucket name")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity: datetime | None = Field(default=None, description="Last matched message")
    message_count: int = Field(default=0, ge=0, description="Messages routed to this bucket")
    is_active: bool = Field(default=True)


class BucketStatistics(BaseModel):
    """Activity counters for one bucket."""

    count: int
    last_activity: datetime | None


class FocusStatistics(BaseModel):
    """Read-only aggregation over an account's focus items."""

    per_bucket: dict[str, BucketStatistics] = Field(default_factory=dict)
    total_classified: int = 0
