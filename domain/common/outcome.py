"""Result of applying an idempotent transition."""
from __future__ import annotations

from enum import Enum


class ApplyOutcome(str, Enum):
    APPLIED = "applied"                      # state changed
    ALREADY_PROCESSED = "already_processed"  # duplicate, nothing to do
    IGNORED = "ignored"                      # stale or non-terminal result, nothing to do
