"""Error types raised during playback."""
from __future__ import annotations

from typing import Any, Dict, Optional

MAX_STEPS_EXCEEDED = "MAX_STEPS_EXCEEDED"
FORBIDDEN_ACTION = "FORBIDDEN_ACTION"
SELECTOR_NOT_FOUND = "SELECTOR_NOT_FOUND"
STEP_TIMEOUT = "STEP_TIMEOUT"
AI_FALLBACK_FAILED = "AI_FALLBACK_FAILED"
COST_CAP_EXCEEDED = "COST_CAP_EXCEEDED"
VERIFICATION_FAILED = "VERIFICATION_FAILED"
ACTION_FAILED = "ACTION_FAILED"

RETRYABLE_CODES = frozenset({SELECTOR_NOT_FOUND, STEP_TIMEOUT})


class PlaybackError(RuntimeError):
    """Base error carrying a machine-readable code and diagnostic context."""

    def __init__(self, message: str, code: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.code = code
        self.context = context or {}


class StepFailedError(PlaybackError):
    """Raised when a single step cannot be completed."""

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES


class BackendError(RuntimeError):
    """Transport or protocol failure reported by an automation backend."""


class RecordingError(ValueError):
    """Raised when a recording file cannot be loaded."""
