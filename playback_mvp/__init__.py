"""Deterministic playback of recorded mobile UI walkthroughs."""
from __future__ import annotations

from .executor import Player, PlayerSettings
from .loader import load_recording
from .models import Guardrails, PlaybackResult, PlaybackState, Recording

__all__ = [
    "Guardrails",
    "PlaybackResult",
    "PlaybackState",
    "Player",
    "PlayerSettings",
    "Recording",
    "load_recording",
]
