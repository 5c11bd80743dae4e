"""Interfaces of the collaborators the player drives.

The automation backend and the decision service live outside this package;
the player only depends on the shapes below. Every backend call may raise
:class:`playback_mvp.errors.BackendError`.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol, Tuple

from .models import safe_path_component

logger = logging.getLogger("playback_mvp.backend")


class AutomationBackend(Protocol):
    """Primitive UI operations against a live application."""

    def get_accessibility_tree(self) -> str:
        ...

    def find_by_identifier(self, identifier: str, timeout: float) -> bool:
        ...

    def find_by_label(self, label: str, timeout: float) -> bool:
        ...

    def find_by_text(self, text: str, timeout: float) -> bool:
        ...

    def find_by_path(self, expression: str, timeout: float) -> bool:
        ...

    def tap_element(self, locator: Any) -> None:
        ...

    def tap_point(self, x: float, y: float) -> None:
        ...

    def type_text(self, text: str) -> None:
        ...

    def swipe(self, start_x: float, start_y: float, end_x: float, end_y: float, duration_ms: int = 300) -> None:
        ...

    def screen_size(self) -> Tuple[float, float]:
        ...

    def press_button(self, name: str) -> None:
        ...

    def screenshot(self) -> bytes:
        ...


class ScreenshotSink(Protocol):
    def save(self, output_dir: Path, filename: str, data: bytes) -> str:
        ...


class FileScreenshotSink:
    """Writes captured screenshots as PNG files."""

    def save(self, output_dir: Path, filename: str, data: bytes) -> str:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / f"{safe_path_component(filename)}.png"
        path.write_bytes(data)
        logger.debug("Wrote %s bytes to %s", len(data), path)
        return str(path)
