"""Helpers for loading recordings."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from jsonschema import Draft7Validator

from .errors import RecordingError
from .models import ActionType, Checkpoint, ElementSelector, Recording, ScreenshotPoint, Step

SCHEMA_PATH = Path(__file__).parent / "schemas" / "recording.schema.json"

_validator: Optional[Draft7Validator] = None


def _ensure_path(source: Any) -> Path:
    if isinstance(source, (str, Path)):
        return Path(source)
    raise TypeError(f"Unsupported path type: {type(source)!r}")


def recording_validator() -> Draft7Validator:
    global _validator  # pylint: disable=global-statement
    if _validator is None:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        _validator = Draft7Validator(schema)
    return _validator


def load_json(source: Any) -> Dict[str, Any]:
    path = _ensure_path(source)
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _parse_selector(raw: Optional[Dict[str, Any]]) -> ElementSelector:
    raw = raw or {}
    bounds = raw.get("bounds")
    return ElementSelector(
        identifier=raw.get("accessibilityIdentifier"),
        accessibility_label=raw.get("accessibilityLabel"),
        label=raw.get("label"),
        element_type=raw.get("elementType"),
        path=raw.get("xpath"),
        bounds=tuple(float(item) for item in bounds) if bounds else None,
        attributes=dict(raw.get("attributes") or {}),
    )


def _parse_checkpoint(raw: Optional[Dict[str, Any]]) -> Optional[Checkpoint]:
    if not raw:
        return None
    return Checkpoint(
        required_elements=tuple(raw.get("requiredElements") or ()),
        forbidden_elements=tuple(raw.get("forbiddenElements") or ()),
        expected_screen=raw.get("expectedScreen"),
    )


def parse_recording(raw: Dict[str, Any]) -> Recording:
    errors = sorted(recording_validator().iter_errors(raw), key=lambda e: [str(part) for part in e.absolute_path])
    if errors:
        first = errors[0]
        location = "/".join(str(part) for part in first.absolute_path) or "<root>"
        raise RecordingError(f"Invalid recording at {location}: {first.message}")

    steps = []
    for raw_step in raw["steps"]:
        value = raw_step.get("value")
        steps.append(
            Step(
                index=raw_step["index"],
                action=ActionType(raw_step["action"]),
                selector=_parse_selector(raw_step.get("selector")),
                value=str(value) if value is not None else None,
                checkpoint=_parse_checkpoint(raw_step.get("checkpoint")),
                description=raw_step.get("description"),
            ))

    indices = [step.index for step in steps]
    if indices != list(range(len(steps))):
        raise RecordingError(f"Step indices must be 0..{len(steps) - 1} in order, got {indices}")

    points = [
        ScreenshotPoint(after_step=item["afterStep"], label=item["label"], description=item.get("description"))
        for item in raw.get("screenshotPoints") or []
    ]
    for point in points:
        if point.after_step >= len(steps):
            raise RecordingError(f"Screenshot point '{point.label}' refers to missing step {point.after_step}")

    return Recording(
        id=raw["id"],
        name=raw["name"],
        bundle_id=raw.get("bundleId"),
        steps=steps,
        screenshot_points=points,
    )


def load_recording(source: Any) -> Recording:
    path = _ensure_path(source)
    if not path.exists():
        raise FileNotFoundError(f"Recording '{path}' not found")
    try:
        raw = load_json(path)
    except json.JSONDecodeError as exc:
        raise RecordingError(f"Recording '{path}' is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise RecordingError(f"Recording '{path}' must contain a JSON object")
    return parse_recording(raw)
