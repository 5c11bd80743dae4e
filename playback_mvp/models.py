"""Data models for the playback engine."""
from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


_UNSAFE_PATH_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_path_component(value: str) -> str:
    """Single directory or file name derived from recording data, e.g. ``../x`` -> ``x``."""
    sanitized = _UNSAFE_PATH_CHARS.sub("-", value).strip(".-")
    return sanitized or "_"


class ActionType(str, Enum):
    TAP = "tap"
    TYPE = "type"
    SCROLL = "scroll"
    SWIPE = "swipe"
    BACK = "back"
    HOME = "home"
    WAIT = "wait"


class ResolutionMethod(str, Enum):
    """How a selector was resolved by the deterministic cascade."""

    CACHED = "cached"
    IDENTIFIER = "identifier"
    ACCESSIBILITY_LABEL = "accessibilityLabel"
    LABEL = "label"
    PATH = "path"


class PlaybackState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"


class FailurePolicy(str, Enum):
    """What the player does after a step fails."""

    ABORT = "abort"
    CONTINUE = "continue"


@dataclass(frozen=True)
class ElementSelector:
    """Candidate identifiers for one on-screen element, in priority order."""

    identifier: Optional[str] = None
    accessibility_label: Optional[str] = None
    label: Optional[str] = None
    element_type: Optional[str] = None
    path: Optional[str] = None
    bounds: Optional[Tuple[float, float, float, float]] = None
    attributes: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)

    def has_candidates(self) -> bool:
        return bool(self.identifier or self.accessibility_label or self.label or self.path)

    def center(self) -> Optional[Tuple[float, float]]:
        if not self.bounds:
            return None
        x, y, width, height = self.bounds
        return x + width / 2, y + height / 2

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "accessibilityIdentifier": self.identifier,
            "accessibilityLabel": self.accessibility_label,
            "label": self.label,
            "elementType": self.element_type,
            "xpath": self.path,
            "bounds": list(self.bounds) if self.bounds else None,
            "attributes": dict(self.attributes) if self.attributes else None,
        }
        return {key: value for key, value in payload.items() if value is not None}

    def digest(self) -> str:
        return sha256_hex(canonical_json(self.to_dict()))


@dataclass(frozen=True)
class Checkpoint:
    """Substring assertions checked against the accessibility tree after a step."""

    required_elements: Tuple[str, ...] = ()
    forbidden_elements: Tuple[str, ...] = ()
    expected_screen: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "requiredElements": list(self.required_elements),
            "forbiddenElements": list(self.forbidden_elements),
        }
        if self.expected_screen is not None:
            payload["expectedScreen"] = self.expected_screen
        return payload


@dataclass(frozen=True)
class Step:
    """A single recorded action. Indices are 0-based."""

    index: int
    action: ActionType
    selector: ElementSelector = field(default_factory=ElementSelector)
    value: Optional[str] = None
    checkpoint: Optional[Checkpoint] = None
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "index": self.index,
            "action": self.action.value,
            "selector": self.selector.to_dict(),
        }
        if self.value is not None:
            payload["value"] = self.value
        if self.checkpoint is not None:
            payload["checkpoint"] = self.checkpoint.to_dict()
        if self.description is not None:
            payload["description"] = self.description
        return payload


@dataclass(frozen=True)
class ScreenshotPoint:
    """Marks a step after which a screenshot artifact is captured."""

    after_step: int
    label: str
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"afterStep": self.after_step, "label": self.label}
        if self.description is not None:
            payload["description"] = self.description
        return payload


@dataclass
class Recording:
    """A complete recorded walkthrough."""

    id: str
    name: str
    steps: List[Step]
    screenshot_points: List[ScreenshotPoint] = field(default_factory=list)
    bundle_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "bundleId": self.bundle_id,
            "steps": [step.to_dict() for step in self.steps],
            "screenshotPoints": [point.to_dict() for point in self.screenshot_points],
        }

    def template_hash(self) -> str:
        """Content digest; any edit to the recording changes it."""
        return sha256_hex(canonical_json(self.to_dict()))

    def screenshot_point_for(self, step_index: int) -> Optional[ScreenshotPoint]:
        for point in self.screenshot_points:
            if point.after_step == step_index:
                return point
        return None


# Locators: one variant per resolution strategy.


@dataclass(frozen=True)
class IdentifierLocator:
    identifier: str
    strategy = ResolutionMethod.IDENTIFIER.value

    @property
    def value(self) -> str:
        return self.identifier

    @property
    def selector(self) -> str:
        return f"~{self.identifier}"

    def probe(self, backend, timeout: float) -> bool:
        return bool(backend.find_by_identifier(self.identifier, timeout=timeout))


@dataclass(frozen=True)
class AccessibilityLabelLocator:
    label: str
    strategy = ResolutionMethod.ACCESSIBILITY_LABEL.value

    @property
    def value(self) -> str:
        return self.label

    @property
    def selector(self) -> str:
        return f"~{self.label}"

    def probe(self, backend, timeout: float) -> bool:
        return bool(backend.find_by_label(self.label, timeout=timeout))


@dataclass(frozen=True)
class TextLocator:
    text: str
    strategy = ResolutionMethod.LABEL.value

    @property
    def value(self) -> str:
        return self.text

    @property
    def selector(self) -> str:
        return f'//*[@label="{self.text}"]'

    def probe(self, backend, timeout: float) -> bool:
        return bool(backend.find_by_text(self.text, timeout=timeout))


@dataclass(frozen=True)
class PathLocator:
    expression: str
    strategy = ResolutionMethod.PATH.value

    @property
    def value(self) -> str:
        return self.expression

    @property
    def selector(self) -> str:
        return self.expression

    def probe(self, backend, timeout: float) -> bool:
        return bool(backend.find_by_path(self.expression, timeout=timeout))


_LOCATOR_TYPES = {
    ResolutionMethod.IDENTIFIER.value: IdentifierLocator,
    ResolutionMethod.ACCESSIBILITY_LABEL.value: AccessibilityLabelLocator,
    ResolutionMethod.LABEL.value: TextLocator,
    ResolutionMethod.PATH.value: PathLocator,
}


def locator_for(strategy: str, value: str):
    """Rebuild a locator from its strategy name and raw value."""
    try:
        locator_cls = _LOCATOR_TYPES[strategy]
    except KeyError as exc:
        raise ValueError(f"Unknown locator strategy: {strategy!r}") from exc
    return locator_cls(value)


def candidate_locators(selector: ElementSelector) -> list:
    """Locators present on the selector, in cascade order."""
    candidates = []
    if selector.identifier:
        candidates.append(IdentifierLocator(selector.identifier))
    if selector.accessibility_label:
        candidates.append(AccessibilityLabelLocator(selector.accessibility_label))
    if selector.label:
        candidates.append(TextLocator(selector.label))
    if selector.path:
        candidates.append(PathLocator(selector.path))
    return candidates


@dataclass(frozen=True)
class ResolvedSelector:
    """Outcome of one resolution attempt."""

    locator: Any
    method: str
    used_fallback: bool = False

    @property
    def selector(self) -> str:
        return self.locator.selector

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selector": self.selector,
            "strategy": self.locator.strategy,
            "method": self.method,
            "usedFallback": self.used_fallback,
        }


@dataclass
class CacheEntry:
    step_index: int
    original_selector_digest: str
    resolved_selector: str
    strategy: str
    method: str
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stepIndex": self.step_index,
            "originalSelectorDigest": self.original_selector_digest,
            "resolvedSelector": self.resolved_selector,
            "strategy": self.strategy,
            "method": self.method,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "CacheEntry":
        return cls(
            step_index=int(raw["stepIndex"]),
            original_selector_digest=raw["originalSelectorDigest"],
            resolved_selector=raw["resolvedSelector"],
            strategy=raw["strategy"],
            method=raw["method"],
            timestamp=float(raw["timestamp"]),
        )


@dataclass
class SelectorCache:
    """Step -> resolved selector mappings for one (recording, locale, template hash)."""

    recording_id: str
    locale: str
    template_hash: str
    entries: List[CacheEntry] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recordingId": self.recording_id,
            "locale": self.locale,
            "templateHash": self.template_hash,
            "entries": [entry.to_dict() for entry in self.entries],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "SelectorCache":
        return cls(
            recording_id=raw["recordingId"],
            locale=raw["locale"],
            template_hash=raw["templateHash"],
            entries=[CacheEntry.from_dict(item) for item in raw.get("entries", [])],
            created_at=raw.get("createdAt", ""),
            updated_at=raw.get("updatedAt", ""),
        )


@dataclass(frozen=True)
class Guardrails:
    """Limits applied to one playback run. Times are in seconds."""

    max_steps: int = 50
    step_timeout: float = 10.0
    run_timeout: float = 300.0
    step_retries: int = 2
    forbidden_actions: Tuple[str, ...] = ()
    cost_cap_usd: float = 1.0


@dataclass
class StepResult:
    """Captures outcome data for a single step."""

    step_index: int
    status: str
    duration: float
    started_at: datetime
    finished_at: datetime
    resolved_selector: Optional[ResolvedSelector] = None
    used_fallback: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stepIndex": self.step_index,
            "status": self.status,
            "duration": round(self.duration, 3),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "resolvedSelector": self.resolved_selector.to_dict() if self.resolved_selector else None,
            "usedFallback": self.used_fallback,
            "error": self.error,
            "errorCode": self.error_code,
        }


@dataclass
class PlaybackResult:
    """Aggregated run outcome."""

    recording_id: str
    locale: str
    state: PlaybackState
    started_at: datetime
    finished_at: datetime
    duration: float = 0.0
    steps: List[StepResult] = field(default_factory=list)
    screenshots: List[str] = field(default_factory=list)
    screenshot_failures: List[str] = field(default_factory=list)
    cache_saved: bool = False
    cost_usd: float = 0.0
    artifacts_dir: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def success_count(self) -> int:
        return sum(1 for step in self.steps if step.status == "success")

    @property
    def failure_count(self) -> int:
        return sum(1 for step in self.steps if step.status == "failed")

    @property
    def fallback_count(self) -> int:
        return sum(1 for step in self.steps if step.used_fallback)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recordingId": self.recording_id,
            "locale": self.locale,
            "state": self.state.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration": round(self.duration, 3),
            "steps": [step.to_dict() for step in self.steps],
            "screenshots": list(self.screenshots),
            "screenshotFailures": list(self.screenshot_failures),
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "fallbackCount": self.fallback_count,
            "cacheSaved": self.cache_saved,
            "costUsd": round(self.cost_usd, 6),
            "artifacts_dir": self.artifacts_dir,
            "error": self.error,
            "errorCode": self.error_code,
        }
