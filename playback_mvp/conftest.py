"""Shared fakes for the playback tests."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from .errors import BackendError
from .executor import Player, PlayerSettings
from .llm_client import LLMClientError, LLMCompletion
from .models import ActionType, ElementSelector, Recording, ScreenshotPoint, SelectorCache, Step
from .selector_cache import SelectorCacheManager


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class FakeBackend:
    """Accessibility tree made of flat element dicts.

    Element keys: ``identifier``, ``label`` (accessibility label), ``text``
    (rendered text) and ``path``.
    """

    def __init__(self, elements: Optional[List[Dict[str, str]]] = None, extra_tree: str = "") -> None:
        self.elements = list(elements or [])
        self.extra_tree = extra_tree
        self.tree_override: Optional[str] = None
        self.failing: set = set()
        self.calls: List[tuple] = []
        self.screenshot_data = b"\x89PNG fake"

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, ) + args)
        if name in self.failing:
            raise BackendError(f"{name} transport failure")

    def _has(self, key: str, value: str) -> bool:
        return any(element.get(key) == value for element in self.elements)

    def get_accessibility_tree(self) -> str:
        self._record("get_accessibility_tree")
        if self.tree_override is not None:
            return self.tree_override
        nodes = []
        for element in self.elements:
            attrs = " ".join(f'{key}="{value}"' for key, value in sorted(element.items()))
            nodes.append(f"  <XCUIElementTypeOther {attrs}/>")
        return "<AppRoot>\n" + "\n".join(nodes) + f"\n{self.extra_tree}</AppRoot>"

    def find_by_identifier(self, identifier: str, timeout: float) -> bool:
        self._record("find_by_identifier", identifier)
        return self._has("identifier", identifier)

    def find_by_label(self, label: str, timeout: float) -> bool:
        self._record("find_by_label", label)
        return self._has("label", label)

    def find_by_text(self, text: str, timeout: float) -> bool:
        self._record("find_by_text", text)
        return self._has("text", text)

    def find_by_path(self, expression: str, timeout: float) -> bool:
        self._record("find_by_path", expression)
        return self._has("path", expression)

    def tap_element(self, locator) -> None:
        self._record("tap_element", locator.selector)

    def tap_point(self, x: float, y: float) -> None:
        self._record("tap_point", x, y)

    def type_text(self, text: str) -> None:
        self._record("type_text", text)

    def swipe(self, start_x, start_y, end_x, end_y, duration_ms=300) -> None:
        self._record("swipe", start_x, start_y, end_x, end_y)

    def screen_size(self):
        self._record("screen_size")
        return 390.0, 844.0

    def press_button(self, name: str) -> None:
        self._record("press_button", name)

    def screenshot(self) -> bytes:
        self._record("screenshot")
        return self.screenshot_data

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


class WaitingBackend(FakeBackend):
    """Blocks for the whole probe timeout on a miss, like a real driver."""

    def __init__(self, clock: FakeClock, elements: Optional[List[Dict[str, str]]] = None) -> None:
        super().__init__(elements)
        self.clock = clock
        self.timeouts: List[float] = []

    def _wait(self, found: bool, timeout: float) -> bool:
        self.timeouts.append(timeout)
        if not found:
            self.clock.now += timeout
        return found

    def find_by_identifier(self, identifier: str, timeout: float) -> bool:
        return self._wait(super().find_by_identifier(identifier, timeout), timeout)

    def find_by_label(self, label: str, timeout: float) -> bool:
        return self._wait(super().find_by_label(label, timeout), timeout)

    def find_by_text(self, text: str, timeout: float) -> bool:
        return self._wait(super().find_by_text(text, timeout), timeout)

    def find_by_path(self, expression: str, timeout: float) -> bool:
        return self._wait(super().find_by_path(expression, timeout), timeout)


class FakeLLMClient:
    """Returns scripted replies per model; an exception in the script is raised."""

    def __init__(self, replies: Optional[Dict[str, list]] = None, tokens: int = 1000) -> None:
        self.replies = {model: list(items) for model, items in (replies or {}).items()}
        self.tokens = tokens
        self.calls: List[Dict[str, object]] = []

    def chat_completion(self, messages, *, model, temperature=0.3, json_mode=False, timeout=None):
        self.calls.append({"model": model, "messages": messages})
        script = self.replies.get(model) or []
        if not script:
            raise LLMClientError(f"no scripted reply for {model}")
        reply = script.pop(0)
        if isinstance(reply, Exception):
            raise reply
        content = reply if isinstance(reply, str) else json.dumps(reply)
        return LLMCompletion(content, model, self.tokens, self.tokens)


class MemoryCacheStore:
    """Keeps serialized caches in memory so tests can compare them byte for byte."""

    def __init__(self) -> None:
        self.blobs: Dict[tuple, str] = {}
        self.saves = 0

    def load(self, recording_id, locale, template_hash):
        blob = self.blobs.get((recording_id, locale))
        if blob is None:
            return None
        cache = SelectorCache.from_dict(json.loads(blob))
        return cache if cache.template_hash == template_hash else None

    def save(self, cache) -> None:
        self.saves += 1
        self.blobs[(cache.recording_id, cache.locale)] = json.dumps(cache.to_dict(), sort_keys=True)

    def clear(self, recording_id, locale=None) -> None:
        for key in list(self.blobs):
            if key[0] == recording_id and (locale is None or key[1] == locale):
                del self.blobs[key]


class RecordingSink:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.saved: List[tuple] = []

    def save(self, output_dir: Path, filename: str, data: bytes) -> str:
        if self.fail:
            raise OSError("disk full")
        self.saved.append((output_dir, filename, data))
        return str(Path(output_dir) / f"{filename}.png")


def tap(index: int, **selector) -> Step:
    return Step(index=index, action=ActionType.TAP, selector=ElementSelector(**selector))


def wait(index: int, milliseconds: int) -> Step:
    return Step(index=index, action=ActionType.WAIT, value=str(milliseconds))


def make_recording(steps, points=(), recording_id="rec-1") -> Recording:
    return Recording(
        id=recording_id,
        name="onboarding",
        steps=list(steps),
        screenshot_points=[ScreenshotPoint(after_step=index, label=label) for index, label in points],
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend([
        {"identifier": "login_button", "label": "Log In", "text": "Log In", "path": "//Button[1]"},
        {"identifier": "email_field", "label": "Email", "text": "Email"},
        {"text": "Welcome"},
    ])


@pytest.fixture
def cache_store() -> MemoryCacheStore:
    return MemoryCacheStore()


@pytest.fixture
def make_player(backend, clock, cache_store, tmp_path):
    def factory(*, target=None, settings=None, **kwargs) -> Player:
        settings = settings or PlayerSettings(output_root=tmp_path / "output", write_result=False)
        kwargs.setdefault("cache_manager", SelectorCacheManager(cache_store))
        kwargs.setdefault("screenshot_sink", RecordingSink())
        return Player(target or backend, settings=settings, clock=clock, sleep=clock.sleep, **kwargs)

    return factory
