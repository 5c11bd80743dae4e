"""Core playback loop: runs a recording step by step against an automation backend."""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .backend import FileScreenshotSink
from .cost_tracker import CostTracker
from .decision_service import DecisionService, DecisionTier, default_tiers
from .errors import ACTION_FAILED, BackendError, StepFailedError
from .fallback import FallbackResolver
from .guardrails import GuardrailEnforcer
from .models import (ActionType, CacheEntry, FailurePolicy, Guardrails, PlaybackResult, PlaybackState, Recording,
                     ResolutionMethod, ResolvedSelector, ScreenshotPoint, SelectorCache, Step, StepResult,
                     safe_path_component)
from .resolver import SelectorResolver
from .retry import retry
from .selector_cache import DEFAULT_LOCALE, SelectorCacheManager
from .verifier import Verifier

ELEMENT_ACTIONS = {ActionType.TAP, ActionType.TYPE, ActionType.SCROLL, ActionType.SWIPE}
DEFAULT_WAIT_MS = 1000
SWIPE_DISTANCE = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
# pylint: disable=too-many-instance-attributes,too-few-public-methods
class PlayerSettings:
    """Runtime knobs for the player. Delays are in seconds."""

    output_root: Path = Path("output")
    enable_fallback: bool = False
    no_cache: bool = False
    settle_delay: float = 0.5
    action_delay: float = 0.3
    retry_delay: float = 1.0
    screenshot_delay: float = 1.0
    write_result: bool = True

    @property
    def failure_policy(self) -> FailurePolicy:
        return FailurePolicy.CONTINUE if self.enable_fallback else FailurePolicy.ABORT


class Player:
    """Replays a :class:`Recording` and reports a :class:`PlaybackResult`."""

    # pylint: disable=too-many-arguments
    def __init__(
        self,
        backend,
        *,
        guardrails: Optional[Guardrails] = None,
        settings: Optional[PlayerSettings] = None,
        cache_manager: Optional[SelectorCacheManager] = None,
        decision_service: Optional[DecisionService] = None,
        tiers: Optional[Sequence[DecisionTier]] = None,
        cost_tracker: Optional[CostTracker] = None,
        screenshot_sink=None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.backend = backend
        self.guardrails = guardrails or Guardrails()
        self.settings = settings or PlayerSettings()
        self.failure_policy = self.settings.failure_policy
        self.cache_manager = cache_manager or SelectorCacheManager()
        self.cost_tracker = cost_tracker or CostTracker()
        self.enforcer = GuardrailEnforcer(self.guardrails, self.cost_tracker)
        self.verifier = Verifier(backend)
        self.screenshot_sink = screenshot_sink or FileScreenshotSink()
        self.clock = clock
        self.sleep = sleep
        self.logger = logging.getLogger("playback_mvp")

        self.fallback: Optional[FallbackResolver] = None
        if self.settings.enable_fallback:
            service = decision_service or DecisionService(cost_tracker=self.cost_tracker)
            if service.cost_tracker is None:
                service.cost_tracker = self.cost_tracker
            self.fallback = FallbackResolver(
                backend,
                service,
                list(tiers) if tiers else default_tiers(),
                self.enforcer,
                clock=clock,
            )

    def replay(self, recording: Recording, locale: Optional[str] = None) -> PlaybackResult:
        locale = locale or DEFAULT_LOCALE
        result = PlaybackResult(
            recording_id=recording.id,
            locale=locale,
            state=PlaybackState.NOT_STARTED,
            started_at=_utcnow(),
            finished_at=_utcnow(),
        )

        # A run rejected before its first step leaves no artifacts behind.
        try:
            self.enforcer.check_recording(recording)
        except StepFailedError as exc:
            self.logger.error("Pre-flight check failed for %s: %s", recording.id, exc)
            result.state = PlaybackState.ABORTED
            result.error = str(exc)
            result.error_code = exc.code
            result.finished_at = _utcnow()
            return result

        artifacts_dir = self._artifacts_dir(recording, locale)
        result.artifacts_dir = str(artifacts_dir)
        log_handler = self._attach_run_logger(artifacts_dir) if self.settings.write_result else None
        cost_before = self.cost_tracker.total_cost()
        start = self.clock()

        try:
            self.logger.info("Starting playback of %s (%s, %s steps)", recording.id, locale, len(recording.steps))
            cache = self._load_cache(recording, locale)
            resolver = SelectorResolver(self.backend, cache=cache, fallback=self.fallback, clock=self.clock)
            result.state = PlaybackState.RUNNING
            self._run_steps(recording, resolver, cache, result, start, artifacts_dir)

            if result.state == PlaybackState.RUNNING:
                result.state = PlaybackState.COMPLETED

            if cache is not None and result.failure_count == 0:
                result.cache_saved = self.cache_manager.save(cache)
        finally:
            result.finished_at = _utcnow()
            result.duration = self.clock() - start
            result.cost_usd = self.cost_tracker.total_cost() - cost_before
            self.logger.info(
                "Playback %s: %s succeeded, %s failed, %s via fallback, cost %s",
                result.state.value,
                result.success_count,
                result.failure_count,
                result.fallback_count,
                self.cost_tracker.formatted_cost(),
            )
            if self.settings.write_result:
                self._write_run_result(artifacts_dir / "run.json", result)
            if log_handler:
                self.logger.removeHandler(log_handler)
                log_handler.close()

        return result

    # pylint: disable=too-many-arguments
    def _run_steps(
        self,
        recording: Recording,
        resolver: SelectorResolver,
        cache: Optional[SelectorCache],
        result: PlaybackResult,
        start: float,
        artifacts_dir: Path,
    ) -> None:
        for step in recording.steps:
            if self.enforcer.run_timed_out(self.clock() - start):
                result.state = PlaybackState.TIMED_OUT
                return

            step_result = self._run_step(step, resolver, cache)
            result.steps.append(step_result)

            point = recording.screenshot_point_for(step.index)
            if point is not None and step_result.status == "success":
                self._capture(point, artifacts_dir, result)

            if step_result.status == "failed" and self.failure_policy == FailurePolicy.ABORT:
                self.logger.error("Step %s failed, stopping playback", step.index)
                result.state = PlaybackState.ABORTED
                return

    def _run_step(self, step: Step, resolver: SelectorResolver, cache: Optional[SelectorCache]) -> StepResult:
        started_at = _utcnow()
        step_start = self.clock()
        self.logger.info("Step %s: %s", step.index, step.action.value)
        resolved: Optional[ResolvedSelector] = None
        error: Optional[str] = None
        error_code: Optional[str] = None
        max_attempts = self.guardrails.step_retries + 1

        try:
            self.enforcer.check_step(step)
            resolved = self._retry(
                step,
                lambda attempt: self._attempt(step, resolver, cache, attempt == max_attempts),
                max_attempts,
            )
        except StepFailedError as exc:
            error, error_code = str(exc), exc.code
            self.logger.warning("Step %s failed [%s]: %s", step.index, exc.code, exc)
        except Exception as exc:  # pylint: disable=broad-except
            error = str(exc) or exc.__class__.__name__
            self.logger.exception("Step %s crashed with unexpected error", step.index)

        return StepResult(
            step_index=step.index,
            status="failed" if error is not None else "success",
            duration=self.clock() - step_start,
            started_at=started_at,
            finished_at=_utcnow(),
            resolved_selector=resolved,
            used_fallback=bool(resolved and resolved.used_fallback),
            error=error,
            error_code=error_code,
        )

    def _retry(self, step: Step, attempt_fn, max_attempts: int) -> Optional[ResolvedSelector]:

        def on_retry(attempt: int, exc: Exception) -> None:
            self.logger.info("Step %s attempt %s/%s failed [%s], retrying", step.index, attempt, max_attempts,
                             getattr(exc, "code", exc.__class__.__name__))

        return retry(
            attempt_fn,
            max_attempts=max_attempts,
            delay=self.settings.retry_delay,
            backoff=1.0,
            should_retry=lambda exc: isinstance(exc, StepFailedError) and exc.retryable,
            on_retry=on_retry,
            sleep=self.sleep,
        )

    def _attempt(
        self,
        step: Step,
        resolver: SelectorResolver,
        cache: Optional[SelectorCache],
        last_attempt: bool,
    ) -> Optional[ResolvedSelector]:
        deadline = self.clock() + self.guardrails.step_timeout
        resolved = None
        if step.action in ELEMENT_ACTIONS and step.selector.has_candidates():
            resolved = resolver.resolve(step, deadline, allow_fallback=last_attempt)

        self._execute_action(step, resolved)
        self.sleep(self.settings.settle_delay)
        self.verifier.verify(step)

        if cache is not None and resolved is not None and resolved.method != ResolutionMethod.CACHED.value:
            SelectorCacheManager.add_entry(
                cache,
                CacheEntry(
                    step_index=step.index,
                    original_selector_digest=step.selector.digest(),
                    resolved_selector=resolved.locator.value,
                    strategy=resolved.locator.strategy,
                    method=resolved.method,
                    timestamp=time.time(),
                ),
            )
        return resolved

    # pylint: disable=too-many-branches
    def _execute_action(self, step: Step, resolved: Optional[ResolvedSelector]) -> None:
        action = step.action
        try:
            if action == ActionType.TAP:
                center = step.selector.center()
                if resolved is not None:
                    self.backend.tap_element(resolved.locator)
                elif center is not None:
                    self.backend.tap_point(*center)
                else:
                    raise ValueError("tap step requires a selector or bounds")
            elif action == ActionType.TYPE:
                if not step.value:
                    raise ValueError("type step requires a value")
                self.backend.type_text(step.value)
            elif action == ActionType.SCROLL:
                width, height = self.backend.screen_size()
                start_y, end_y = height * 0.8, height * 0.2
                if (step.value or "").lower() == "up":
                    start_y, end_y = end_y, start_y
                self.backend.swipe(width / 2, start_y, width / 2, end_y, 500)
            elif action == ActionType.SWIPE:
                center = step.selector.center()
                if center is None:
                    raise ValueError("swipe step requires bounds")
                self.backend.swipe(*center, *self._swipe_end(center, step.value))
            elif action == ActionType.BACK:
                self.backend.press_button("back")
            elif action == ActionType.HOME:
                self.backend.press_button("home")
            elif action == ActionType.WAIT:
                duration_ms = int(float(step.value)) if step.value else DEFAULT_WAIT_MS
                self.sleep(duration_ms / 1000)
            else:
                raise ValueError(f"Unsupported action type: {action}")
        except (BackendError, ValueError) as exc:
            raise StepFailedError(f"Action {action.value} failed: {exc}", ACTION_FAILED,
                                  {"stepIndex": step.index}) from exc

        self.sleep(self.settings.action_delay)

    @staticmethod
    def _swipe_end(center, direction: Optional[str]):
        x, y = center
        offsets = {
            "up": (0, -SWIPE_DISTANCE),
            "down": (0, SWIPE_DISTANCE),
            "left": (-SWIPE_DISTANCE, 0),
            "right": (SWIPE_DISTANCE, 0),
        }
        dx, dy = offsets.get((direction or "up").lower(), offsets["up"])
        return x + dx, y + dy

    def _load_cache(self, recording: Recording, locale: str) -> Optional[SelectorCache]:
        if self.settings.no_cache:
            return None
        template_hash = recording.template_hash()
        cache = self.cache_manager.load(recording.id, locale, template_hash)
        if cache is None:
            cache = self.cache_manager.init(recording.id, locale, template_hash)
        return cache

    def _capture(self, point: ScreenshotPoint, artifacts_dir: Path, result: PlaybackResult) -> None:
        try:
            self.sleep(self.settings.screenshot_delay)
            data = self.backend.screenshot()
            path = self.screenshot_sink.save(artifacts_dir, point.label, data)
        except Exception as exc:  # pylint: disable=broad-except
            self.logger.error("Screenshot %s capture failed: %s", point.label, exc)
            result.screenshot_failures.append(point.label)
            return
        result.screenshots.append(path)
        self.logger.info("Screenshot %s captured at %s", point.label, path)

    def _artifacts_dir(self, recording: Recording, locale: str) -> Path:
        root = Path(self.settings.output_root) / safe_path_component(recording.name)
        return root if locale == DEFAULT_LOCALE else root / safe_path_component(locale)

    def _write_run_result(self, path: Path, result: PlaybackResult) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as handle:
                json.dump(result.to_dict(), handle, ensure_ascii=False, indent=2)
        except OSError as exc:
            self.logger.error("Failed to write run result %s: %s", path, exc)

    def _attach_run_logger(self, artifacts_dir: Path) -> Optional[logging.Handler]:
        try:
            artifacts_dir.mkdir(parents=True, exist_ok=True)
            handler = logging.FileHandler(artifacts_dir / "runner.log", encoding="utf-8")
        except OSError as exc:
            self.logger.warning("Run log disabled: %s", exc)
            return None
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
        self.logger.addHandler(handler)
        return handler


def summarize(results: List[PlaybackResult]) -> dict:
    """Counts across several runs, e.g. one per locale."""
    return {
        "runs": len(results),
        "completed": sum(1 for item in results if item.state == PlaybackState.COMPLETED and item.failure_count == 0),
        "steps": sum(len(item.steps) for item in results),
        "failures": sum(item.failure_count for item in results),
        "screenshots": sum(len(item.screenshots) for item in results),
    }
