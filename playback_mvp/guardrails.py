"""Pre-flight and per-step limits for a playback run."""
from __future__ import annotations

import logging

from .cost_tracker import CostTracker
from .errors import COST_CAP_EXCEEDED, FORBIDDEN_ACTION, MAX_STEPS_EXCEEDED, StepFailedError
from .models import Guardrails, Recording, Step

logger = logging.getLogger("playback_mvp.guardrails")


class GuardrailEnforcer:
    """Applies a read-only :class:`Guardrails` to one run."""

    def __init__(self, guardrails: Guardrails, cost_tracker: CostTracker) -> None:
        self.guardrails = guardrails
        self.cost_tracker = cost_tracker

    def check_recording(self, recording: Recording) -> None:
        step_count = len(recording.steps)
        if step_count > self.guardrails.max_steps:
            raise StepFailedError(
                f"Recording has {step_count} steps, exceeding maxSteps limit of {self.guardrails.max_steps}",
                MAX_STEPS_EXCEEDED,
                {"stepCount": step_count, "maxSteps": self.guardrails.max_steps},
            )

    def check_step(self, step: Step) -> None:
        if not self.guardrails.forbidden_actions:
            return
        step_text = f"{step.action.value} {step.value or ''} {step.selector.label or ''}".lower()
        for pattern in self.guardrails.forbidden_actions:
            if pattern.lower() in step_text:
                raise StepFailedError(
                    f'Step contains forbidden action pattern: "{pattern}"',
                    FORBIDDEN_ACTION,
                    {"stepIndex": step.index, "forbiddenPattern": pattern},
                )

    def run_timed_out(self, elapsed: float) -> bool:
        if elapsed > self.guardrails.run_timeout:
            logger.error("Run timeout exceeded (%.1fs > %.1fs), stopping playback", elapsed,
                         self.guardrails.run_timeout)
            return True
        return False

    def ensure_budget(self, tier_name: str) -> None:
        """Raise before a decision-service call the cost cap no longer allows."""
        if self.cost_tracker.is_over_budget(self.guardrails.cost_cap_usd):
            raise StepFailedError(
                f"Cost cap of ${self.guardrails.cost_cap_usd} exceeded, refusing {tier_name} tier",
                COST_CAP_EXCEEDED,
                {"costUsd": self.cost_tracker.total_cost(), "capUsd": self.guardrails.cost_cap_usd,
                 "tier": tier_name},
            )
