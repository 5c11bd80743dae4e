"""Decision-service fallback used after the deterministic cascade is exhausted."""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Sequence

from .decision_service import Decision, DecisionError, DecisionRequest, DecisionService, DecisionTier
from .errors import AI_FALLBACK_FAILED, BackendError, StepFailedError
from .guardrails import GuardrailEnforcer
from .models import ResolvedSelector, Step, locator_for

# Floor for a single probe, even once the attempt deadline has passed.
MIN_PROBE_TIMEOUT = 1.0


class FallbackResolver:
    """Escalates through decision tiers, then probes the proposal once.

    The first tier is the cheap default; only the second is ever used for
    escalation, and it receives the same request.
    """

    def __init__(
        self,
        backend,
        decision_service: DecisionService,
        tiers: Sequence[DecisionTier],
        guardrails: GuardrailEnforcer,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not tiers:
            raise ValueError("At least one decision tier is required")
        self.backend = backend
        self.decision_service = decision_service
        self.tiers = list(tiers)
        self.guardrails = guardrails
        self.clock = clock
        self.logger = logging.getLogger("playback_mvp.fallback")

    def resolve(self, step: Step, deadline: float) -> ResolvedSelector:
        request = DecisionRequest(step.selector, self._capture_tree(step))
        decision = self._decide(step, request, deadline)

        try:
            locator = locator_for(decision.method, decision.selector)
            found = locator.probe(self.backend, timeout=max(deadline - self.clock(), MIN_PROBE_TIMEOUT))
        except (BackendError, ValueError) as exc:
            self.logger.warning("Step %s: probing suggested selector failed: %s", step.index, exc)
            found = False

        if not found:
            raise StepFailedError(
                f"Failed to locate element with suggested selector: {decision.selector}",
                AI_FALLBACK_FAILED,
                {"stepIndex": step.index, "selector": step.selector.to_dict(), "suggested": decision.selector,
                 "method": decision.method, "tier": decision.tier.name},
            )

        self.logger.info("Step %s: %s tier located element via %s", step.index, decision.tier.name, decision.method)
        return ResolvedSelector(locator=locator, method=decision.tier.model, used_fallback=True)

    def _capture_tree(self, step: Step) -> str:
        try:
            return self.backend.get_accessibility_tree()
        except BackendError as exc:
            raise StepFailedError(
                "Element not found even with AI fallback: could not capture accessibility tree",
                AI_FALLBACK_FAILED,
                {"stepIndex": step.index, "error": str(exc)},
            ) from exc

    def _decide(self, step: Step, request: DecisionRequest, deadline: float) -> Decision:
        default_tier = self.tiers[0]
        escalation_tier: Optional[DecisionTier] = self.tiers[1] if len(self.tiers) > 1 else None

        self.guardrails.ensure_budget(default_tier.name)
        try:
            return self.decision_service.propose(request, default_tier, timeout=self._remaining(deadline))
        except DecisionError as exc:
            if escalation_tier is None:
                raise self._fallback_failed(step, exc) from exc
            self.logger.info("Step %s: %s tier failed (%s), escalating to %s", step.index, default_tier.name, exc,
                             escalation_tier.name)

        self.guardrails.ensure_budget(escalation_tier.name)
        try:
            return self.decision_service.propose(request, escalation_tier, timeout=self._remaining(deadline))
        except DecisionError as exc:
            raise self._fallback_failed(step, exc) from exc

    def _remaining(self, deadline: float) -> Optional[float]:
        remaining = deadline - self.clock()
        return remaining if remaining > 0 else None

    @staticmethod
    def _fallback_failed(step: Step, exc: Exception) -> StepFailedError:
        return StepFailedError(
            f"Element not found even with AI fallback: {exc}",
            AI_FALLBACK_FAILED,
            {"stepIndex": step.index, "selector": step.selector.to_dict()},
        )
