"""Selector resolution cascade."""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .errors import SELECTOR_NOT_FOUND, STEP_TIMEOUT, BackendError, StepFailedError
from .fallback import MIN_PROBE_TIMEOUT, FallbackResolver
from .models import ResolutionMethod, ResolvedSelector, SelectorCache, Step, candidate_locators, locator_for
from .selector_cache import SelectorCacheManager


class SelectorResolver:
    """Resolves a step's selector: cache, identifier, accessibility label, text, path, fallback.

    What is left of the attempt's deadline is shared evenly between the tiers
    still to run, never less than ``MIN_PROBE_TIMEOUT`` each, so a slow miss
    on one tier cannot starve the next. A cache hit that no longer matches
    falls through to the deterministic cascade.
    """

    def __init__(
        self,
        backend,
        *,
        cache: Optional[SelectorCache] = None,
        fallback: Optional[FallbackResolver] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.backend = backend
        self.cache = cache
        self.fallback = fallback
        self.clock = clock
        self.logger = logging.getLogger("playback_mvp.resolver")

    def resolve(self, step: Step, deadline: float, *, allow_fallback: bool = True) -> ResolvedSelector:
        use_fallback = allow_fallback and self.fallback is not None
        locators = candidate_locators(step.selector)
        tiers_left = len(locators) + (1 if use_fallback else 0)

        cached = self._from_cache(step, deadline, tiers_left + 1)
        if cached is not None:
            return cached

        for locator in locators:
            found = self._probe(locator, deadline, tiers_left, step.index)
            tiers_left -= 1
            if found:
                self.logger.debug("Step %s resolved via %s", step.index, locator.strategy)
                return ResolvedSelector(locator=locator, method=locator.strategy, used_fallback=False)

        if use_fallback:
            self.logger.info("Step %s: trying decision-service fallback", step.index)
            return self.fallback.resolve(step, deadline)

        if self.clock() >= deadline:
            raise StepFailedError(
                f"Step {step.index} timed out while resolving selector",
                STEP_TIMEOUT,
                {"stepIndex": step.index, "selector": step.selector.to_dict()},
            )
        raise StepFailedError(
            "Element not found using any selector method",
            SELECTOR_NOT_FOUND,
            {"stepIndex": step.index, "selector": step.selector.to_dict()},
        )

    def _from_cache(self, step: Step, deadline: float, tiers_left: int) -> Optional[ResolvedSelector]:
        if self.cache is None:
            return None
        entry = SelectorCacheManager.get_entry(self.cache, step.index)
        if entry is None:
            return None

        try:
            locator = locator_for(entry.strategy, entry.resolved_selector)
        except ValueError as exc:
            self.logger.warning("Step %s: unusable cache entry (%s), falling back to cascade", step.index, exc)
            return None

        if self._probe(locator, deadline, tiers_left, step.index):
            self.logger.debug("Step %s resolved from cache via %s", step.index, entry.strategy)
            return ResolvedSelector(locator=locator, method=ResolutionMethod.CACHED.value, used_fallback=False)

        self.logger.warning("Step %s: cached selector failed, falling back to cascade", step.index)
        return None

    def _probe(self, locator, deadline: float, tiers_left: int, step_index: int) -> bool:
        timeout = max((deadline - self.clock()) / max(tiers_left, 1), MIN_PROBE_TIMEOUT)
        try:
            return locator.probe(self.backend, timeout=timeout)
        except BackendError as exc:
            self.logger.debug("Step %s: %s probe failed: %s", step_index, locator.strategy, exc)
            return False
