"""Tests for guardrails, cost tracking and the retry helper."""
from __future__ import annotations

import pytest

from .conftest import make_recording, tap, wait
from .cost_tracker import CostTracker
from .errors import FORBIDDEN_ACTION, MAX_STEPS_EXCEEDED, SELECTOR_NOT_FOUND, StepFailedError
from .guardrails import GuardrailEnforcer
from .models import ActionType, ElementSelector, Guardrails, Step
from .retry import retry


def _enforcer(**limits) -> GuardrailEnforcer:
    return GuardrailEnforcer(Guardrails(**limits), CostTracker())


def test_max_steps():
    recording = make_recording([wait(i, 10) for i in range(5)])

    _enforcer(max_steps=5).check_recording(recording)
    with pytest.raises(StepFailedError) as excinfo:
        _enforcer(max_steps=3).check_recording(recording)
    assert excinfo.value.code == MAX_STEPS_EXCEEDED


@pytest.mark.parametrize(
    "step",
    [
        Step(index=0, action=ActionType.TYPE, value="Delete Account"),
        Step(index=0, action=ActionType.TAP, selector=ElementSelector(label="DELETE")),
    ],
)
def test_forbidden_patterns_match_case_insensitively(step):
    with pytest.raises(StepFailedError) as excinfo:
        _enforcer(forbidden_actions=("delete", )).check_step(step)
    assert excinfo.value.code == FORBIDDEN_ACTION
    assert excinfo.value.context["forbiddenPattern"] == "delete"


def test_forbidden_pattern_covers_action_name():
    with pytest.raises(StepFailedError):
        _enforcer(forbidden_actions=("Home", )).check_step(Step(index=0, action=ActionType.HOME))


def test_identifier_is_not_part_of_the_forbidden_check():
    _enforcer(forbidden_actions=("delete", )).check_step(tap(0, identifier="delete_button", label="Remove"))


def test_run_timeout_is_strict():
    enforcer = _enforcer(run_timeout=5)
    assert not enforcer.run_timed_out(5.0)
    assert enforcer.run_timed_out(5.01)


def test_cost_tracker_pricing_and_summary():
    tracker = CostTracker()
    tracker.record_usage("gpt-4o", 1_000_000, 100_000)
    tracker.record_usage("mystery-model", 1_000_000, 0)

    assert tracker.total_cost() == pytest.approx(2.5 + 1.0 + 0.15)
    assert tracker.is_over_budget(3.0)
    assert not tracker.is_over_budget(4.0)
    assert tracker.formatted_cost() == "$3.6500"
    breakdown = {item["model"]: item for item in tracker.summary()["breakdown"]}
    assert breakdown["gpt-4o"]["calls"] == 1
    assert breakdown["mystery-model"]["tokens"] == 1_000_000

    tracker.reset()
    assert tracker.total_cost() == 0


def test_retry_uses_constant_delay_and_stops_on_success():
    delays = []
    outcomes = [StepFailedError("x", SELECTOR_NOT_FOUND), StepFailedError("x", SELECTOR_NOT_FOUND), "ok"]

    def attempt(number):
        outcome = outcomes[number - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert retry(attempt, max_attempts=3, delay=1.0, sleep=delays.append) == "ok"
    assert delays == [1.0, 1.0]


def test_retry_respects_predicate():
    calls = []

    def attempt(number):
        calls.append(number)
        raise StepFailedError("nope", FORBIDDEN_ACTION)

    with pytest.raises(StepFailedError):
        retry(attempt, max_attempts=3, should_retry=lambda exc: exc.retryable, sleep=lambda _: None)
    assert calls == [1]
