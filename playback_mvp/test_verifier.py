"""Tests for post-action verification."""
from __future__ import annotations

import pytest

from .conftest import FakeBackend
from .errors import VERIFICATION_FAILED, StepFailedError
from .models import ActionType, Checkpoint, Step
from .verifier import Verifier


def _step(checkpoint=None) -> Step:
    return Step(index=4, action=ActionType.TAP, checkpoint=checkpoint)


def _verify(tree, checkpoint=None):
    backend = FakeBackend()
    backend.tree_override = tree
    return Verifier(backend).verify(_step(checkpoint))


def _failure(tree, checkpoint=None) -> StepFailedError:
    with pytest.raises(StepFailedError) as excinfo:
        _verify(tree, checkpoint)
    assert excinfo.value.code == VERIFICATION_FAILED
    assert not excinfo.value.retryable
    return excinfo.value


def test_healthy_tree_passes():
    assert _verify("<Window><Button label='Continue'/></Window>").startswith("<Window>")


@pytest.mark.parametrize("tree", ["", "   \n"])
def test_blank_tree_fails(tree):
    assert "empty" in str(_failure(tree))


def test_error_dialog_with_keyword_fails():
    error = _failure("<Alert label='Network Error: please retry'/>")
    assert error.context["keyword"] == "network error"


def test_alert_without_failure_keyword_passes():
    _verify("<Alert label='Allow notifications?'/>")


def test_keyword_without_indicator_passes():
    _verify("<TextField label='Invalid characters are stripped'/>")


def test_backend_error_while_fetching_tree_fails():
    backend = FakeBackend()
    backend.failing.add("get_accessibility_tree")

    with pytest.raises(StepFailedError) as excinfo:
        Verifier(backend).verify(_step())

    assert excinfo.value.code == VERIFICATION_FAILED


def test_checkpoint_required_forbidden_and_screen():
    tree = "<HomeScreen><Button label='Profile'/></HomeScreen>"
    _verify(tree, Checkpoint(required_elements=("Profile", ), forbidden_elements=("Login", ),
                             expected_screen="HomeScreen"))

    assert _failure(tree, Checkpoint(required_elements=("Settings", ))).context["requiredElement"] == "Settings"
    assert _failure(tree, Checkpoint(forbidden_elements=("Profile", ))).context["forbiddenElement"] == "Profile"
    assert _failure(tree, Checkpoint(expected_screen="LoginScreen")).context["expectedScreen"] == "LoginScreen"


def test_checkpoint_checks_short_circuit_in_order():
    tree = "<HomeScreen><Button label='Logout'/></HomeScreen>"
    error = _failure(tree, Checkpoint(required_elements=("Missing", ), forbidden_elements=("Logout", ),
                                      expected_screen="Nowhere"))

    assert "requiredElement" in error.context


def test_checkpoint_is_case_sensitive():
    _failure("<Button label='profile'/>", Checkpoint(required_elements=("Profile", )))
