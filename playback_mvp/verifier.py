"""Post-action state verification."""
from __future__ import annotations

import logging

from .errors import VERIFICATION_FAILED, BackendError, StepFailedError
from .models import Step

ERROR_INDICATORS = ("alert", "error occurred")
ERROR_KEYWORDS = ("cannot connect", "network error", "server error", "invalid", "failed to")


class Verifier:
    """Asserts the application reached a sane state after an action."""

    def __init__(self, backend) -> None:
        self.backend = backend
        self.logger = logging.getLogger("playback_mvp.verifier")

    def verify(self, step: Step) -> str:
        """Return the tree that was checked, or raise ``VERIFICATION_FAILED``."""
        try:
            tree = self.backend.get_accessibility_tree()
        except (BackendError, OSError) as exc:
            raise StepFailedError(
                "Verification failed: Could not capture accessibility tree",
                VERIFICATION_FAILED,
                {"stepIndex": step.index, "error": str(exc)},
            ) from exc

        if not tree or not tree.strip():
            raise StepFailedError(
                "Verification failed: Accessibility tree is empty (app may have crashed)",
                VERIFICATION_FAILED,
                {"stepIndex": step.index},
            )

        self._check_error_dialog(step, tree)
        if step.checkpoint is not None:
            self._check_checkpoint(step, tree)
        return tree

    def _check_error_dialog(self, step: Step, tree: str) -> None:
        normalized = tree.lower()
        if not any(indicator in normalized for indicator in ERROR_INDICATORS):
            return
        self.logger.warning("Step %s: possible error dialog in accessibility tree", step.index)
        for keyword in ERROR_KEYWORDS:
            if keyword in normalized:
                raise StepFailedError(
                    f'Verification failed: Error dialog detected with message containing "{keyword}"',
                    VERIFICATION_FAILED,
                    {"stepIndex": step.index, "keyword": keyword},
                )

    @staticmethod
    def _check_checkpoint(step: Step, tree: str) -> None:
        checkpoint = step.checkpoint
        for required in checkpoint.required_elements:
            if required not in tree:
                raise StepFailedError(
                    f'Verification failed: Required element not found: "{required}"',
                    VERIFICATION_FAILED,
                    {"stepIndex": step.index, "requiredElement": required},
                )
        for forbidden in checkpoint.forbidden_elements:
            if forbidden in tree:
                raise StepFailedError(
                    f'Verification failed: Forbidden element found: "{forbidden}"',
                    VERIFICATION_FAILED,
                    {"stepIndex": step.index, "forbiddenElement": forbidden},
                )
        if checkpoint.expected_screen and checkpoint.expected_screen not in tree:
            raise StepFailedError(
                f'Verification failed: Expected screen not found: "{checkpoint.expected_screen}"',
                VERIFICATION_FAILED,
                {"stepIndex": step.index, "expectedScreen": checkpoint.expected_screen},
            )
