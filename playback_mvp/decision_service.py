"""LLM-backed decision service that proposes a selector for a lost element."""
from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from jsonschema import Draft7Validator

from .cost_tracker import CostTracker
from .llm_client import LLMClient, LLMClientError
from .models import ElementSelector

JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
MAX_TREE_CHARS = 40_000

METHOD_ALIASES = {
    "identifier": "identifier",
    "accessibilityid": "identifier",
    "accessibilityidentifier": "identifier",
    "label": "label",
    "text": "label",
    "path": "path",
    "xpath": "path",
}

REPLY_SCHEMA = {
    "type": "object",
    "required": ["selector", "method"],
    "properties": {
        "selector": {"type": "string", "minLength": 1},
        "method": {"type": "string", "minLength": 1},
        "reasoning": {"type": "string"},
    },
}

SYSTEM_PROMPT = """You are an expert at analyzing mobile accessibility trees and locating UI elements.

Your task is to find a UI element in the accessibility tree based on the original selector that failed.

Return your response as JSON with:
{
  "selector": "the accessibility identifier, label text, or xpath to use",
  "method": "identifier" | "label" | "path",
  "reasoning": "brief explanation of why this element matches"
}

Guidelines:
- Prefer an accessibility identifier if available (most stable)
- Use label text for buttons and text elements
- Use an xpath only as last resort
- Look for elements with similar labels, roles, or hierarchy
- Consider that text may have changed slightly but UI structure is similar"""


class DecisionError(RuntimeError):
    """The decision service could not produce a usable proposal."""


@dataclass(frozen=True)
class DecisionTier:
    """A named model tier, e.g. the fast default or the escalation target."""

    name: str
    model: str


def default_tiers() -> List[DecisionTier]:
    return [
        DecisionTier("fast", os.getenv("OPENAI_MODEL_FAST") or "gpt-4o-mini"),
        DecisionTier("strong", os.getenv("OPENAI_MODEL_STRONG") or "gpt-4o"),
    ]


def extract_json_block(text: str) -> str:
    match = JSON_BLOCK_RE.search(text)
    if match:
        return match.group(1)
    first_brace = text.find("{")
    last_brace = text.rfind("}")
    if first_brace != -1 and last_brace != -1 and last_brace > first_brace:
        return text[first_brace:last_brace + 1]
    raise ValueError("LLM output did not contain a JSON object")


@dataclass(frozen=True)
class DecisionRequest:
    original_selector: ElementSelector
    accessibility_tree: str

    def selector_lines(self) -> List[str]:
        lines = []
        for key, value in self.original_selector.to_dict().items():
            rendered = json.dumps(value, ensure_ascii=False) if not isinstance(value, str) else f'"{value}"'
            lines.append(f"- {key}: {rendered}")
        return lines

    def as_messages(self, max_tree_chars: int = MAX_TREE_CHARS) -> List[Dict[str, str]]:
        tree = self.accessibility_tree
        if len(tree) > max_tree_chars:
            tree = tree[:max_tree_chars] + "\n<!-- accessibility tree truncated -->"
        user_prompt = ("I'm trying to locate a UI element that was originally identified with these selectors:\n\n"
                       + "\n".join(self.selector_lines()) + "\n\n"
                       "None of these selectors worked. Here's the current accessibility tree:\n\n"
                       f"```xml\n{tree}\n```\n\n"
                       "Please analyze the tree and suggest the best selector to locate this element. "
                       "Return as JSON.")
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt},
        ]


@dataclass(frozen=True)
class Decision:
    selector: str
    method: str
    reasoning: str
    tier: DecisionTier
    prompt_tokens: int = 0
    completion_tokens: int = 0


class DecisionService:
    """Asks one tier of the LLM for a selector proposal per call."""

    def __init__(
        self,
        client: Optional[LLMClient] = None,
        *,
        cost_tracker: Optional[CostTracker] = None,
        temperature: float = 0.3,
    ) -> None:
        self._client = client
        self.cost_tracker = cost_tracker
        self.temperature = temperature
        self.validator = Draft7Validator(REPLY_SCHEMA)
        self.logger = logging.getLogger("playback_mvp.decision")

    @property
    def client(self) -> LLMClient:
        if self._client is None:
            self._client = LLMClient()
        return self._client

    def propose(self, request: DecisionRequest, tier: DecisionTier, *, timeout: Optional[float] = None) -> Decision:
        try:
            completion = self.client.chat_completion(
                request.as_messages(),
                model=tier.model,
                temperature=self.temperature,
                json_mode=True,
                timeout=timeout,
            )
        except (LLMClientError, ValueError) as exc:
            raise DecisionError(f"{tier.name} tier ({tier.model}) call failed: {exc}") from exc

        if self.cost_tracker is not None:
            self.cost_tracker.record_usage(tier.model, completion.prompt_tokens, completion.completion_tokens)

        payload = self._parse_reply(completion.content, tier)
        decision = Decision(
            selector=payload["selector"],
            method=payload["method"],
            reasoning=payload.get("reasoning", ""),
            tier=tier,
            prompt_tokens=completion.prompt_tokens,
            completion_tokens=completion.completion_tokens,
        )
        self.logger.info(
            "%s tier suggested %s selector %r: %s",
            tier.name,
            decision.method,
            decision.selector,
            decision.reasoning,
        )
        return decision

    def _parse_reply(self, content: str, tier: DecisionTier) -> Dict[str, str]:
        try:
            payload = json.loads(extract_json_block(content))
        except ValueError as exc:
            raise DecisionError(f"{tier.name} tier returned invalid JSON: {exc}") from exc

        errors = sorted(self.validator.iter_errors(payload), key=lambda e: [str(part) for part in e.path])
        if errors:
            messages = "; ".join(error.message for error in errors)
            raise DecisionError(f"{tier.name} tier reply failed validation: {messages}")

        method = METHOD_ALIASES.get(payload["method"].strip().lower())
        if method is None:
            raise DecisionError(f"{tier.name} tier proposed unsupported method {payload['method']!r}")
        payload["method"] = method
        return payload
