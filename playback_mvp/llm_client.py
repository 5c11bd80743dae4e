"""LLM client implemented via the OpenAI Chat Completions API."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from openai import OpenAI

DEFAULT_TIMEOUT = 30.0


class LLMClientError(RuntimeError):
    """Raised when the LLM API returns an error."""


@dataclass
class LLMCompletion:
    content: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0


class LLMClient:
    """Wrapper around the OpenAI chat completions endpoint.

    The client holds no model of its own; every call names the model it wants,
    so tiers can share one client without reconfiguring it.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_tokens: int = 1000,
    ) -> None:
        env_api_key = api_key or os.getenv("OPENAI_API_KEY") or os.getenv("API_KEY")
        if not env_api_key:
            raise ValueError("OPENAI_API_KEY (or API_KEY) is not configured, cannot call the LLM")

        env_base_url = base_url or os.getenv("OPENAI_BASE_URL") or os.getenv("BASE_URL") or "https://api.openai.com/v1"
        timeout_env = os.getenv("LLM_TIMEOUT")
        self.timeout = timeout or (float(timeout_env) if timeout_env else DEFAULT_TIMEOUT)
        self.max_tokens = max_tokens
        self.client = OpenAI(api_key=env_api_key, base_url=env_base_url)

    def chat_completion(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: str,
        temperature: float = 0.3,
        json_mode: bool = False,
        timeout: Optional[float] = None,
    ) -> LLMCompletion:
        options: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": self.max_tokens,
            "timeout": min(timeout, self.timeout) if timeout else self.timeout,
        }
        if json_mode:
            options["response_format"] = {"type": "json_object"}

        try:
            response = self.client.chat.completions.create(**options)
        except Exception as exc:  # pragma: no cover - SDK exception hierarchy
            raise LLMClientError(f"LLM API call failed: {exc}") from exc

        if not response.choices:
            raise LLMClientError("LLM returned no choices")

        usage = getattr(response, "usage", None)
        prompt_tokens = getattr(usage, "prompt_tokens", 0) or 0
        completion_tokens = getattr(usage, "completion_tokens", 0) or 0

        message = response.choices[0].message
        content = getattr(message, "content", None)
        if isinstance(content, str) and content:
            return LLMCompletion(content, response.model or model, prompt_tokens, completion_tokens)

        # ChatCompletionMessage content may be a list of parts
        if isinstance(content, list):
            texts = [item.get("text") for item in content if isinstance(item, dict) and item.get("text")]
            if texts:
                return LLMCompletion("".join(texts), response.model or model, prompt_tokens, completion_tokens)

        raise LLMClientError("LLM response did not contain text content")
