"""Abstract base class for LLM providers and shared response handling."""

import json
import re
from abc import ABC, abstractmethod
from typing import Any

DEFAULT_SYSTEM_PROMPT = (
    "You are a precise assistant for a recruiting pipeline. "
    "Answer with a single JSON value only, no markdown and no commentary."
)

_FENCE_OPEN = re.compile(r"^```(?:json|JSON)?\s*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


def strip_code_fences(raw_text: str) -> str:
    """Remove a surrounding ```json ... ``` fence, if any."""
    cleaned = _FENCE_OPEN.sub("", raw_text.strip())
    return _FENCE_CLOSE.sub("", cleaned).strip()


def parse_response(raw_text: str) -> Any:
    """Decode an LLM response as JSON.

    Handles markdown-wrapped JSON and plain JSON. Raises ValueError when
    the text is not valid JSON.
    """
    try:
        return json.loads(strip_code_fences(raw_text))
    except json.JSONDecodeError as e:
        msg = f"Failed to parse LLM response as JSON: {e}"
        raise ValueError(msg) from e


class LLMProvider(ABC):
    """Base class that every LLM provider must implement."""

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique identifier for this provider (e.g. 'anthropic')."""

    @abstractmethod
    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
        max_tokens: int = 2048,
    ) -> str:
        """Send a prompt to the LLM and return the raw response text.

        Args:
            prompt: The user message.
            model: Override the provider's default model. None uses default.
            system: Override the system prompt. None uses DEFAULT_SYSTEM_PROMPT.
            max_tokens: Upper bound on the response length.

        Returns:
            Raw text response from the LLM (expected to be JSON).
        """

    @property
    @abstractmethod
    def default_model(self) -> str:
        """The default model ID used when no override is specified."""

    @property
    @abstractmethod
    def env_var(self) -> str | None:
        """Environment variable name for the API key, or None if not needed."""
