"""Anthropic Claude LLM provider."""

import logging
import os

from src.core.errors import ConfigurationError
from src.profile.llm.base import DEFAULT_SYSTEM_PROMPT, LLMProvider

logger = logging.getLogger(__name__)


class AnthropicProvider(LLMProvider):
    """LLM provider using the Anthropic Messages API."""

    @property
    def provider_id(self) -> str:
        return "anthropic"

    @property
    def default_model(self) -> str:
        return "claude-sonnet-4-20250514"

    @property
    def env_var(self) -> str:
        return "ANTHROPIC_API_KEY"

    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
        max_tokens: int = 2048,
    ) -> str:
        api_key = os.environ.get(self.env_var)
        if not api_key:
            msg = f"{self.env_var} environment variable is required"
            raise ConfigurationError(msg)

        try:
            import anthropic
        except ImportError:
            msg = (
                "anthropic is required for this provider. "
                "Install with: pip install 'candidate-sourcing[anthropic]'"
            )
            raise ImportError(msg) from None

        client = anthropic.Anthropic(api_key=api_key)
        use_model = model or self.default_model

        logger.debug("Anthropic request (%s, %d chars)", use_model, len(prompt))
        message = client.messages.create(
            model=use_model,
            max_tokens=max_tokens,
            system=system if system is not None else DEFAULT_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )

        return message.content[0].text  # type: ignore[union-attr]
