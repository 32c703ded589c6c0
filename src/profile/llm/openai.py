"""OpenAI LLM provider."""

import logging
import os

from src.core.errors import ConfigurationError
from src.profile.llm.base import DEFAULT_SYSTEM_PROMPT, LLMProvider

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """LLM provider using the OpenAI chat completions API."""

    @property
    def provider_id(self) -> str:
        return "openai"

    @property
    def default_model(self) -> str:
        return "gpt-4o-mini"

    @property
    def env_var(self) -> str:
        return "OPENAI_API_KEY"

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
            import openai
        except ImportError:
            msg = (
                "openai is required for this provider. "
                "Install with: pip install 'candidate-sourcing[openai]'"
            )
            raise ImportError(msg) from None

        client = openai.OpenAI(api_key=api_key)
        use_model = model or self.default_model

        logger.debug("OpenAI request (%s, %d chars)", use_model, len(prompt))
        response = client.chat.completions.create(
            model=use_model,
            max_tokens=max_tokens,
            messages=[
                {"role": "system", "content": system if system is not None else DEFAULT_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        )

        return response.choices[0].message.content or ""
