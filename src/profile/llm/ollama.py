"""Ollama local LLM provider (OpenAI-compatible API)."""

import logging
import os

from src.profile.llm.base import DEFAULT_SYSTEM_PROMPT, LLMProvider

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL = "http://localhost:11434/v1"


class OllamaProvider(LLMProvider):
    """LLM provider using a local Ollama server. No API key needed."""

    @property
    def provider_id(self) -> str:
        return "ollama"

    @property
    def default_model(self) -> str:
        return "llama3"

    @property
    def env_var(self) -> None:
        return None

    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
        max_tokens: int = 2048,
    ) -> str:
        try:
            import openai
        except ImportError:
            msg = (
                "openai is required for Ollama (OpenAI-compatible API). "
                "Install with: pip install 'candidate-sourcing[openai]'"
            )
            raise ImportError(msg) from None

        base_url = os.environ.get("OLLAMA_BASE_URL", _DEFAULT_BASE_URL)
        client = openai.OpenAI(base_url=base_url, api_key="ollama")
        use_model = model or self.default_model

        logger.debug("Ollama request (%s at %s)", use_model, base_url)
        response = client.chat.completions.create(
            model=use_model,
            max_tokens=max_tokens,
            messages=[
                {"role": "system", "content": system if system is not None else DEFAULT_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
        )

        return response.choices[0].message.content or ""
