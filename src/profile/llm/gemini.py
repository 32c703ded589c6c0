"""Google Gemini LLM provider (google-genai SDK)."""

import logging
import os

from src.core.errors import ConfigurationError
from src.profile.llm.base import DEFAULT_SYSTEM_PROMPT, LLMProvider

logger = logging.getLogger(__name__)


class GeminiProvider(LLMProvider):
    """LLM provider using the Google Gemini API."""

    @property
    def provider_id(self) -> str:
        return "gemini"

    @property
    def default_model(self) -> str:
        return "gemini-2.5-flash"

    @property
    def env_var(self) -> str:
        return "GOOGLE_API_KEY"

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
            from google import genai
            from google.genai import types as genai_types
        except ImportError:
            msg = (
                "google-genai is required for this provider. "
                "Install with: pip install 'candidate-sourcing[gemini]'"
            )
            raise ImportError(msg) from None

        use_model = model or self.default_model

        logger.debug("Gemini request (%s, %d chars)", use_model, len(prompt))
        client = genai.Client(api_key=api_key)
        response = client.models.generate_content(
            model=use_model,
            contents=prompt,
            config=genai_types.GenerateContentConfig(
                system_instruction=system if system is not None else DEFAULT_SYSTEM_PROMPT,
                max_output_tokens=max_tokens,
                response_mime_type="application/json",
            ),
        )

        return response.text or ""
