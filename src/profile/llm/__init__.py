"""LLM provider registry with lazy loading.

Usage:
    from src.profile.llm import get_provider, parse_response

    provider = get_provider("openai")
    raw = provider.complete(prompt, system=instructions)
    data = parse_response(raw)

Providers are synchronous; pipeline stages call them through
``asyncio.to_thread``.
"""

import importlib

from src.profile.llm.base import LLMProvider, parse_response, strip_code_fences

__all__ = [
    "LLMProvider",
    "available_providers",
    "get_provider",
    "parse_response",
    "strip_code_fences",
]

# provider name -> (module_path, class_name)
_REGISTRY: dict[str, tuple[str, str]] = {
    "anthropic": ("src.profile.llm.anthropic", "AnthropicProvider"),
    "openai": ("src.profile.llm.openai", "OpenAIProvider"),
    "gemini": ("src.profile.llm.gemini", "GeminiProvider"),
    "ollama": ("src.profile.llm.ollama", "OllamaProvider"),
}


def get_provider(name: str) -> LLMProvider:
    """Instantiate an LLM provider by name.

    Raises:
        ValueError: If the provider name is unknown.
    """
    if name not in _REGISTRY:
        valid = ", ".join(sorted(_REGISTRY))
        msg = f"Unknown LLM provider '{name}'. Available: {valid}"
        raise ValueError(msg)

    module_path, class_name = _REGISTRY[name]
    module = importlib.import_module(module_path)
    cls = getattr(module, class_name)
    return cls()  # type: ignore[no-any-return]


def available_providers() -> list[str]:
    """Return sorted list of registered provider names."""
    return sorted(_REGISTRY)
