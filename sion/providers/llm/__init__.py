from typing import Any, Dict, Optional, Type

from .base import (
    LLMMessage,
    LLMProvider,
    LLMProviderError,
    LLMStreamChunk,
    ToolCall,
    ToolDefinition,
    ToolResult,
)
from .anthropic import AnthropicProvider

PROVIDER_ALIAS_MAP: Dict[str, str] = {
    "claude": "anthropic",
}

PROVIDER_DISPLAY_NAMES: Dict[str, str] = {
    "anthropic": "Anthropic Claude",
}

# Registry of available LLM providers
PROVIDER_REGISTRY: Dict[str, Type[LLMProvider]] = {
    "anthropic": AnthropicProvider,
}


class ModelUnavailableError(LLMProviderError):
    """No provider can serve the requested model (unknown provider or missing key)."""
    code = "model_unavailable"


def canonical_provider_name(name: str) -> str:
    """Normalize provider aliases to their canonical identifier."""
    return PROVIDER_ALIAS_MAP.get(name.lower(), name.lower())


def _api_key_for(provider: str, settings: Any) -> str:
    if provider == "anthropic":
        return settings.anthropic_api_key
    return ""


def get_available_providers(settings: Optional[Any] = None) -> Dict[str, Dict[str, Any]]:
    """Return metadata about supported LLM providers."""
    if settings is None:
        from ...config import settings

    providers_info: Dict[str, Dict[str, Any]] = {}
    for provider_name in PROVIDER_REGISTRY:
        display_name = PROVIDER_DISPLAY_NAMES.get(provider_name, provider_name.title())
        providers_info[provider_name] = {
            "status": "available" if _api_key_for(provider_name, settings) else "unconfigured",
            "default_model": settings.resolve_default_model(provider_name),
            "display_name": display_name,
            "models": settings.provider_models_catalog.get(provider_name, []),
        }
    return providers_info


def get_llm_provider(
    provider_name: Optional[str] = None,
    model: Optional[str] = None,
    settings: Optional[Any] = None,
    **kwargs,
) -> LLMProvider:
    """Instantiate an LLM provider for ``model``.

    The provider is inferred from the model catalog when not given. Models not
    in the catalog fall back to the provider's default model.
    """
    if settings is None:
        from ...config import settings

    model_input = (model or "").strip() or None
    requested = (provider_name or "").strip().lower() or None
    if requested is None and model_input:
        requested = settings.resolve_provider_for_model(model_input)
    resolved_provider = canonical_provider_name(requested or settings.llm_provider)

    provider_class = PROVIDER_REGISTRY.get(resolved_provider)
    if provider_class is None:
        available = ", ".join(PROVIDER_REGISTRY)
        raise ModelUnavailableError(
            f"Unsupported provider '{resolved_provider}'. Available providers: {available}"
        )

    api_key = _api_key_for(resolved_provider, settings)
    if not api_key:
        raise ModelUnavailableError(f"No API key configured for provider: {resolved_provider}")

    allowed_ids = {
        entry.get("id")
        for entry in settings.provider_models_catalog.get(resolved_provider, [])
        if entry.get("id")
    }
    resolved_model = model_input or settings.llm_model
    if allowed_ids and resolved_model not in allowed_ids:
        resolved_model = settings.resolve_default_model(resolved_provider)

    return provider_class(api_key=api_key, model=resolved_model, **kwargs)


__all__ = [
    "LLMProvider",
    "LLMMessage",
    "LLMStreamChunk",
    "LLMProviderError",
    "ModelUnavailableError",
    "ToolCall",
    "ToolDefinition",
    "ToolResult",
    "AnthropicProvider",
    "get_available_providers",
    "get_llm_provider",
    "PROVIDER_REGISTRY",
    "canonical_provider_name",
]
