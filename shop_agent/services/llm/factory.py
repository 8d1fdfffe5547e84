"""Provider selection, defaults and offline configuration checks."""

from typing import Any, Dict, List, Optional, Type

import httpx

from shop_agent.core.exceptions import ConfigurationError, ValidationError
from shop_agent.core.logging_config import get_logger
from shop_agent.services.llm.anthropic_provider import AnthropicProvider
from shop_agent.services.llm.audit import PromptAuditLogger
from shop_agent.services.llm.base import (
    DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, DEFAULT_TIMEOUT, LLMProvider, is_valid_url
)
from shop_agent.services.llm.ollama_provider import OllamaProvider
from shop_agent.services.llm.openai_provider import OpenAIProvider

logger = get_logger(__name__)

PROVIDERS: Dict[str, Type[LLMProvider]] = {
    "ollama": OllamaProvider,
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
}

PROVIDER_LABELS = {
    "ollama": "Ollama (local)",
    "openai": "OpenAI",
    "anthropic": "Anthropic Claude",
}


class LLMFactory:

    @staticmethod
    def get_defaults(provider: str) -> Dict[str, Any]:
        provider_class = PROVIDERS.get(provider)
        if provider_class is None:
            raise ValidationError(f"Unknown LLM provider '{provider}'", field="provider")
        return {
            "provider": provider,
            "endpoint": provider_class.DEFAULT_ENDPOINT,
            "model": provider_class.DEFAULT_MODEL,
            "temperature": DEFAULT_TEMPERATURE,
            "max_tokens": DEFAULT_MAX_TOKENS,
            "timeout": DEFAULT_TIMEOUT,
            "json_mode": True,
        }

    @staticmethod
    def merge_config(config: Dict[str, Any]) -> Dict[str, Any]:
        """Provider defaults overlaid with every non-empty user value."""
        provider = config.get("provider") or "ollama"
        merged = LLMFactory.get_defaults(provider)
        merged.update({k: v for k, v in config.items() if v not in (None, "")})
        return merged

    @staticmethod
    def validate_config(config: Dict[str, Any]) -> Dict[str, Any]:
        """Check a configuration without touching the network."""
        errors: List[str] = []
        provider = config.get("provider") or ""
        provider_class = PROVIDERS.get(provider)

        if provider_class is None:
            errors.append(f"Unknown provider '{provider}'. Expected one of: {', '.join(PROVIDERS)}")
            return {"valid": False, "errors": errors}

        merged = LLMFactory.merge_config(config)

        if provider_class.REQUIRES_API_KEY and not str(merged.get("api_key") or "").strip():
            errors.append(f"API key is required for {PROVIDER_LABELS[provider]}")

        if not is_valid_url(str(merged.get("endpoint") or "")):
            errors.append("Endpoint must be a valid http(s) URL")

        for key, low, high, cast in (
            ("temperature", 0, 2, float),
            ("max_tokens", 1, 100000, int),
            ("timeout", 1, 600, int),
        ):
            try:
                value = cast(merged.get(key))
            except (TypeError, ValueError):
                errors.append(f"{key} must be a number")
                continue
            if not low <= value <= high:
                errors.append(f"{key} must be between {low} and {high}")

        return {"valid": not errors, "errors": errors}

    @staticmethod
    def create(
        config: Dict[str, Any],
        subscription=None,
        http_client: Optional[httpx.Client] = None,
        audit: Optional[PromptAuditLogger] = None,
        **provider_kwargs,
    ) -> LLMProvider:
        validation = LLMFactory.validate_config(config)
        if not validation["valid"]:
            raise ValidationError("Invalid LLM configuration", errors=validation["errors"])

        provider = config["provider"]
        if subscription is not None and not subscription.is_provider_allowed(provider):
            raise ConfigurationError(
                "llm_provider",
                f"{PROVIDER_LABELS[provider]} is not available on the {subscription.tier} plan",
            )

        merged = LLMFactory.merge_config(config)
        provider_class = PROVIDERS[provider]
        logger.info("LLM provider created", provider=provider, model=merged["model"])
        return provider_class(merged, http_client=http_client, audit=audit, **provider_kwargs)

    @staticmethod
    def available_providers(subscription=None) -> List[Dict[str, Any]]:
        return [
            {
                "name": name,
                "label": PROVIDER_LABELS[name],
                "requires_api_key": provider_class.REQUIRES_API_KEY,
                "allowed": subscription is None or subscription.is_provider_allowed(name),
            }
            for name, provider_class in PROVIDERS.items()
        ]
