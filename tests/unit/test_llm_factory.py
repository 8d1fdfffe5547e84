import pytest

from shop_agent.core.exceptions import ConfigurationError, ValidationError
from shop_agent.services.llm.anthropic_provider import AnthropicProvider
from shop_agent.services.llm.factory import LLMFactory
from shop_agent.services.llm.ollama_provider import OllamaProvider
from shop_agent.services.subscription import SubscriptionGate


class TestValidateConfig:

    def test_ollama_needs_no_key(self):
        assert LLMFactory.validate_config({"provider": "ollama"}) == {"valid": True, "errors": []}

    def test_unknown_provider(self):
        result = LLMFactory.validate_config({"provider": "mystery"})
        assert not result["valid"]
        assert "Unknown provider 'mystery'" in result["errors"][0]

    def test_api_key_required_for_hosted_providers(self):
        result = LLMFactory.validate_config({"provider": "openai", "api_key": "  "})
        assert result["errors"] == ["API key is required for OpenAI"]

    def test_bad_endpoint_and_ranges(self):
        result = LLMFactory.validate_config({
            "provider": "ollama",
            "endpoint": "localhost:11434",
            "temperature": 3,
            "max_tokens": "lots",
            "timeout": 0,
        })
        assert set(result["errors"]) == {
            "Endpoint must be a valid http(s) URL",
            "temperature must be between 0 and 2",
            "max_tokens must be a number",
            "timeout must be between 1 and 600",
        }


class TestCreate:

    def test_blank_values_fall_back_to_defaults(self):
        provider = LLMFactory.create({"provider": "ollama", "model": "", "endpoint": None})

        assert isinstance(provider, OllamaProvider)
        assert provider.model == "llama2"
        assert provider.endpoint == OllamaProvider.DEFAULT_ENDPOINT

    def test_user_values_win(self):
        provider = LLMFactory.create({"provider": "anthropic", "api_key": "k", "model": "claude-3-haiku-20240307",
                                      "timeout": 20})

        assert isinstance(provider, AnthropicProvider)
        assert provider.model == "claude-3-haiku-20240307"
        assert provider.timeout == 20

    def test_invalid_config_raises_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            LLMFactory.create({"provider": "openai"})
        assert exc_info.value.details["errors"] == ["API key is required for OpenAI"]

    def test_provider_must_be_allowed_by_tier(self, usage_repo):
        free = SubscriptionGate("free", usage_repo)

        with pytest.raises(ConfigurationError):
            LLMFactory.create({"provider": "anthropic", "api_key": "k"}, subscription=free)
        assert isinstance(LLMFactory.create({"provider": "ollama"}, subscription=free), OllamaProvider)

    def test_available_providers_flags_tier(self, usage_repo):
        basic = SubscriptionGate("basic", usage_repo)
        allowed = {p["name"]: p["allowed"] for p in LLMFactory.available_providers(basic)}
        assert allowed == {"ollama": True, "openai": True, "anthropic": False}

    def test_get_defaults_rejects_unknown(self):
        with pytest.raises(ValidationError):
            LLMFactory.get_defaults("mystery")
