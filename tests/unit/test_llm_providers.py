"""
Tests for the LLM providers and the guarded gateway.

HTTP providers run against ``httpx.MockTransport``; the OpenAI provider gets a
mocked SDK client.
"""

import json
from unittest.mock import MagicMock

import httpx
import openai
import pytest

from shop_agent.core.exceptions import ProviderError, TransportError
from shop_agent.core.resilience import (
    CircuitBreakerConfig, InMemoryCircuitStore, ResilienceManager, RetryConfig, RetryStrategy
)
from shop_agent.services.llm.anthropic_provider import AnthropicProvider
from shop_agent.services.llm.base import LLMProvider, LLMResponse
from shop_agent.services.llm.gateway import LLMGateway
from shop_agent.services.llm.ollama_provider import OllamaProvider
from shop_agent.services.llm.openai_provider import OpenAIProvider

MESSAGES = [
    {"role": "system", "content": "You are a shop assistant."},
    {"role": "user", "content": "Analyze product 1."},
]


def mock_client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


class TestOllamaProvider:

    def test_generate_api_flattens_messages(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "model": "llama2", "response": '{"analysis": "ok"}',
                "eval_count": 20, "prompt_eval_count": 10, "done_reason": "stop",
            })

        provider = OllamaProvider({"model": "llama2"}, http_client=mock_client(handler))
        response = provider.call(MESSAGES)

        assert response.success
        assert response.content == '{"analysis": "ok"}'
        assert response.tokens_used == 30
        assert response.provider == "ollama"
        assert seen["url"] == "http://localhost:11434/api/generate"
        assert seen["body"]["prompt"].startswith("System: You are a shop assistant.")
        assert seen["body"]["prompt"].endswith("Assistant:")
        assert seen["body"]["format"] == "json"
        assert seen["body"]["stream"] is False

    def test_chat_api_keeps_roles(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"message": {"role": "assistant", "content": "hi"}})

        provider = OllamaProvider(
            {"endpoint": "http://ollama:11434/api/chat", "json_mode": False}, http_client=mock_client(handler)
        )
        response = provider.call(MESSAGES)

        assert response.success
        assert response.content == "hi"
        assert seen["body"]["messages"][0]["role"] == "system"
        assert "format" not in seen["body"]

    def test_connection_failure_is_retryable_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        response = OllamaProvider({}, http_client=mock_client(handler)).call(MESSAGES)

        assert not response.success
        assert isinstance(response.exception, TransportError)
        assert response.retryable

    def test_server_error_is_retryable(self):
        response = OllamaProvider(
            {}, http_client=mock_client(lambda r: httpx.Response(503, text="overloaded"))
        ).call(MESSAGES)

        assert response.error_code == "TRANSPORT_ERROR"
        assert response.retryable

    def test_client_error_is_provider_error(self):
        response = OllamaProvider(
            {}, http_client=mock_client(lambda r: httpx.Response(404, json={"error": "model 'x' not found"}))
        ).call(MESSAGES)

        assert isinstance(response.exception, ProviderError)
        assert not response.retryable
        assert "model 'x' not found" in response.error

    def test_body_without_text_is_provider_error(self):
        response = OllamaProvider(
            {}, http_client=mock_client(lambda r: httpx.Response(200, json={"done": True}))
        ).call(MESSAGES)

        assert response.error_code == "PROVIDER_ERROR"

    def test_models_from_tags(self):
        def handler(request):
            assert request.url.path == "/api/tags"
            return httpx.Response(200, json={"models": [{"name": "llama2:latest"}, {"name": "mistral"}]})

        provider = OllamaProvider({}, http_client=mock_client(handler))

        assert provider.get_available_models() == ["llama2:latest", "mistral"]
        assert provider.test_connection()["success"]


class TestAnthropicProvider:

    def test_system_prompt_is_separate(self):
        seen = {}

        def handler(request):
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "model": "claude-3-haiku-20240307",
                "content": [{"type": "text", "text": '{"analysis": '}, {"type": "text", "text": '"ok"}'}],
                "usage": {"input_tokens": 12, "output_tokens": 8},
                "stop_reason": "end_turn",
            })

        provider = AnthropicProvider({"api_key": "sk-test"}, http_client=mock_client(handler))
        response = provider.call(MESSAGES)

        assert response.success
        assert response.content == '{"analysis": "ok"}'
        assert response.tokens_used == 20
        assert seen["headers"]["x-api-key"] == "sk-test"
        assert seen["body"]["system"] == "You are a shop assistant."
        assert seen["body"]["messages"] == [{"role": "user", "content": "Analyze product 1."}]

    def test_error_envelope(self):
        def handler(request):
            return httpx.Response(400, json={"type": "error", "error": {"type": "invalid_request_error",
                                                                         "message": "max_tokens too large"}})

        response = AnthropicProvider({"api_key": "k"}, http_client=mock_client(handler)).call(MESSAGES)

        assert not response.success
        assert response.error_code == "PROVIDER_ERROR"
        assert "max_tokens too large" in response.error

    def test_rate_limited_is_retryable(self):
        response = AnthropicProvider(
            {"api_key": "k"}, http_client=mock_client(lambda r: httpx.Response(429, json={"error": {"message": "slow"}}))
        ).call(MESSAGES)

        assert response.retryable

    def test_connection_check_reports_bad_key(self):
        provider = AnthropicProvider(
            {"api_key": "bad"}, http_client=mock_client(lambda r: httpx.Response(401, json={"error": {"message": "no"}}))
        )
        assert provider.test_connection() == {"success": False, "message": "Invalid API key"}


class TestOpenAIProvider:

    def _completion(self, content="{}", total_tokens=15):
        completion = MagicMock()
        completion.model = "gpt-4o-mini"
        completion.choices = [MagicMock(finish_reason="stop", message=MagicMock(content=content))]
        completion.usage = MagicMock(total_tokens=total_tokens)
        return completion

    def test_successful_completion(self):
        client = MagicMock()
        client.chat.completions.create.return_value = self._completion('{"analysis": "ok"}')

        provider = OpenAIProvider({"api_key": "sk", "model": "gpt-4o-mini"}, client=client)
        response = provider.call(MESSAGES)

        assert response.success
        assert response.content == '{"analysis": "ok"}'
        assert response.tokens_used == 15
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"] == MESSAGES

    def test_status_errors_are_classified(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        client = MagicMock()
        client.chat.completions.create.side_effect = [
            openai.RateLimitError("slow down", response=httpx.Response(429, request=request),
                                  body={"error": {"message": "Rate limit reached"}}),
            openai.BadRequestError("bad", response=httpx.Response(400, request=request),
                                   body={"error": {"message": "Invalid model"}}),
        ]
        provider = OpenAIProvider({"api_key": "sk"}, client=client)

        throttled = provider.call(MESSAGES)
        rejected = provider.call(MESSAGES)

        assert throttled.error_code == "TRANSPORT_ERROR"
        assert throttled.retryable
        assert rejected.error_code == "PROVIDER_ERROR"
        assert "Invalid model" in rejected.error

    def test_connection_error_is_transport_error(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        client = MagicMock()
        client.chat.completions.create.side_effect = openai.APIConnectionError(request=request)

        response = OpenAIProvider({"api_key": "sk"}, client=client).call(MESSAGES)

        assert isinstance(response.exception, TransportError)

    def test_empty_choices_is_provider_error(self):
        completion = self._completion()
        completion.choices = []
        client = MagicMock()
        client.chat.completions.create.return_value = completion

        response = OpenAIProvider({"api_key": "sk"}, client=client).call(MESSAGES)

        assert response.error_code == "PROVIDER_ERROR"

    def test_base_url_strips_completions_path(self):
        provider = OpenAIProvider({"api_key": "sk", "endpoint": "https://proxy.local/v1/chat/completions"})
        assert provider.base_url == "https://proxy.local/v1"


class ScriptedProvider(LLMProvider):
    """Raises or answers from a list, one entry per call."""

    name = "scripted"
    DEFAULT_MODEL = "scripted-1"

    def __init__(self, outcomes, **kwargs):
        super().__init__({"timeout": 5}, **kwargs)
        self.outcomes = list(outcomes)
        self.sent = 0

    def _send(self, messages, opts):
        self.sent += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return LLMResponse(success=True, content=outcome, model=opts["model"])

    def test_connection(self):
        return {"success": True}

    def get_available_models(self):
        return [self.DEFAULT_MODEL]


class TestLLMGateway:

    def _gateway(self, provider, attempts=3, threshold=5):
        resilience = ResilienceManager(
            store=InMemoryCircuitStore(),
            breaker_config=CircuitBreakerConfig(failure_threshold=threshold, recovery_timeout=60),
        )
        retry = RetryStrategy(RetryConfig(max_attempts=attempts, initial_delay=0), sleep=lambda s: None)
        return LLMGateway(provider, resilience=resilience, retry_strategy=retry), resilience

    def test_transport_errors_are_retried(self):
        provider = ScriptedProvider([TransportError("scripted", "reset"), "done"])
        gateway, _ = self._gateway(provider)

        response = gateway.complete(MESSAGES)

        assert response.success
        assert response.content == "done"
        assert provider.sent == 2

    def test_provider_errors_are_not_retried(self):
        provider = ScriptedProvider([ProviderError("scripted", "bad request", status_code=400), "unused"])
        gateway, _ = self._gateway(provider)

        response = gateway.complete(MESSAGES)

        assert not response.success
        assert response.error_code == "PROVIDER_ERROR"
        assert provider.sent == 1

    def test_circuit_opens_and_fails_fast(self):
        provider = ScriptedProvider([TransportError("scripted", "down")] * 2 + ["never sent"])
        gateway, resilience = self._gateway(provider, attempts=1, threshold=2)

        gateway.complete(MESSAGES)
        gateway.complete(MESSAGES)
        response = gateway.complete(MESSAGES)

        assert response.error_code == "CIRCUIT_BREAKER_OPEN"
        assert provider.sent == 2
        assert resilience.get_all_circuit_breakers()["llm_scripted"]["state"] == "open"

    def test_timeout_budget_includes_grace(self):
        gateway, _ = self._gateway(ScriptedProvider([]))
        assert gateway.timeout == pytest.approx(10.0)
        assert gateway.circuit_name == "llm_scripted"
