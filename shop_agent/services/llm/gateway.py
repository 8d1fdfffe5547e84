"""Guarded access to the configured LLM provider."""

from typing import Any, Dict, List, Optional

from shop_agent.core.exceptions import ProviderError, ShopAgentException
from shop_agent.core.logging_config import get_logger
from shop_agent.core.resilience import ResilienceManager, RetryConfig, RetryStrategy
from shop_agent.services.llm.base import LLMProvider, LLMResponse, Message

logger = get_logger(__name__)

TIMEOUT_GRACE_SECONDS = 5.0


class LLMGateway:
    """
    Wraps a provider with the ``llm_<provider>`` circuit breaker, a hard time
    budget and retries of retryable transport failures. Like the providers it
    never raises; failures come back as ``LLMResponse(success=False)``.
    """

    def __init__(
        self,
        provider: LLMProvider,
        resilience: Optional[ResilienceManager] = None,
        retry_attempts: int = 3,
        retry_delay_ms: int = 1000,
        retry_strategy: Optional[RetryStrategy] = None,
    ):
        self.provider = provider
        self.resilience = resilience or ResilienceManager()
        self.retry = retry_strategy or RetryStrategy(RetryConfig(
            max_attempts=max(1, int(retry_attempts)),
            initial_delay=max(0, int(retry_delay_ms)) / 1000.0,
        ))
        self.circuit_name = f"llm_{provider.name}"
        self.timeout = provider.timeout + TIMEOUT_GRACE_SECONDS

    @property
    def provider_name(self) -> str:
        return self.provider.name

    @property
    def model(self) -> str:
        return self.provider.model

    def _attempt(self, messages: List[Message], options: Optional[Dict[str, Any]]) -> LLMResponse:
        response = self.provider.call(messages, options)
        if not response.success:
            raise response.exception or ProviderError(self.provider.name, response.error or "Unknown error")
        return response

    def complete(self, messages: List[Message], options: Optional[Dict[str, Any]] = None) -> LLMResponse:
        try:
            return self.retry.call(
                self.resilience.guard,
                self.circuit_name,
                self._attempt,
                messages,
                options,
                timeout=self.timeout,
                operation=self.circuit_name,
            )
        except ShopAgentException as e:
            return LLMResponse.failure(self.provider.name, self.provider.model, e)

    def test_connection(self) -> Dict[str, Any]:
        return self.provider.test_connection()

    def get_available_models(self) -> List[str]:
        return self.provider.get_available_models()
