"""Uniform contract over the LLM backends."""

import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from shop_agent.core.exceptions import ProviderError, ShopAgentException, TransportError
from shop_agent.core.logging_config import get_logger
from shop_agent.services.llm.audit import PromptAuditLogger

logger = get_logger(__name__)

Message = Dict[str, str]

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2000
DEFAULT_TIMEOUT = 60


@dataclass
class LLMResponse:
    success: bool
    content: str = ""
    model: str = ""
    provider: str = ""
    tokens_used: int = 0
    duration_ms: int = 0
    finish_reason: Optional[str] = None
    error: Optional[str] = None
    exception: Optional[ShopAgentException] = field(default=None, repr=False)

    @property
    def error_code(self) -> Optional[str]:
        return self.exception.error_code if self.exception else None

    @property
    def retryable(self) -> bool:
        return bool(self.exception is not None and self.exception.retryable)

    @classmethod
    def failure(cls, provider: str, model: str, error: ShopAgentException, duration_ms: int = 0) -> "LLMResponse":
        return cls(
            success=False,
            provider=provider,
            model=model,
            duration_ms=duration_ms,
            error=error.message,
            exception=error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "content": self.content,
            "model": self.model,
            "provider": self.provider,
            "tokens_used": self.tokens_used,
            "duration_ms": self.duration_ms,
            "finish_reason": self.finish_reason,
            "error": self.error,
            "error_code": self.error_code,
        }


def is_valid_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class LLMProvider(ABC):
    """
    One backend. ``call`` never raises: transport problems, provider error
    envelopes and malformed bodies all come back as ``success=False`` with the
    matching exception attached. Retrying is left to the caller.
    """

    name: str = ""
    DEFAULT_ENDPOINT: str = ""
    DEFAULT_MODEL: str = ""
    REQUIRES_API_KEY: bool = True

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        http_client: Optional[httpx.Client] = None,
        audit: Optional[PromptAuditLogger] = None,
    ):
        config = dict(config or {})
        self.api_key: str = config.get("api_key") or ""
        self.endpoint: str = config.get("endpoint") or self.DEFAULT_ENDPOINT
        self.model: str = config.get("model") or self.DEFAULT_MODEL
        self.temperature: float = float(config.get("temperature", DEFAULT_TEMPERATURE))
        self.max_tokens: int = int(config.get("max_tokens", DEFAULT_MAX_TOKENS))
        self.timeout: float = float(config.get("timeout", DEFAULT_TIMEOUT))
        self.json_mode: bool = bool(config.get("json_mode", True))
        self.config = config
        self._http = http_client
        self.audit = audit or PromptAuditLogger(enabled=False)

    @property
    def http(self) -> httpx.Client:
        if self._http is None:
            self._http = httpx.Client(timeout=self.timeout)
        return self._http

    def call(self, messages: List[Message], options: Optional[Dict[str, Any]] = None) -> LLMResponse:
        opts = {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "json_mode": self.json_mode,
        }
        opts.update({k: v for k, v in (options or {}).items() if v is not None})

        self.audit.log_prompt(messages, self.name)
        started = time.monotonic()
        try:
            response = self._send(messages, opts)
        except ShopAgentException as e:
            response = LLMResponse.failure(self.name, opts["model"], e)
            logger.warning(
                "LLM call failed",
                provider=self.name,
                model=opts["model"],
                error_code=e.error_code,
                error=e.message,
            )
        response.provider = self.name
        response.duration_ms = int((time.monotonic() - started) * 1000)
        self.audit.log_response(response.to_dict(), self.name)
        return response

    @abstractmethod
    def _send(self, messages: List[Message], opts: Dict[str, Any]) -> LLMResponse:
        """Perform one request; raise TransportError/ProviderError on failure."""

    @abstractmethod
    def test_connection(self) -> Dict[str, Any]:
        pass

    @abstractmethod
    def get_available_models(self) -> List[str]:
        pass

    # HTTP helpers shared by the httpx-based providers

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return self.http.request(method, url, timeout=kwargs.pop("timeout", self.timeout), **kwargs)
        except httpx.TimeoutException as e:
            raise TransportError(self.name, f"Request to {self.name} timed out after {self.timeout:g}s") from e
        except httpx.HTTPError as e:
            raise TransportError(self.name, f"Could not reach {self.name}: {e}") from e

    def _decode(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError):
            body = None

        if response.status_code >= 400:
            message = self._error_message(body) or (response.text[:300] if response.text else f"HTTP {response.status_code}")
            if response.status_code == 429 or response.status_code >= 500:
                raise TransportError(self.name, message, details={"status_code": response.status_code})
            raise ProviderError(self.name, message, status_code=response.status_code)

        if not isinstance(body, dict):
            raise ProviderError(self.name, "Invalid response: body is not a JSON object", status_code=response.status_code)
        return body

    def _error_message(self, body: Any) -> Optional[str]:
        if not isinstance(body, dict):
            return None
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("message")
        if isinstance(error, str):
            return error
        return None
