"""OpenAI chat completions through the official SDK."""

from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from shop_agent.core.exceptions import ProviderError, TransportError
from shop_agent.core.logging_config import get_logger
from shop_agent.services.llm.base import LLMProvider, LLMResponse, Message

logger = get_logger(__name__)

CHAT_COMPLETIONS_SUFFIX = "/chat/completions"


class OpenAIProvider(LLMProvider):
    name = "openai"
    DEFAULT_ENDPOINT = "https://api.openai.com/v1/chat/completions"
    DEFAULT_MODEL = "gpt-3.5-turbo"
    MODELS = ["gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-4", "gpt-3.5-turbo"]

    def __init__(self, config: Optional[Dict[str, Any]] = None, client: Optional[OpenAI] = None, **kwargs):
        super().__init__(config, **kwargs)
        self.organization = self.config.get("organization") or None
        self._client = client

    @property
    def base_url(self) -> str:
        endpoint = self.endpoint.rstrip("/")
        if endpoint.endswith(CHAT_COMPLETIONS_SUFFIX):
            endpoint = endpoint[: -len(CHAT_COMPLETIONS_SUFFIX)]
        return endpoint

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(
                api_key=self.api_key,
                organization=self.organization,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def _error_from_status(self, e: "openai.APIStatusError") -> Exception:
        message = None
        if isinstance(e.body, dict):
            error = e.body.get("error", e.body)
            if isinstance(error, dict):
                message = error.get("message")
        message = message or f"HTTP {e.status_code}"
        if e.status_code == 429 or e.status_code >= 500:
            return TransportError(self.name, message, details={"status_code": e.status_code})
        return ProviderError(self.name, message, status_code=e.status_code)

    def _send(self, messages: List[Message], opts: Dict[str, Any]) -> LLMResponse:
        params = {
            "model": opts["model"],
            "messages": messages,
            "temperature": opts["temperature"],
            "max_tokens": opts["max_tokens"],
        }
        if opts.get("json_mode"):
            params["response_format"] = {"type": "json_object"}

        try:
            response = self.client.chat.completions.create(**params)
        except openai.APITimeoutError as e:
            raise TransportError(self.name, f"Request to openai timed out after {self.timeout:g}s") from e
        except openai.APIConnectionError as e:
            raise TransportError(self.name, f"Could not reach openai: {e}") from e
        except openai.APIStatusError as e:
            raise self._error_from_status(e) from e
        except openai.APIResponseValidationError as e:
            raise ProviderError(self.name, "Invalid response: body did not match the expected shape") from e

        try:
            choice = response.choices[0]
            content = choice.message.content or ""
        except (AttributeError, IndexError, TypeError) as e:
            raise ProviderError(self.name, "Invalid response: no completion choices returned") from e

        usage = getattr(response, "usage", None)
        return LLMResponse(
            success=True,
            content=content,
            model=getattr(response, "model", None) or opts["model"],
            tokens_used=int(getattr(usage, "total_tokens", 0) or 0),
            finish_reason=getattr(choice, "finish_reason", None),
        )

    def test_connection(self) -> Dict[str, Any]:
        try:
            self.client.models.list()
        except openai.AuthenticationError:
            return {"success": False, "message": "Invalid API key"}
        except openai.PermissionDeniedError:
            return {"success": False, "message": "API key does not have access to this resource"}
        except openai.APIStatusError as e:
            return {"success": False, "message": str(self._error_from_status(e))}
        except openai.APIConnectionError as e:
            return {"success": False, "message": f"Could not reach openai: {e}"}
        return {"success": True, "message": "Connected to OpenAI"}

    def get_available_models(self) -> List[str]:
        return list(self.MODELS)
