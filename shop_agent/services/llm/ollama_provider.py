"""Local models served by Ollama (generate and chat APIs)."""

from typing import Any, Dict, List

from shop_agent.core.exceptions import ProviderError, ShopAgentException
from shop_agent.core.logging_config import get_logger
from shop_agent.services.llm.base import LLMProvider, LLMResponse, Message

logger = get_logger(__name__)

ROLE_PREFIXES = {"system": "System", "user": "User", "assistant": "Assistant"}


class OllamaProvider(LLMProvider):
    name = "ollama"
    DEFAULT_ENDPOINT = "http://localhost:11434/api/generate"
    DEFAULT_MODEL = "llama2"
    REQUIRES_API_KEY = False

    @property
    def base_url(self) -> str:
        endpoint = self.endpoint.rstrip("/")
        marker = endpoint.find("/api/")
        return endpoint[:marker] if marker != -1 else endpoint

    @property
    def uses_chat_api(self) -> bool:
        return self.endpoint.rstrip("/").endswith("/api/chat")

    @staticmethod
    def build_prompt(messages: List[Message]) -> str:
        """Flatten the conversation into one role-prefixed prompt."""
        parts = [
            f"{ROLE_PREFIXES.get(m.get('role'), 'User')}: {m.get('content', '')}"
            for m in messages
        ]
        parts.append("Assistant:")
        return "\n\n".join(parts)

    def _send(self, messages: List[Message], opts: Dict[str, Any]) -> LLMResponse:
        payload: Dict[str, Any] = {
            "model": opts["model"],
            "stream": False,
            "options": {
                "temperature": opts["temperature"],
                "num_predict": opts["max_tokens"],
            },
        }
        if self.uses_chat_api:
            payload["messages"] = [{"role": m["role"], "content": m["content"]} for m in messages]
        else:
            payload["prompt"] = self.build_prompt(messages)
        if opts.get("json_mode"):
            payload["format"] = "json"

        body = self._decode(self._request("POST", self.endpoint, json=payload))

        if self.uses_chat_api:
            message = body.get("message")
            content = message.get("content") if isinstance(message, dict) else None
        else:
            content = body.get("response")
        if not isinstance(content, str):
            raise ProviderError(self.name, "Invalid response: no generated text in body")

        tokens = int(body.get("eval_count") or 0) + int(body.get("prompt_eval_count") or 0)
        return LLMResponse(
            success=True,
            content=content,
            model=body.get("model") or opts["model"],
            tokens_used=tokens,
            finish_reason=body.get("done_reason"),
        )

    def _list_tags(self) -> List[str]:
        body = self._decode(self._request("GET", f"{self.base_url}/api/tags"))
        return [m.get("name") for m in body.get("models", []) if isinstance(m, dict) and m.get("name")]

    def test_connection(self) -> Dict[str, Any]:
        try:
            models = self._list_tags()
        except ShopAgentException as e:
            return {"success": False, "message": e.message}
        if self.model not in models and f"{self.model}:latest" not in models:
            return {
                "success": True,
                "message": f"Connected to Ollama, but model '{self.model}' is not pulled",
                "models": models,
            }
        return {"success": True, "message": f"Connected to Ollama ({len(models)} models)", "models": models}

    def get_available_models(self) -> List[str]:
        try:
            return self._list_tags()
        except ShopAgentException as e:
            logger.warning("Could not list Ollama models", error=e.message)
            return []
