"""Anthropic messages API over httpx."""

from typing import Any, Dict, List

from shop_agent.core.exceptions import ProviderError, ShopAgentException
from shop_agent.services.llm.base import LLMProvider, LLMResponse, Message

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(LLMProvider):
    name = "anthropic"
    DEFAULT_ENDPOINT = "https://api.anthropic.com/v1/messages"
    DEFAULT_MODEL = "claude-3-sonnet-20240229"
    MODELS = [
        "claude-3-5-sonnet-20241022",
        "claude-3-opus-20240229",
        "claude-3-sonnet-20240229",
        "claude-3-haiku-20240307",
    ]

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    @staticmethod
    def split_messages(messages: List[Message]):
        """System prompts go in their own field; the rest stay as the conversation."""
        system_parts = [m["content"] for m in messages if m.get("role") == "system"]
        conversation = [
            {"role": m["role"], "content": m["content"]}
            for m in messages
            if m.get("role") in ("user", "assistant")
        ]
        return "\n\n".join(system_parts), conversation

    def _send(self, messages: List[Message], opts: Dict[str, Any]) -> LLMResponse:
        system, conversation = self.split_messages(messages)
        payload: Dict[str, Any] = {
            "model": opts["model"],
            "max_tokens": opts["max_tokens"],
            "temperature": opts["temperature"],
            "messages": conversation,
        }
        if system:
            payload["system"] = system

        body = self._decode(self._request("POST", self.endpoint, json=payload, headers=self._headers()))

        try:
            blocks = body.get("content") or []
            content = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
            usage = body.get("usage") or {}
            tokens = int(usage.get("input_tokens", 0)) + int(usage.get("output_tokens", 0))
        except (AttributeError, TypeError, ValueError) as e:
            raise ProviderError(self.name, "Invalid response: unexpected content structure") from e

        return LLMResponse(
            success=True,
            content=content,
            model=body.get("model") or opts["model"],
            tokens_used=tokens,
            finish_reason=body.get("stop_reason"),
        )

    def test_connection(self) -> Dict[str, Any]:
        try:
            self._send([{"role": "user", "content": "ping"}], {
                "model": self.model, "max_tokens": 5, "temperature": 0, "json_mode": False,
            })
        except ShopAgentException as e:
            if e.details.get("status_code") in (401, 403):
                return {"success": False, "message": "Invalid API key"}
            return {"success": False, "message": e.user_message}
        return {"success": True, "message": "Connected to Anthropic"}

    def get_available_models(self) -> List[str]:
        return list(self.MODELS)
