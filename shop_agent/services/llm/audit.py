"""Audit trail of prompts and replies, enabled by ``debug_save_prompts``."""

from typing import Any, Dict, List

from shop_agent.core.logging_config import get_logger

logger = get_logger("shop_agent.llm.audit")


class PromptAuditLogger:
    """Writes prompts and responses to the log. Never raises."""

    def __init__(self, enabled: bool = False, max_chars: int = 4000):
        self.enabled = enabled
        self.max_chars = max_chars

    def _clip(self, text: Any) -> str:
        text = text if isinstance(text, str) else str(text)
        return text if len(text) <= self.max_chars else text[:self.max_chars] + "...[truncated]"

    def log_prompt(self, messages: List[Dict[str, str]], provider: str) -> None:
        if not self.enabled:
            return
        try:
            logger.debug(
                f"LLM prompt [{provider}]",
                provider=provider,
                messages=[{"role": m.get("role"), "content": self._clip(m.get("content", ""))} for m in messages],
            )
        except Exception as e:  # audit output must not affect the call
            logger.warning("Prompt audit logging failed", provider=provider, error=str(e))

    def log_response(self, response: Dict[str, Any], provider: str) -> None:
        if not self.enabled:
            return
        try:
            logger.debug(
                f"LLM response [{provider}]",
                provider=provider,
                success=response.get("success"),
                tokens_used=response.get("tokens_used"),
                content=self._clip(response.get("content") or ""),
                error=response.get("error"),
            )
        except Exception as e:  # audit output must not affect the call
            logger.warning("Response audit logging failed", provider=provider, error=str(e))
