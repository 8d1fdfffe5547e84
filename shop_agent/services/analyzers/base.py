"""Shared flow for entity analyzers: collect, prompt, call, parse, persist."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from shop_agent.core.exceptions import NotFoundError, ParseError, ShopAgentException
from shop_agent.core.logging_config import get_logger
from shop_agent.domain.analysis import EntityAnalysis, NEUTRAL_PRIORITY
from shop_agent.models import AnalysisRecord, AnalysisStatus
from shop_agent.repositories.analysis_repo import AnalysisRepository
from shop_agent.services.analyzers.parsing import parse_analysis_response
from shop_agent.services.llm.gateway import LLMGateway
from shop_agent.services.settings_store import SettingsStore
from shop_agent.services.store import StoreGateway

logger = get_logger(__name__)

PRIORITY_GUIDELINES = """Priority guidelines:
- 90-100: Critical - immediate action required
- 70-89: High - significant opportunity
- 50-69: Medium - worth implementing
- 30-49: Low - minor optimization
- 1-29: Minimal impact"""


class BaseAnalyzer(ABC):
    analysis_type: str = ""
    entity_type: str = ""
    limit_setting: str = ""

    def __init__(
        self,
        llm: LLMGateway,
        store: StoreGateway,
        repo: Optional[AnalysisRepository] = None,
        settings_store: Optional[SettingsStore] = None,
    ):
        self.llm = llm
        self.store = store
        self.repo = repo or AnalysisRepository()
        self.settings = settings_store or SettingsStore()

    # Subclass hooks

    @abstractmethod
    def list_entity_ids(self, limit: int) -> List[int]:
        pass

    @abstractmethod
    def collect(self, entity_id: int) -> Optional[Dict[str, Any]]:
        """Metrics for one entity, or None when it does not exist."""

    @abstractmethod
    def system_prompt(self) -> str:
        pass

    @abstractmethod
    def user_prompt(self, data: Dict[str, Any]) -> str:
        pass

    # Flow

    def build_messages(self, data: Dict[str, Any]) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self.system_prompt()},
            {"role": "user", "content": self.user_prompt(data)},
        ]

    def default_limit(self) -> int:
        return self.settings.get_int(self.limit_setting, 50)

    def analyze(self, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Analyze up to ``limit`` entities (or the explicit ``ids``) one by one."""
        options = options or {}
        limit = int(options.get("limit") or self.default_limit())
        entity_ids = list(options.get("ids") or self.list_entity_ids(limit))[:limit]

        results: Dict[str, Any] = {"analyzed": 0, "total": len(entity_ids), "errors": [], "suggestions": 0}
        for entity_id in entity_ids:
            outcome = self.analyze_entity(entity_id)
            if outcome.success:
                results["analyzed"] += 1
                results["suggestions"] += len(outcome.suggestions)
            else:
                results["errors"].append({
                    "entity_id": entity_id,
                    "entity_type": self.entity_type,
                    "error": outcome.error,
                    "error_code": outcome.error_code,
                })

        logger.info(
            f"{self.entity_type.title()} analysis complete",
            analyzed=results["analyzed"],
            total=results["total"],
            errors=len(results["errors"]),
        )
        return results

    def analyze_entity(self, entity_id: int) -> EntityAnalysis:
        """
        Analyze one entity. Entity-level problems (missing entity, LLM failure,
        unparseable reply) come back as a failed ``EntityAnalysis``; only
        persistence failures raise.
        """
        data = self.collect(entity_id)
        if data is None:
            error = NotFoundError(self.entity_type.title(), entity_id)
            return EntityAnalysis(
                entity_id=entity_id, entity_type=self.entity_type, success=False,
                error=error.message, error_code=error.error_code,
            )

        response = self.llm.complete(self.build_messages(data))
        base = {
            "analysis_type": self.analysis_type,
            "entity_id": entity_id,
            "entity_type": self.entity_type,
            "llm_provider": self.llm.provider_name,
            "llm_model": response.model or self.llm.model,
            "tokens_used": response.tokens_used,
            "duration_ms": response.duration_ms,
        }

        if not response.success:
            return self._save_failure(base, data, response.exception, raw=None)

        try:
            parsed = parse_analysis_response(response.content)
        except ParseError as e:
            return self._save_failure(base, data, e, raw=response.content)

        record = self.repo.save(AnalysisRecord(
            **base,
            analysis_data={**parsed.extra, "summary": parsed.analysis, "metrics": data},
            suggestions=[s.model_dump() for s in parsed.suggestions],
            priority_score=parsed.priority_score,
            status=AnalysisStatus.COMPLETED.value,
        ))
        logger.debug(
            "Entity analyzed",
            entity_type=self.entity_type,
            entity_id=entity_id,
            analysis_id=record.id,
            suggestions=len(parsed.suggestions),
        )
        return EntityAnalysis(
            analysis_id=record.id,
            entity_id=entity_id,
            entity_type=self.entity_type,
            success=True,
            priority_score=parsed.priority_score,
            suggestions=parsed.suggestions,
        )

    def _save_failure(
        self,
        base: Dict[str, Any],
        data: Dict[str, Any],
        error: Optional[ShopAgentException],
        raw: Optional[str],
    ) -> EntityAnalysis:
        message = error.message if error else "LLM call failed"
        code = error.error_code if error else None
        analysis_data: Dict[str, Any] = {"error": message, "error_code": code, "metrics": data}
        if raw is not None:
            analysis_data["raw_response"] = raw

        record = self.repo.save(AnalysisRecord(
            **base,
            analysis_data=analysis_data,
            suggestions=[],
            priority_score=NEUTRAL_PRIORITY,
            status=AnalysisStatus.FAILED.value,
        ))

        logger.warning(
            "Entity analysis failed",
            entity_type=self.entity_type,
            entity_id=base["entity_id"],
            error_code=code,
            error=message,
        )
        return EntityAnalysis(
            analysis_id=record.id,
            entity_id=base["entity_id"],
            entity_type=self.entity_type,
            success=False,
            error=message,
            error_code=code,
        )
