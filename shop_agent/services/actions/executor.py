"""
Action executor: the approval / execution state machine.

    pending --approve--> approved --execute--> completed
    pending --execute--> completed            (only when no approval is required)
    pending|approved --dismiss--> cancelled
    pending|approved --execute fails--> pending (retry_count + 1) or failed

Every status change is a conditional update on the record, so two callers
racing on the same action cannot both move it.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from shop_agent.core.exceptions import (
    NotFoundError, RateLimitError, ValidationError
)
from shop_agent.core.logging_config import get_logger
from shop_agent.domain.analysis import EntityAnalysis, clamp_score
from shop_agent.domain.results import ServiceResult
from shop_agent.models import ActionRecord, ActionStatus
from shop_agent.repositories.action_repo import ActionRepository
from shop_agent.services.notification import NotificationService
from shop_agent.services.settings_store import SettingsStore
from shop_agent.services.subscription import (
    FEATURE_AUTO_ACTIONS, LIMIT_ACTIONS_PER_DAY, USAGE_ACTIONS_CREATED, SubscriptionGate
)
from .registry import ActionRegistry, ActionType

logger = get_logger(__name__)

# Failures of these kinds will fail the same way again
NON_RETRYABLE = (ValidationError, NotFoundError)


class ActionExecutor:

    def __init__(
        self,
        registry: ActionRegistry,
        repo: Optional[ActionRepository] = None,
        subscription: Optional[SubscriptionGate] = None,
        notifications: Optional[NotificationService] = None,
        settings_store: Optional[SettingsStore] = None,
    ):
        self.registry = registry
        self.repo = repo or ActionRepository()
        self.subscription = subscription or SubscriptionGate()
        self.settings = settings_store or registry.settings
        self.notifications = notifications or NotificationService(registry.store, self.settings)

    # Direct execution

    def execute(self, action_type: str, data: Dict[str, Any]) -> ServiceResult:
        """Validate and run one action payload. Never raises."""
        logger.info("Executing action", action_type=action_type)

        kind = ActionType.parse(action_type)
        if kind is None:
            return ServiceResult.fail(ValidationError(f"Unknown action type: {action_type}", field="action_type"))

        action = self.registry.get(kind.value)
        if not action.is_enabled():
            return ServiceResult.fail(ValidationError(f"Action type '{kind.value}' is not enabled", field="action_type"))
        if not self.subscription.is_action_allowed(kind.value):
            return ServiceResult.fail(ValidationError(
                f"Action type '{kind.value}' is not available on the {self.subscription.policy.label} plan",
                field="action_type",
            ))

        return action.execute(data)

    # Stored actions

    def execute_by_id(self, action_id: int) -> ServiceResult:
        record = self.repo.get(action_id)
        if record is None:
            return ServiceResult.fail(NotFoundError("Action", action_id))

        if record.status not in [s.value for s in ActionStatus.open()]:
            return ServiceResult.fail(ValidationError(f"Action cannot be executed (status: {record.status})"))
        if record.requires_approval and record.status != ActionStatus.APPROVED.value:
            return ServiceResult.fail(ValidationError("Action requires approval before execution"))

        try:
            self.subscription.require_within_limit(LIMIT_ACTIONS_PER_DAY)
        except RateLimitError as e:
            return ServiceResult.fail(e)

        outcome = self.execute(record.action_type, record.action_data or {})
        if outcome.success:
            return self._complete(record, outcome)
        return self._fail(record, outcome)

    def _complete(self, record: ActionRecord, outcome: ServiceResult) -> ServiceResult:
        moved = self.repo.transition(
            record.id,
            [record.status],
            status=ActionStatus.COMPLETED.value,
            result={"success": True, "message": outcome.message, "data": outcome.data},
            executed_at=datetime.utcnow(),
            error_message=None,
        )
        if not moved:
            logger.warning("Action changed state while executing", action_id=record.id)
        self.subscription.increment_usage(LIMIT_ACTIONS_PER_DAY)
        logger.info("Action completed", action_id=record.id, action_type=record.action_type)
        return ServiceResult.ok(
            {"action_id": record.id, "status": ActionStatus.COMPLETED.value, "result": outcome.data},
            message=outcome.message,
        )

    def _fail(self, record: ActionRecord, outcome: ServiceResult) -> ServiceResult:
        max_retries = self.settings.get_int("actions_retry_attempts", 3)
        retry_enabled = bool(self.settings.get("actions_retry_failed", True))
        retryable = not isinstance(outcome.error, NON_RETRYABLE)
        reason = outcome.error.message if outcome.error is not None else outcome.message

        if retry_enabled and retryable and record.retry_count < max_retries:
            self.repo.increment_retry(record.id, reason)
            status = ActionStatus.PENDING.value
            logger.warning(
                "Action failed, re-queued",
                action_id=record.id,
                retry_count=record.retry_count + 1,
                max_retries=max_retries,
                error=reason,
            )
        else:
            self.repo.transition(
                record.id,
                [record.status],
                status=ActionStatus.FAILED.value,
                result=outcome.to_envelope(),
                error_message=reason,
                executed_at=datetime.utcnow(),
            )
            status = ActionStatus.FAILED.value
            logger.error("Action failed", action_id=record.id, action_type=record.action_type, error=reason)

        return ServiceResult(
            success=False,
            data={"action_id": record.id, "status": status},
            message=outcome.message,
            errors=outcome.errors,
            error=outcome.error,
        )

    def approve_action(self, action_id: int, approved_by: str = "admin") -> ServiceResult:
        if self.repo.approve(action_id, approved_by):
            logger.info("Action approved", action_id=action_id, approved_by=approved_by)
            return ServiceResult.ok(self.repo.get_or_raise(action_id).to_dict(), message="Action approved")

        record = self.repo.get(action_id)
        if record is None:
            return ServiceResult.fail(NotFoundError("Action", action_id))
        return ServiceResult.fail(ValidationError(f"Action cannot be approved (status: {record.status})"))

    def dismiss_action(self, action_id: int) -> ServiceResult:
        moved = self.repo.transition(action_id, ActionStatus.open(), status=ActionStatus.CANCELLED.value)
        if moved:
            logger.info("Action dismissed", action_id=action_id)
            return ServiceResult.ok({"action_id": action_id, "status": ActionStatus.CANCELLED.value},
                                    message="Action dismissed")

        record = self.repo.get(action_id)
        if record is None:
            return ServiceResult.fail(NotFoundError("Action", action_id))
        return ServiceResult.fail(ValidationError(f"Action cannot be dismissed (status: {record.status})"))

    def approve_all_pending(self, approved_by: str = "admin") -> ServiceResult:
        count = self.repo.approve_all_pending(approved_by)
        logger.info("Bulk approve", count=count, approved_by=approved_by)
        return ServiceResult.ok({"count": count}, message=f"{count} actions approved")

    def dismiss_all_by_status(self, statuses: Optional[Iterable[str]] = None) -> ServiceResult:
        statuses = list(statuses or [ActionStatus.PENDING.value])
        invalid = [s for s in statuses if s not in [o.value for o in ActionStatus.open()]]
        if invalid:
            return ServiceResult.fail(ValidationError(
                f"Only pending or approved actions can be dismissed, got: {', '.join(invalid)}",
                field="statuses",
            ))
        count = self.repo.cancel_by_status(statuses)
        logger.info("Bulk dismiss", count=count, statuses=statuses)
        return ServiceResult.ok({"count": count}, message=f"{count} actions dismissed")

    def purge(self, statuses: Iterable[str]) -> ServiceResult:
        """Delete actions in the given statuses outright."""
        statuses = list(statuses)
        count = self.repo.delete_by_status(statuses)
        logger.info("Actions purged", count=count, statuses=statuses)
        return ServiceResult.ok({"count": count}, message=f"{count} actions deleted")

    def execute_approved(self, limit: Optional[int] = None) -> ServiceResult:
        """Run up to ``limit`` ready actions, highest priority first."""
        if not self.subscription.is_feature_enabled(FEATURE_AUTO_ACTIONS):
            return ServiceResult.fail(ValidationError(
                f"Automatic action execution is not available on the {self.subscription.policy.label} plan"
            ))

        limit = limit or self.settings.get_int("actions_max_per_run", 10)
        executed = failed = 0
        errors: List[str] = []
        for record in self.repo.ready(limit):
            if not self.subscription.check_usage_limit(LIMIT_ACTIONS_PER_DAY).allowed:
                errors.append("Daily action limit reached")
                break
            outcome = self.execute_by_id(record.id)
            if outcome.success:
                executed += 1
            else:
                failed += 1
                errors.append(f"Action {record.id}: {outcome.message}")

        summary = {"executed": executed, "failed": failed, "errors": errors}
        logger.info("Ready actions executed", executed=executed, failed=failed)
        return ServiceResult(success=failed == 0, data=summary, message=f"{executed} actions executed",
                             errors=errors)

    # Suggestion conversion

    def create_from_suggestions(self, analysis: EntityAnalysis) -> int:
        """
        Store the analysis' suggestions as actions. Only enabled types are kept,
        and creation stops once the daily action quota is used up.
        """
        if not analysis.suggestions:
            return 0

        enabled = set(self.settings.get_list("actions_enabled_types"))
        threshold = self.settings.get_int("analysis_priority_threshold", 70)
        created = 0

        for suggestion in analysis.suggestions:
            kind = ActionType.parse(suggestion.type)
            if kind is None or kind.value not in enabled:
                logger.debug("Skipping suggestion", suggestion_type=suggestion.type)
                continue
            if not self.subscription.check_action_creation().allowed:
                logger.info("Daily action quota exhausted, skipping remaining suggestions", entity_id=analysis.entity_id)
                break

            data = dict(suggestion.data)
            data.setdefault("entity_id", analysis.entity_id)
            data.setdefault("entity_type", analysis.entity_type)
            if suggestion.reasoning:
                data.setdefault("reasoning", suggestion.reasoning)

            action = self.registry.get(kind.value)
            record = self.repo.save(ActionRecord(
                analysis_id=analysis.analysis_id,
                action_type=kind.value,
                action_data=data,
                status=ActionStatus.PENDING.value,
                priority_score=clamp_score(suggestion.priority),
                requires_approval=action.requires_approval(),
            ))
            created += 1
            self.subscription.increment_usage(USAGE_ACTIONS_CREATED)

            if record.priority_score >= threshold:
                self.notifications.notify_high_priority_action(record.to_dict())

        logger.debug("Actions created from suggestions", entity_id=analysis.entity_id, created=created)
        return created

    def stats(self) -> Dict[str, Any]:
        return self.repo.stats()

    def list_actions(self, **filters: Any) -> List[Dict[str, Any]]:
        return [record.to_dict() for record in self.repo.list(**filters)]
