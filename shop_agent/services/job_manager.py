"""
Analysis Job Manager

Turns "analyze everything" into a sequence of bounded steps. A job's queues,
cursors and counters live in one versioned JobState row; every call loads it,
does a bounded amount of work and writes it back with a compare-and-swap, so
calls may come from any process after any gap.

While a batch runs, the job carries a lease (owner + expiry) so a second caller
does not analyze the same entities. A lease whose holder died expires after
``job_stale_after_seconds``; ``resume_stale_job`` releases it early.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from shop_agent.config import settings
from shop_agent.core.exceptions import (
    JobConflictError, PersistenceError, RateLimitError, ShopAgentException, ValidationError
)
from shop_agent.core.logging_config import get_logger
from shop_agent.domain.analysis import EntityAnalysis
from shop_agent.domain.job import EntityKind, JobError, JobState, PhaseProgress
from shop_agent.domain.results import ServiceResult
from shop_agent.models import AnalysisRun
from shop_agent.repositories.analysis_repo import AnalysisRepository
from shop_agent.repositories.job_state_repo import JobStateRepository
from shop_agent.services.actions.executor import ActionExecutor
from shop_agent.services.analyzers.base import BaseAnalyzer
from shop_agent.services.notification import NotificationService
from shop_agent.services.subscription import (
    FEATURE_CUSTOMER_ANALYSIS, FEATURE_PRODUCT_ANALYSIS, LIMIT_ANALYSES_PER_DAY,
    LIMIT_CUSTOMERS_PER_ANALYSIS, LIMIT_PRODUCTS_PER_ANALYSIS, SubscriptionGate,
)

logger = get_logger(__name__)

JOB_TYPES = ("all", "products", "customers")
MAX_SAVE_ATTEMPTS = 3


class CancellationToken:
    """Reads the durable job status at safe points between entities."""

    def __init__(self, repo: JobStateRepository, job_id: Optional[str]):
        self.repo = repo
        self.job_id = job_id

    def is_cancelled(self) -> bool:
        state, _ = self.repo.load()
        return state.id != self.job_id or state.status != "running"


class AnalysisJobManager:

    def __init__(
        self,
        product_analyzer: BaseAnalyzer,
        customer_analyzer: BaseAnalyzer,
        executor: ActionExecutor,
        subscription: Optional[SubscriptionGate] = None,
        state_repo: Optional[JobStateRepository] = None,
        analysis_repo: Optional[AnalysisRepository] = None,
        notifications: Optional[NotificationService] = None,
        batch_size: Optional[int] = None,
        stale_after_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.analyzers: Dict[EntityKind, BaseAnalyzer] = {
            "product": product_analyzer,
            "customer": customer_analyzer,
        }
        self.executor = executor
        self.subscription = subscription or executor.subscription
        self.state_repo = state_repo or JobStateRepository()
        self.analysis_repo = analysis_repo or AnalysisRepository()
        self.notifications = notifications or executor.notifications
        self.settings = executor.settings
        self.batch_size = batch_size or settings.job_batch_size
        self.stale_after = timedelta(seconds=stale_after_seconds or settings.job_stale_after_seconds)
        self.error_capacity = settings.job_error_buffer_size
        self.progress_errors = settings.job_progress_error_count
        self.clock = clock

    # Read side

    def _progress(self, state: JobState) -> Dict[str, Any]:
        return state.to_progress(self.progress_errors)

    def get_job_progress(self) -> ServiceResult:
        """Snapshot of the current job. A single state read, nothing else."""
        try:
            state, _ = self.state_repo.load()
        except PersistenceError as e:
            return ServiceResult.fail(e)
        return ServiceResult.ok(self._progress(state))

    # Lifecycle

    def _resolve_queue(self, kind: EntityKind, feature: str, limit_key: str, explicit: bool) -> List[int]:
        if not self.subscription.is_feature_enabled(feature):
            if explicit:
                raise ValidationError(
                    f"{kind.title()} analysis is not available on the {self.subscription.policy.label} plan",
                    field="type",
                )
            return []

        analyzer = self.analyzers[kind]
        limit = self.subscription.cap(limit_key, analyzer.default_limit())
        if limit <= 0:
            return []
        # Dedupe while keeping the order the store returned
        return list(dict.fromkeys(int(i) for i in analyzer.list_entity_ids(limit)))[:limit]

    def start_job(self, job_type: str = "all") -> ServiceResult:
        if job_type not in JOB_TYPES:
            return ServiceResult.fail(ValidationError(
                f"Invalid job type '{job_type}'; expected one of {', '.join(JOB_TYPES)}", field="type"
            ))

        try:
            state, version = self.state_repo.load()
            if state.is_active:
                raise JobConflictError("An analysis job is already running", status=state.status)
            if state.is_terminal:
                raise JobConflictError(
                    "The previous job has finished; acknowledge it before starting a new one",
                    status=state.status,
                )

            self.subscription.require_within_limit(LIMIT_ANALYSES_PER_DAY)

            products = customers = []
            if job_type in ("all", "products"):
                products = self._resolve_queue(
                    "product", FEATURE_PRODUCT_ANALYSIS, LIMIT_PRODUCTS_PER_ANALYSIS, job_type == "products"
                )
            if job_type in ("all", "customers"):
                customers = self._resolve_queue(
                    "customer", FEATURE_CUSTOMER_ANALYSIS, LIMIT_CUSTOMERS_PER_ANALYSIS, job_type == "customers"
                )
            total = len(products) + len(customers)
            if total == 0:
                raise ValidationError("Nothing to analyze")

            now = self.clock()
            job = JobState(
                id=f"job_{uuid.uuid4().hex[:16]}",
                status="running",
                type=job_type,
                products=PhaseProgress(queue=products),
                customers=PhaseProgress(queue=customers),
                started_at=now,
                updated_at=now,
            )
            self.state_repo.save(job, version)
        except (JobConflictError, RateLimitError, ValidationError, PersistenceError) as e:
            logger.warning("Job not started", job_type=job_type, error_code=e.error_code, error=e.message)
            return ServiceResult.fail(e)

        logger.info(
            "Analysis job started",
            job_id=job.id,
            job_type=job_type,
            products=len(products),
            customers=len(customers),
        )
        return ServiceResult.ok(self._progress(job), message=f"Analysis started. {total} items queued.")

    def _update(self, mutate: Callable[[JobState], JobState]) -> JobState:
        """Load, mutate and compare-and-swap the job state, retrying on conflicts."""
        for attempt in range(1, MAX_SAVE_ATTEMPTS + 1):
            state, version = self.state_repo.load()
            updated = mutate(state)
            try:
                self.state_repo.save(updated, version)
                return updated
            except JobConflictError:
                if attempt == MAX_SAVE_ATTEMPTS:
                    raise
                logger.debug("Job state conflict, retrying", attempt=attempt)
        raise JobConflictError("Job state could not be updated")

    def cancel_job(self) -> ServiceResult:
        def request_cancel(state: JobState) -> JobState:
            if state.status != "running":
                raise ValidationError("No analysis job is running")
            state.status = "cancelling"
            state.updated_at = self.clock()
            return state

        try:
            state = self._update(request_cancel)
        except ShopAgentException as e:
            return ServiceResult.fail(e)
        logger.info("Job cancellation requested", job_id=state.id)
        return ServiceResult.ok(self._progress(state), message="Cancellation requested")

    def acknowledge_completion(self) -> ServiceResult:
        finished: Dict[str, Any] = {}

        def clear(state: JobState) -> JobState:
            if state.is_active:
                raise JobConflictError("The job is still running", status=state.status)
            finished.update(self._progress(state))
            return JobState()

        try:
            self._update(clear)
        except ShopAgentException as e:
            return ServiceResult.fail(e)
        logger.info("Job acknowledged", job_id=finished.get("job_id"), status=finished.get("status"))
        return ServiceResult.ok(finished, message="Job acknowledged")

    def reset_job_state(self) -> ServiceResult:
        """Operator escape hatch: discard whatever is stored and go back to idle."""
        discarded: Dict[str, Any] = {}

        def wipe(state: JobState) -> JobState:
            discarded.update(self._progress(state))
            return JobState()

        try:
            self._update(wipe)
        except ShopAgentException as e:
            return ServiceResult.fail(e)
        logger.warning("Job state reset", job_id=discarded.get("job_id"), status=discarded.get("status"))
        return ServiceResult.ok(self._progress(JobState()), message="Job state reset")

    def is_stale(self, state: JobState, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        return state.is_active and (state.updated_at is None or now - state.updated_at > self.stale_after)

    def resume_stale_job(self) -> ServiceResult:
        """
        Take over a job whose driver stopped sending heartbeats. Progress is
        kept: the job continues from its stored cursors.
        """
        resumed = {"value": False}

        def take_over(state: JobState) -> JobState:
            resumed["value"] = False
            if not self.is_stale(state):
                return state
            now = self.clock()
            state.release_lease()
            state.current_item = None
            state.updated_at = now
            if state.status == "cancelling":
                state.status = "cancelled"
                state.completed_at = now
            else:
                state.resumed_count += 1
            resumed["value"] = True
            return state

        try:
            state, _ = self.state_repo.load()
            if not self.is_stale(state):
                return ServiceResult.ok(self._progress(state), message="No stale job")
            state = self._update(take_over)
        except ShopAgentException as e:
            return ServiceResult.fail(e)

        if not resumed["value"]:
            return ServiceResult.ok(self._progress(state), message="No stale job")
        logger.warning(
            "Stale job taken over",
            job_id=state.id,
            status=state.status,
            products_cursor=state.products.cursor,
            customers_cursor=state.customers.cursor,
        )
        return ServiceResult.ok(
            self._progress(state),
            message=f"Job resumed at {state.products.cursor + state.customers.cursor} of "
                    f"{state.products.total + state.customers.total} items",
        )

    # Batch processing

    def process_next_batch(self, batch_size: Optional[int] = None) -> ServiceResult:
        """
        Advance the running job by at most ``batch_size`` entities and return
        the progress snapshot afterwards.
        """
        limit = batch_size or self.batch_size
        try:
            state, version = self.state_repo.load()
        except PersistenceError as e:
            return ServiceResult.fail(e)

        now = self.clock()
        if state.status == "cancelling" and not state.lease_held(now):
            return self._finalize_cancel(state, version)
        if state.status != "running":
            return ServiceResult.ok(self._progress(state), message="No job running")
        if state.lease_held(now):
            return ServiceResult.ok(self._progress(state), message="A batch is already in progress")

        # Claim the batch
        owner = uuid.uuid4().hex
        state.lease_owner = owner
        state.lease_until = now + self.stale_after
        state.updated_at = now
        try:
            version = self.state_repo.save(state, version)
        except JobConflictError:
            return ServiceResult.ok(self._progress(state), message="Another caller is advancing this job")
        except PersistenceError as e:
            return ServiceResult.fail(e)

        try:
            self._run_batch(state, limit)
            state, version = self._commit_batch(state, version)
        except JobConflictError as e:
            logger.warning("Job changed underneath the batch; progress discarded", job_id=state.id)
            return ServiceResult.fail(e)
        except Exception as e:
            return self._fail_job(state, version, e)

        if state.status == "completed":
            self._on_completed(state)
        return ServiceResult.ok(self._progress(state), message=self._batch_message(state))

    def _run_batch(self, state: JobState, limit: int) -> None:
        token = CancellationToken(self.state_repo, state.id)
        processed = 0
        while processed < limit:
            kind = state.next_phase()
            if kind is None:
                break
            if processed and token.is_cancelled():
                logger.info("Cancellation observed between entities", job_id=state.id)
                break

            phase = state.phase(kind)
            entity_id = phase.queue[phase.cursor]
            state.current_item = f"{kind}:{entity_id}"
            outcome = self._analyze(kind, entity_id)

            phase.cursor += 1
            if outcome.success:
                phase.success += 1
                state.actions_created += self.executor.create_from_suggestions(outcome)
            else:
                phase.failed += 1
                state.record_error(
                    JobError(entity_type=kind, entity_id=entity_id, error=outcome.error or "Unknown error",
                             error_code=outcome.error_code),
                    self.error_capacity,
                )
            processed += 1

        state.current_item = None
        logger.debug("Batch processed", job_id=state.id, processed=processed)

    def _analyze(self, kind: EntityKind, entity_id: int) -> EntityAnalysis:
        """Single-entity path; anything but a persistence failure becomes an entity error."""
        try:
            return self.analyzers[kind].analyze_entity(entity_id)
        except PersistenceError:
            raise
        except ShopAgentException as e:
            error, code = e.user_message, e.error_code
        except Exception as e:
            logger.exception("Entity analysis raised", entity_type=kind, entity_id=entity_id)
            error, code = f"Unexpected error ({type(e).__name__})", "INTERNAL_ERROR"
        return EntityAnalysis(entity_id=entity_id, entity_type=kind, success=False, error=error, error_code=code)

    def _settle(self, state: JobState) -> None:
        now = self.clock()
        state.updated_at = now
        state.release_lease()
        if state.status == "cancelling":
            state.status = "cancelled"
            state.completed_at = now
        elif state.next_phase() is None:
            state.status = "completed"
            state.completed_at = now

    def _commit_batch(self, state: JobState, version: int):
        """Write the batch result; a concurrent cancel request is merged in."""
        for attempt in range(1, MAX_SAVE_ATTEMPTS + 1):
            self._settle(state)
            try:
                return state, self.state_repo.save(state, version)
            except JobConflictError:
                latest, version = self.state_repo.load()
                if latest.id != state.id or latest.status not in ("running", "cancelling"):
                    raise JobConflictError("The job was reset while a batch was running", status=latest.status)
                if latest.status == "cancelling":
                    state.status = "cancelling"
                logger.debug("Batch commit conflict, merging", job_id=state.id, attempt=attempt)
        raise JobConflictError("Batch result could not be saved", status=state.status)

    def _finalize_cancel(self, state: JobState, version: int) -> ServiceResult:
        self._settle(state)
        try:
            self.state_repo.save(state, version)
        except ShopAgentException as e:
            return ServiceResult.fail(e)
        logger.info("Job cancelled", job_id=state.id)
        self._save_run(state, success=False)
        return ServiceResult.ok(self._progress(state), message="Job cancelled")

    def _fail_job(self, state: JobState, version: int, error: Exception) -> ServiceResult:
        """Batch-level failure: keep the progress made so far and mark the job failed."""
        failure = error if isinstance(error, ShopAgentException) else ShopAgentException(
            f"Batch processing failed ({type(error).__name__})", error_code="INTERNAL_ERROR"
        )
        logger.error("Batch failed, marking job failed", job_id=state.id, error_code=failure.error_code,
                     error=str(error))

        def mark_failed(target: JobState) -> JobState:
            now = self.clock()
            target.status = "failed"
            target.current_item = None
            target.completed_at = now
            target.updated_at = now
            target.release_lease()
            target.record_error(
                JobError(error=failure.user_message, error_code=failure.error_code), self.error_capacity
            )
            return target

        job_id = state.id
        try:
            try:
                self.state_repo.save(mark_failed(state), version)
            except JobConflictError:
                # Keep whatever the stored row has; only the status changes
                state = self._update(lambda latest: mark_failed(latest) if latest.id == job_id else latest)
        except ShopAgentException as e:
            logger.error("Could not record job failure", job_id=job_id, error=str(e))
        else:
            self.notifications.notify_error(
                f"Analysis job {state.id} failed: {failure.user_message}",
                {"job_id": state.id, "error_code": failure.error_code},
            )
        return ServiceResult.fail(failure, data=self._progress(state))

    def _on_completed(self, state: JobState) -> None:
        self.subscription.increment_usage(LIMIT_ANALYSES_PER_DAY)
        failed = state.products.failed + state.customers.failed
        self._save_run(state, success=True)
        logger.info(
            "Analysis job completed",
            job_id=state.id,
            products=f"{state.products.success}/{state.products.total}",
            customers=f"{state.customers.success}/{state.customers.total}",
            actions_created=state.actions_created,
            failed=failed,
        )
        if failed:
            self.notifications.notify_error(
                f"Analysis job {state.id} finished with {failed} failed items",
                {"job_id": state.id, "errors": len(state.errors)},
            )

    def _save_run(self, state: JobState, success: bool) -> None:
        duration = 0
        if state.started_at and state.completed_at:
            duration = int((state.completed_at - state.started_at).total_seconds() * 1000)
        try:
            self.analysis_repo.save_run(AnalysisRun(
                job_id=state.id,
                type=state.type or "all",
                success=success,
                products_analyzed=state.products.success,
                customers_analyzed=state.customers.success,
                actions_created=state.actions_created,
                errors=[e.model_dump(mode="json") for e in state.errors],
                duration_ms=duration,
            ))
        except PersistenceError as e:
            logger.error("Could not save analysis run summary", job_id=state.id, error=str(e))

    def _batch_message(self, state: JobState) -> str:
        done = state.products.analyzed + state.customers.analyzed
        total = state.products.total + state.customers.total
        if state.status == "completed":
            return f"Analysis completed: {done} of {total} items analyzed, {state.actions_created} actions created"
        if state.status == "cancelled":
            return f"Job cancelled after {done} of {total} items"
        return f"{done} of {total} items analyzed"
