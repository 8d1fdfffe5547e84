"""Job state for the resumable analysis pipeline."""

from datetime import datetime
from typing import List, Optional, Literal, Dict, Any
from pydantic import BaseModel, Field

JobStatus = Literal["idle", "running", "cancelling", "completed", "failed", "cancelled"]
JobType = Literal["all", "products", "customers"]
EntityKind = Literal["product", "customer"]

ACTIVE_STATUSES = ("running", "cancelling")
TERMINAL_STATUSES = ("completed", "failed", "cancelled")


class JobError(BaseModel):
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    error: str
    error_code: Optional[str] = None
    time: datetime = Field(default_factory=datetime.utcnow)


class PhaseProgress(BaseModel):
    """Queue and counters for one entity kind."""
    queue: List[int] = Field(default_factory=list)
    cursor: int = 0
    success: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return len(self.queue)

    @property
    def analyzed(self) -> int:
        return self.cursor

    @property
    def exhausted(self) -> bool:
        return self.cursor >= len(self.queue)


class JobState(BaseModel):
    """The single durable description of the in-flight job."""
    id: Optional[str] = None
    status: JobStatus = "idle"
    type: Optional[JobType] = None
    products: PhaseProgress = Field(default_factory=PhaseProgress)
    customers: PhaseProgress = Field(default_factory=PhaseProgress)
    actions_created: int = 0
    current_item: Optional[str] = None
    errors: List[JobError] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    resumed_count: int = 0
    # Single-flight guard: the process currently advancing the job, and until when
    lease_owner: Optional[str] = None
    lease_until: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_cancelling(self) -> bool:
        return self.status == "cancelling"

    def lease_held(self, now: datetime) -> bool:
        return self.lease_owner is not None and self.lease_until is not None and now < self.lease_until

    def release_lease(self) -> None:
        self.lease_owner = None
        self.lease_until = None

    def phase(self, kind: EntityKind) -> PhaseProgress:
        return self.products if kind == "product" else self.customers

    def next_phase(self) -> Optional[EntityKind]:
        """Products are always drained before customers."""
        if not self.products.exhausted:
            return "product"
        if not self.customers.exhausted:
            return "customer"
        return None

    def record_error(self, error: JobError, capacity: int) -> None:
        self.errors.append(error)
        if len(self.errors) > capacity:
            del self.errors[:len(self.errors) - capacity]

    def percentage(self) -> int:
        total = self.products.total + self.customers.total
        if total <= 0:
            return 100 if self.status == "completed" else 0
        done = self.products.analyzed + self.customers.analyzed
        return max(0, min(100, round(done / total * 100)))

    def to_progress(self, error_count: int = 5) -> Dict[str, Any]:
        return {
            "job_id": self.id,
            "status": self.status,
            "type": self.type,
            "percentage": self.percentage(),
            "products_analyzed": self.products.analyzed,
            "products_total": self.products.total,
            "products_success": self.products.success,
            "products_failed": self.products.failed,
            "customers_analyzed": self.customers.analyzed,
            "customers_total": self.customers.total,
            "customers_success": self.customers.success,
            "customers_failed": self.customers.failed,
            "actions_created": self.actions_created,
            "current_item": self.current_item,
            "is_cancelling": self.is_cancelling,
            "errors": [e.model_dump(mode="json") for e in self.errors[-error_count:]] if error_count else [],
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
