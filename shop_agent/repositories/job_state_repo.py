"""
Job State Repository

Stores the single JobState document with an optimistic-concurrency token.
Every write is a compare-and-swap on ``version``: a writer that loaded version
N can only succeed if the row is still at N, after which it is at N+1.
"""

from datetime import datetime
from typing import Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from shop_agent.core.exceptions import JobConflictError, PersistenceError
from shop_agent.domain.job import JobState
from shop_agent.models import JobStateRecord, CURRENT_JOB_KEY
from .base import BaseRepository


class JobStateRepository(BaseRepository):

    def load(self) -> Tuple[JobState, int]:
        """Return the current state and its version (0 when nothing was ever stored)."""
        with self._read("load_job_state") as session:
            row = session.get(JobStateRecord, CURRENT_JOB_KEY)
            if row is None:
                return JobState(), 0
            return JobState.model_validate(row.state or {}), row.version

    def save(self, state: JobState, expected_version: int) -> int:
        """Write ``state`` if the stored version still equals ``expected_version``."""
        payload = state.model_dump(mode="json")
        now = datetime.utcnow()

        if expected_version == 0:
            try:
                with self._write("create_job_state") as session:
                    existing = session.get(JobStateRecord, CURRENT_JOB_KEY)
                    if existing is None:
                        session.add(JobStateRecord(key=CURRENT_JOB_KEY, version=1, state=payload, updated_at=now))
                        return 1
            except PersistenceError as e:
                if isinstance(e.__cause__, IntegrityError):
                    raise JobConflictError("Job state was created concurrently", status=state.status) from e
                raise
            # Row exists already: fall through to the versioned update, which will reject the stale token

        with self._write("update_job_state") as session:
            result = session.execute(
                update(JobStateRecord)
                .where(JobStateRecord.key == CURRENT_JOB_KEY)
                .where(JobStateRecord.version == expected_version)
                .values(state=payload, version=expected_version + 1, updated_at=now)
            )
            if (result.rowcount or 0) != 1:
                raise JobConflictError(
                    "Job state changed since it was read; reload and retry",
                    status=state.status,
                )
        return expected_version + 1
