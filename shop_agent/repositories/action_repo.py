"""
Action Repository

Persistence for ActionRecord rows. Status changes go through
``transition``, a conditional UPDATE that only succeeds while the row is in one
of the expected source statuses. That keeps every state change atomic per
record even when two processes act on the same action.
"""

from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any, Iterable, Union

from sqlalchemy import update, delete, and_, or_
from sqlmodel import select, func

from shop_agent.core.exceptions import NotFoundError
from shop_agent.core.logging_config import get_logger
from shop_agent.models import ActionRecord, ActionStatus
from .base import BaseRepository

logger = get_logger(__name__)

StatusFilter = Union[str, Iterable[str], None]


def _status_values(status: StatusFilter) -> List[str]:
    if status is None:
        return []
    if isinstance(status, str):
        return [status]
    return [s.value if isinstance(s, ActionStatus) else s for s in status]


class ActionRepository(BaseRepository):

    def save(self, record: ActionRecord) -> ActionRecord:
        """
        Insert a new action. Older open (pending/approved) actions of the same
        type for the same entity are superseded and removed.
        """
        with self._write("save_action") as session:
            entity_key = record.entity_key
            if entity_key is not None:
                open_rows = session.exec(
                    select(ActionRecord)
                    .where(ActionRecord.action_type == record.action_type)
                    .where(ActionRecord.status.in_([s.value for s in ActionStatus.open()]))
                ).all()
                for row in open_rows:
                    if row.entity_key == entity_key:
                        logger.debug("Superseding open action", action_id=row.id, action_type=row.action_type)
                        session.delete(row)

            session.add(record)
            session.flush()
            session.refresh(record)
            return record

    def get(self, action_id: int) -> Optional[ActionRecord]:
        with self._read("get_action") as session:
            return session.get(ActionRecord, action_id)

    def get_or_raise(self, action_id: int) -> ActionRecord:
        record = self.get(action_id)
        if record is None:
            raise NotFoundError("Action", action_id)
        return record

    def _filtered(self, query, status: StatusFilter, action_type: Optional[str], analysis_id: Optional[int]):
        statuses = _status_values(status)
        if statuses:
            query = query.where(ActionRecord.status.in_(statuses))
        if action_type:
            query = query.where(ActionRecord.action_type == action_type)
        if analysis_id is not None:
            query = query.where(ActionRecord.analysis_id == analysis_id)
        return query

    def list(
        self,
        status: StatusFilter = None,
        action_type: Optional[str] = None,
        analysis_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ActionRecord]:
        with self._read("list_actions") as session:
            query = self._filtered(select(ActionRecord), status, action_type, analysis_id)
            query = query.order_by(
                ActionRecord.priority_score.desc(),
                ActionRecord.created_at.asc(),
                ActionRecord.id.asc(),
            )
            return list(session.exec(query.offset(offset).limit(limit)).all())

    def ready(self, limit: int) -> List[ActionRecord]:
        """Actions that may run now: approved ones and pending ones that need no approval."""
        with self._read("ready_actions") as session:
            query = (
                select(ActionRecord)
                .where(or_(
                    ActionRecord.status == ActionStatus.APPROVED.value,
                    and_(
                        ActionRecord.status == ActionStatus.PENDING.value,
                        ActionRecord.requires_approval == False,  # noqa: E712
                    ),
                ))
                .order_by(ActionRecord.priority_score.desc(), ActionRecord.id.asc())
                .limit(limit)
            )
            return list(session.exec(query).all())

    def count(self, status: StatusFilter = None, action_type: Optional[str] = None) -> int:
        with self._read("count_actions") as session:
            query = self._filtered(select(func.count(ActionRecord.id)), status, action_type, None)
            return session.exec(query).one()

    def transition(self, action_id: int, from_statuses: Iterable[str], **values: Any) -> bool:
        """Conditionally update one action. Returns False if it was not in a source status."""
        sources = _status_values(from_statuses)
        with self._write("transition_action") as session:
            result = session.execute(
                update(ActionRecord)
                .where(ActionRecord.id == action_id)
                .where(ActionRecord.status.in_(sources))
                .values(**values)
            )
            return (result.rowcount or 0) == 1

    def approve(self, action_id: int, approved_by: str) -> bool:
        return self.transition(
            action_id,
            [ActionStatus.PENDING],
            status=ActionStatus.APPROVED.value,
            approved_by=approved_by,
            approved_at=datetime.utcnow(),
        )

    def approve_all_pending(self, approved_by: str) -> int:
        with self._write("approve_all_pending") as session:
            result = session.execute(
                update(ActionRecord)
                .where(ActionRecord.status == ActionStatus.PENDING.value)
                .values(
                    status=ActionStatus.APPROVED.value,
                    approved_by=approved_by,
                    approved_at=datetime.utcnow(),
                )
            )
            return result.rowcount or 0

    def cancel_by_status(self, statuses: Iterable[str]) -> int:
        open_values = {s.value for s in ActionStatus.open()}
        targets = [s for s in _status_values(statuses) if s in open_values]
        if not targets:
            return 0
        with self._write("cancel_actions") as session:
            result = session.execute(
                update(ActionRecord)
                .where(ActionRecord.status.in_(targets))
                .values(status=ActionStatus.CANCELLED.value)
            )
            return result.rowcount or 0

    def delete_by_status(self, statuses: Iterable[str]) -> int:
        with self._write("delete_actions") as session:
            result = session.execute(
                delete(ActionRecord).where(ActionRecord.status.in_(_status_values(statuses)))
            )
            return result.rowcount or 0

    def increment_retry(self, action_id: int, error_message: str) -> bool:
        """Record a failed attempt and put the action back in the pending queue."""
        with self._write("increment_retry") as session:
            result = session.execute(
                update(ActionRecord)
                .where(ActionRecord.id == action_id)
                .where(ActionRecord.status.in_([s.value for s in ActionStatus.open()]))
                .values(
                    retry_count=ActionRecord.retry_count + 1,
                    error_message=error_message,
                    status=ActionStatus.PENDING.value,
                )
            )
            return (result.rowcount or 0) == 1

    def stats(self) -> Dict[str, Any]:
        with self._read("action_stats") as session:
            by_status = dict(session.exec(
                select(ActionRecord.status, func.count(ActionRecord.id)).group_by(ActionRecord.status)
            ).all())
            by_type = dict(session.exec(
                select(ActionRecord.action_type, func.count(ActionRecord.id)).group_by(ActionRecord.action_type)
            ).all())
        return {
            "total": sum(by_status.values()),
            "by_status": {s.value: by_status.get(s.value, 0) for s in ActionStatus},
            "by_type": by_type,
        }

    def delete_terminal_older_than(self, days: int) -> int:
        cutoff = datetime.utcnow() - timedelta(days=days)
        with self._write("cleanup_actions") as session:
            result = session.execute(
                delete(ActionRecord)
                .where(ActionRecord.status.in_([s.value for s in ActionStatus.terminal()]))
                .where(ActionRecord.created_at < cutoff)
            )
            return result.rowcount or 0
