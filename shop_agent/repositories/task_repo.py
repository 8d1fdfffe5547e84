"""Scheduled tasks created by follow-up and price-change actions."""

from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any

from sqlalchemy import update, delete
from sqlmodel import select

from shop_agent.models import ScheduledTask, TaskStatus
from .base import BaseRepository


class ScheduledTaskRepository(BaseRepository):

    def add(self, task_type: str, task_data: Dict[str, Any], scheduled_at: datetime) -> ScheduledTask:
        task = ScheduledTask(task_type=task_type, task_data=task_data, scheduled_at=scheduled_at)
        with self._write("add_task") as session:
            session.add(task)
            session.flush()
            session.refresh(task)
            return task

    def get(self, task_id: int) -> Optional[ScheduledTask]:
        with self._read("get_task") as session:
            return session.get(ScheduledTask, task_id)

    def due(self, now: Optional[datetime] = None, limit: int = 20) -> List[ScheduledTask]:
        now = now or datetime.utcnow()
        with self._read("due_tasks") as session:
            query = (
                select(ScheduledTask)
                .where(ScheduledTask.status == TaskStatus.PENDING.value)
                .where(ScheduledTask.scheduled_at <= now)
                .order_by(ScheduledTask.scheduled_at.asc(), ScheduledTask.id.asc())
                .limit(limit)
            )
            return list(session.exec(query).all())

    def list(self, status: Optional[str] = None, limit: int = 50) -> List[ScheduledTask]:
        with self._read("list_tasks") as session:
            query = select(ScheduledTask)
            if status:
                query = query.where(ScheduledTask.status == status)
            return list(session.exec(query.order_by(ScheduledTask.scheduled_at.asc()).limit(limit)).all())

    def claim(self, task_id: int) -> bool:
        """Move a pending task to running; False if another worker got it first."""
        with self._write("claim_task") as session:
            outcome = session.execute(
                update(ScheduledTask)
                .where(ScheduledTask.id == task_id)
                .where(ScheduledTask.status == TaskStatus.PENDING.value)
                .values(status=TaskStatus.RUNNING.value)
            )
            return (outcome.rowcount or 0) == 1

    def finish(self, task_id: int, status: str, result: Dict[str, Any]) -> bool:
        """Close a claimed task."""
        with self._write("finish_task") as session:
            outcome = session.execute(
                update(ScheduledTask)
                .where(ScheduledTask.id == task_id)
                .where(ScheduledTask.status == TaskStatus.RUNNING.value)
                .values(status=status, result=result, executed_at=datetime.utcnow())
            )
            return (outcome.rowcount or 0) == 1

    def delete_finished_older_than(self, days: int) -> int:
        cutoff = datetime.utcnow() - timedelta(days=days)
        with self._write("cleanup_tasks") as session:
            outcome = session.execute(
                delete(ScheduledTask)
                .where(ScheduledTask.status.in_([TaskStatus.COMPLETED.value, TaskStatus.FAILED.value]))
                .where(ScheduledTask.scheduled_at < cutoff)
            )
            return outcome.rowcount or 0
