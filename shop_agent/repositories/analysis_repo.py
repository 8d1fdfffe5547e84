"""
Analysis Repository

Persists AnalysisRecord rows (one per analyzed entity) and the AnalysisRun
summaries written when a job finishes. Analysis rows are immutable once
written; the only mutation is retention cleanup.
"""

from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any

from sqlalchemy import delete
from sqlmodel import select, func

from shop_agent.models import AnalysisRecord, AnalysisRun, AnalysisStatus
from .base import BaseRepository


class AnalysisRepository(BaseRepository):

    def save(self, record: AnalysisRecord) -> AnalysisRecord:
        with self._write("save_analysis") as session:
            session.add(record)
            session.flush()
            session.refresh(record)
            return record

    def get(self, analysis_id: int) -> Optional[AnalysisRecord]:
        with self._read("get_analysis") as session:
            return session.get(AnalysisRecord, analysis_id)

    def list(
        self,
        analysis_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[AnalysisRecord]:
        with self._read("list_analyses") as session:
            query = select(AnalysisRecord)
            if analysis_type:
                query = query.where(AnalysisRecord.analysis_type == analysis_type)
            if entity_id is not None:
                query = query.where(AnalysisRecord.entity_id == entity_id)
            if status:
                query = query.where(AnalysisRecord.status == status)
            query = query.order_by(AnalysisRecord.created_at.desc(), AnalysisRecord.id.desc())
            return list(session.exec(query.offset(offset).limit(limit)).all())

    def latest_for_entity(self, analysis_type: str, entity_id: int) -> Optional[AnalysisRecord]:
        rows = self.list(analysis_type=analysis_type, entity_id=entity_id, limit=1)
        return rows[0] if rows else None

    def stats(self, days: int = 30) -> Dict[str, Any]:
        """Counts, average priority and token usage over the last N days."""
        since = datetime.utcnow() - timedelta(days=days)
        with self._read("analysis_stats") as session:
            rows = session.exec(
                select(
                    AnalysisRecord.analysis_type,
                    AnalysisRecord.status,
                    func.count(AnalysisRecord.id),
                    func.avg(AnalysisRecord.priority_score),
                    func.sum(AnalysisRecord.tokens_used),
                )
                .where(AnalysisRecord.created_at >= since)
                .group_by(AnalysisRecord.analysis_type, AnalysisRecord.status)
            ).all()

        stats: Dict[str, Any] = {"total": 0, "failed": 0, "tokens_used": 0, "by_type": {}}
        for analysis_type, status, count, avg_priority, tokens in rows:
            entry = stats["by_type"].setdefault(analysis_type, {"count": 0, "failed": 0, "avg_priority": 0.0})
            entry["count"] += count
            if status == AnalysisStatus.FAILED.value:
                entry["failed"] += count
                stats["failed"] += count
            else:
                entry["avg_priority"] = round(float(avg_priority or 0), 1)
            stats["total"] += count
            stats["tokens_used"] += int(tokens or 0)
        return stats

    def delete_older_than(self, days: int) -> int:
        cutoff = datetime.utcnow() - timedelta(days=days)
        with self._write("cleanup_analyses") as session:
            result = session.execute(delete(AnalysisRecord).where(AnalysisRecord.created_at < cutoff))
            return result.rowcount or 0

    # Run summaries

    def save_run(self, run: AnalysisRun) -> AnalysisRun:
        with self._write("save_analysis_run") as session:
            session.add(run)
            session.flush()
            session.refresh(run)
            return run

    def list_runs(self, limit: int = 20) -> List[AnalysisRun]:
        with self._read("list_analysis_runs") as session:
            query = select(AnalysisRun).order_by(AnalysisRun.created_at.desc(), AnalysisRun.id.desc()).limit(limit)
            return list(session.exec(query).all())
