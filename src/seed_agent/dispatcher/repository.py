"""Durable dedup store for jobs that reached a terminal outcome."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from sqlalchemy import delete as sa_delete
from sqlalchemy import func
from sqlmodel import Session, col, select

from seed_agent.dispatcher.models import JobOutcome
from seed_agent.storage.common import build_dedup_engine, utc_now
from seed_agent.storage.schema import migrate_dedup_store
from seed_agent.storage.sqlmodel_models import ProcessedJob

DEFAULT_DEDUP_CAPACITY = 1000


@dataclass(slots=True)
class ProcessedJobView:
    """Readable dedup entry for CLI output."""

    seq: int
    job_id: str
    outcome: str
    recorded_at: datetime


class ProcessedJobRepository:
    """Bounded FIFO set of processed job ids backed by SQLModel + SQLite."""

    def __init__(
        self,
        db_path: Path,
        *,
        capacity: int = DEFAULT_DEDUP_CAPACITY,
        sqlite_busy_timeout_ms: int = 5_000,
    ) -> None:
        if capacity <= 0:
            raise ValueError("Dedup capacity must be positive.")
        self.db_path = db_path
        self.capacity = capacity
        self.engine = build_dedup_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        migrate_dedup_store(self.db_path)

    def mark_completed(self, job_id: str, outcome: JobOutcome) -> bool:
        """Record a terminal outcome; returns False when the id was already recorded."""

        with Session(self.engine) as session:
            existing = session.exec(
                select(ProcessedJob).where(ProcessedJob.job_id == job_id),
            ).one_or_none()
            if existing is not None:
                return False
            session.add(
                ProcessedJob(job_id=job_id, outcome=outcome.value, recorded_at=utc_now()),
            )
            session.commit()
            self._evict_overflow(session)
            return True

    def is_completed(self, job_id: str) -> bool:
        with Session(self.engine) as session:
            row = session.exec(
                select(ProcessedJob.seq).where(ProcessedJob.job_id == job_id),
            ).first()
            return row is not None

    def forget(self, job_id: str) -> bool:
        """Remove one id so the job can be admitted again."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_delete(ProcessedJob).where(col(ProcessedJob.job_id) == job_id),
            )
            session.commit()
            return result.rowcount > 0

    def count(self) -> int:
        with Session(self.engine) as session:
            return int(session.exec(select(func.count()).select_from(ProcessedJob)).one())

    def load_completed_ids(self) -> list[str]:
        """Ids currently retained, oldest first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(ProcessedJob.job_id).order_by(col(ProcessedJob.seq).asc()),
            ).all()
            return [str(job_id) for job_id in rows]

    def list_recent(self, *, limit: int = 20) -> list[ProcessedJobView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ProcessedJob).order_by(col(ProcessedJob.seq).desc()).limit(limit),
            ).all()
            return [
                ProcessedJobView(
                    seq=row.seq or 0,
                    job_id=row.job_id,
                    outcome=row.outcome,
                    recorded_at=row.recorded_at,
                )
                for row in rows
            ]

    def _evict_overflow(self, session: Session) -> None:
        total = int(session.exec(select(func.count()).select_from(ProcessedJob)).one())
        overflow = total - self.capacity
        if overflow <= 0:
            return
        oldest = session.exec(
            select(ProcessedJob.seq).order_by(col(ProcessedJob.seq).asc()).limit(overflow),
        ).all()
        session.exec(sa_delete(ProcessedJob).where(col(ProcessedJob.seq).in_(list(oldest))))
        session.commit()
