"""Durable job records backed by SQLAlchemy.

The store is not kept in lockstep with the registry's in-memory view: the
registry writes here after mutating its cache, and a failed write only costs
that update on the next restart.
"""

import json
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from bundler.db.database import Base, create_session_factory
from bundler.db.models import JobRow
from bundler.errors import PersistenceError
from bundler.jobs.models import Job, JobStatus, utcnow


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def row_to_job(row: JobRow) -> Job:
    return Job(
        id=row.job_id,
        status=JobStatus(row.status),
        keys=json.loads(row.file_keys),
        progress=row.progress,
        files_completed=row.files_completed,
        total_files=row.total_files,
        result_url=row.download_url,
        error=row.error,
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


def _copy_onto(row: JobRow, job: Job) -> None:
    row.status = job.status.value
    row.file_keys = json.dumps(job.keys)
    row.progress = job.progress
    row.files_completed = job.files_completed
    row.total_files = job.total_files
    row.download_url = job.result_url
    row.error = job.error
    row.created_at = job.created_at
    row.updated_at = job.updated_at


class JobStore:
    """Upsert, fetch and list download job rows."""

    def __init__(self, engine: Engine):
        Base.metadata.create_all(bind=engine)
        self._session_factory = create_session_factory(engine)

    def save(self, job: Job) -> None:
        """Insert or overwrite the row for ``job``.

        Raises PersistenceError when the write fails.
        """
        db = self._session_factory()
        try:
            row = db.get(JobRow, job.id)
            if row is None:
                row = JobRow(job_id=job.id)
                db.add(row)
            _copy_onto(row, job)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(job.id, e) from e
        finally:
            db.close()

    def fetch(self, job_id: str) -> Optional[Job]:
        db = self._session_factory()
        try:
            row = db.get(JobRow, job_id)
            return row_to_job(row) if row is not None else None
        finally:
            db.close()

    def list(
        self,
        status: Optional[JobStatus] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Job]:
        """Jobs ordered newest first, optionally filtered by status."""
        db = self._session_factory()
        try:
            query = db.query(JobRow)
            if status:
                query = query.filter(JobRow.status == status.value)
            rows = query.order_by(JobRow.created_at.desc()).offset(offset).limit(limit).all()
            return [row_to_job(row) for row in rows]
        finally:
            db.close()

    def fail_unfinished(self, error: str) -> List[str]:
        """Mark every queued or processing row failed. Returns the affected ids."""
        db = self._session_factory()
        try:
            rows = (
                db.query(JobRow)
                .filter(JobRow.status.in_([JobStatus.QUEUED.value, JobStatus.PROCESSING.value]))
                .all()
            )
            now = utcnow()
            ids = [row.job_id for row in rows]
            for row in rows:
                row.status = JobStatus.FAILED.value
                row.error = error
                row.download_url = None
                row.updated_at = now
            db.commit()
            return ids
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError("*", e) from e
        finally:
            db.close()
