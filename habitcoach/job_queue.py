from __future__ import annotations

import os
import socket
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from sqlalchemy import and_, or_

from .db import SessionLocal
from .errors import JobNotFound
from .models import BackgroundJob

# Job kinds handled by run_worker.process_job
PROGRESSION_COMMIT = "progression_commit"
COACH_CONSULTATION = "coach_consultation"
ASSESSMENT_DUE_CHECK = "assessment_due_check"

OPEN_STATUSES = ("pending", "running", "retry")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except ValueError:
        return int(default)


def queue_requeue_delay_seconds(requeue_count: int) -> int:
    """
    Generic queue-level retry delay policy.
    Delay grows linearly and is capped.
    """
    base = max(1, _env_int("QUEUE_REQUEUE_BASE_DELAY_SECONDS", 5))
    step = max(0, _env_int("QUEUE_REQUEUE_STEP_SECONDS", 2))
    max_delay = max(base, _env_int("QUEUE_REQUEUE_MAX_DELAY_SECONDS", 30))
    delay = base + (max(0, int(requeue_count)) * step)
    return min(max_delay, max(base, delay))


def job_snapshot(job: BackgroundJob) -> dict[str, Any]:
    return {
        "id": job.id,
        "kind": job.kind,
        "status": job.status,
        "user_id": job.user_id,
        "attempts": int(job.attempts or 0),
        "error": job.error,
        "result": job.result,
        "available_at": job.available_at.isoformat() if job.available_at else None,
        "created_at": job.created_at.isoformat() if job.created_at else None,
    }


class WriteQueue:
    """Durable queue on the background_jobs table."""

    def __init__(self, session_factory: Callable = SessionLocal):
        self.session_factory = session_factory

    def enqueue(
        self,
        kind: str,
        payload: dict[str, Any],
        *,
        user_id: int | None = None,
        available_at: datetime | None = None,
    ) -> int:
        with self.session_factory() as s:
            job = BackgroundJob(
                kind=kind,
                payload=payload,
                status="pending",
                user_id=user_id,
                attempts=0,
                available_at=available_at,
            )
            s.add(job)
            s.commit()
            s.refresh(job)
            return int(job.id)

    def claim(
        self,
        *,
        worker_id: str | None = None,
        kinds: Iterable[str] | None = None,
        lock_timeout_minutes: int = 30,
    ) -> BackgroundJob | None:
        now = datetime.utcnow()
        stale = now - timedelta(minutes=max(1, lock_timeout_minutes))
        worker_id = worker_id or socket.gethostname()
        with self.session_factory() as s:
            q = s.query(BackgroundJob).filter(
                or_(
                    BackgroundJob.status == "pending",
                    BackgroundJob.status == "retry",
                    and_(BackgroundJob.status == "running", BackgroundJob.locked_at.isnot(None), BackgroundJob.locked_at < stale),
                )
            )
            q = q.filter(or_(BackgroundJob.available_at.is_(None), BackgroundJob.available_at <= now))
            if kinds:
                q = q.filter(BackgroundJob.kind.in_(list(kinds)))
            job = (
                q.order_by(BackgroundJob.created_at.asc(), BackgroundJob.id.asc())
                .with_for_update(skip_locked=True)
                .first()
            )
            if not job:
                return None
            job.status = "running"
            job.locked_at = now
            job.locked_by = worker_id
            job.attempts = int(job.attempts or 0) + 1
            s.add(job)
            s.commit()
            s.refresh(job)
            s.expunge(job)
            return job

    def mark_done(self, job_id: int, result: dict[str, Any] | None = None) -> None:
        with self.session_factory() as s:
            job = s.get(BackgroundJob, job_id)
            if not job:
                return
            job.status = "done"
            job.result = result
            job.error = None
            job.locked_at = None
            job.locked_by = None
            s.add(job)
            s.commit()

    def mark_error(self, job_id: int, error: str, *, retry: bool) -> None:
        with self.session_factory() as s:
            job = s.get(BackgroundJob, job_id)
            if not job:
                return
            job.error = error
            job.status = "retry" if retry else "error"
            job.locked_at = None
            job.locked_by = None
            if retry:
                delay = queue_requeue_delay_seconds(max(0, int(job.attempts or 0) - 1))
                job.available_at = datetime.utcnow() + timedelta(seconds=delay)
            s.add(job)
            s.commit()

    def get(self, job_id: int) -> dict[str, Any]:
        with self.session_factory() as s:
            job = s.get(BackgroundJob, job_id)
            if not job:
                raise JobNotFound(f"job {job_id} not found", job_id=job_id)
            return job_snapshot(job)

    def retry(self, job_id: int) -> dict[str, Any]:
        """Manual retry of a job that exhausted its attempts."""
        with self.session_factory() as s:
            job = s.get(BackgroundJob, job_id)
            if not job:
                raise JobNotFound(f"job {job_id} not found", job_id=job_id)
            if job.status != "error":
                return job_snapshot(job)
            job.status = "pending"
            job.attempts = 0
            job.available_at = None
            job.error = None
            s.add(job)
            s.commit()
            s.refresh(job)
            print(f"[queue] job={job.id} kind={job.kind} requeued manually")
            return job_snapshot(job)

    def open_jobs_for(
        self,
        kind: str,
        user_id: int,
        statuses: Iterable[str] = OPEN_STATUSES + ("error",),
    ) -> list[BackgroundJob]:
        """Jobs of a kind for a user in any of `statuses` (unfinished or failed by default)."""
        with self.session_factory() as s:
            rows = (
                s.query(BackgroundJob)
                .filter(
                    BackgroundJob.kind == kind,
                    BackgroundJob.user_id == user_id,
                    BackgroundJob.status.in_(list(statuses)),
                )
                .order_by(BackgroundJob.id.asc())
                .all()
            )
            for row in rows:
                s.expunge(row)
            return rows
