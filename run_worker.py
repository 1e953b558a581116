#!/usr/bin/env python3
from __future__ import annotations

import os
import time
import socket
import traceback
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from habitcoach.config import settings
from habitcoach.db import SessionLocal, _table_exists, engine, init_db
from habitcoach.decisions import ESCALATED
from habitcoach.job_queue import (
    ASSESSMENT_DUE_CHECK,
    COACH_CONSULTATION,
    PROGRESSION_COMMIT,
    WriteQueue,
)
from habitcoach.persistence import record_audit
from habitcoach.service import ProgressionService


def _process_progression_commit(svc: ProgressionService, payload: dict) -> dict:
    if not payload.get("user_id") or not payload.get("plan"):
        raise ValueError("progression_commit requires user_id and plan")
    user_id = int(payload["user_id"])
    result = svc.writer.replay(payload)
    record_audit(svc.session_factory, user_id, "progression_commit", "ok",
                 {"assessment_week": payload.get("assessment_week"), "duplicate": result.duplicate})
    out = {"ok": True, "confirmed": result.confirmed, "duplicate": result.duplicate}
    if payload.get("pending_status") == ESCALATED and not result.duplicate:
        out["coach_job_id"] = svc.queue_coach_brief(user_id, int(payload.get("assessment_week") or 0))
    return out


def _process_coach_consultation(svc: ProgressionService, payload: dict) -> dict:
    user_id = payload.get("user_id")
    if not user_id:
        raise ValueError("coach_consultation requires user_id")
    return svc.coach_brief(int(user_id))


def _process_assessment_due_check(svc: ProgressionService, payload: dict) -> dict:
    user_id = payload.get("user_id")
    if not user_id:
        raise ValueError("assessment_due_check requires user_id")
    signal = svc.check_due(int(user_id), trigger=str(payload.get("trigger") or "cron"))
    return {"ok": True, "due": signal.due, "reason": signal.reason, "assessment_week": signal.assessment_week}


def process_job(kind: str, payload: dict, svc: Optional[ProgressionService] = None) -> dict:
    svc = svc or ProgressionService(SessionLocal)
    if kind == PROGRESSION_COMMIT:
        return _process_progression_commit(svc, payload)
    if kind == COACH_CONSULTATION:
        return _process_coach_consultation(svc, payload)
    if kind == ASSESSMENT_DUE_CHECK:
        return _process_assessment_due_check(svc, payload)
    raise ValueError(f"Unknown job kind: {kind}")


def run_once(queue: WriteQueue, svc: ProgressionService, *, worker_id: str, lock_timeout: int,
             max_attempts: int) -> bool:
    """Claim and process a single job. Returns False when the queue is empty."""
    job = queue.claim(worker_id=worker_id, lock_timeout_minutes=lock_timeout)
    if not job:
        return False
    try:
        result = process_job(job.kind, job.payload or {}, svc)
        queue.mark_done(job.id, result)
        print(f"[worker] done job={job.id} kind={job.kind}")
    except Exception as e:
        retry = int(job.attempts or 0) < max_attempts
        queue.mark_error(job.id, str(e), retry=retry)
        print(f"[worker] error job={job.id} kind={job.kind} retry={retry}: {e}")
        print(traceback.format_exc())
    return True


def _wait_for_schema() -> None:
    timeout_s = int((os.getenv("WORKER_WAIT_FOR_SCHEMA_SECONDS") or "60").strip() or "60")
    deadline = time.time() + max(5, timeout_s)
    while time.time() < deadline:
        with engine.begin() as conn:
            if _table_exists(conn, "background_jobs"):
                return
        time.sleep(2)
    print("[worker] schema wait timeout reached; creating tables")
    init_db()


def main() -> None:
    _wait_for_schema()
    worker_id = os.getenv("WORKER_ID") or socket.gethostname()
    poll_seconds = int(os.getenv("WORKER_POLL_SECONDS", "2") or "2")
    lock_timeout = int(os.getenv("WORKER_LOCK_TIMEOUT_MINUTES", "30") or "30")
    max_attempts = int(settings.QUEUE_MAX_ATTEMPTS)
    queue = WriteQueue(SessionLocal)
    svc = ProgressionService(SessionLocal, write_queue=queue)

    print(f"[worker] started id={worker_id} poll={poll_seconds}s lock_timeout={lock_timeout}m max_attempts={max_attempts}")
    while True:
        if not run_once(queue, svc, worker_id=worker_id, lock_timeout=lock_timeout, max_attempts=max_attempts):
            time.sleep(max(1, poll_seconds))


if __name__ == "__main__":
    main()
