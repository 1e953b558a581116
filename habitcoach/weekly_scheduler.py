# habitcoach/weekly_scheduler.py
from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.sqlalchemy import SQLAlchemyJobStore
from apscheduler.executors.pool import ThreadPoolExecutor
from sqlalchemy import select

from .config import settings
from .db import SessionLocal, engine
from .job_queue import ASSESSMENT_DUE_CHECK, OPEN_STATUSES, WriteQueue
from .models import PendingAssessment, PlanProgress
from .programme_timeline import to_date

TRIGGERS = ("app_launch", "manual", "cron")

# ──────────────────────────────────────────────────────────────────────────────
# Due-date arithmetic (pure; recomputed on every trigger, no live timers)
# ──────────────────────────────────────────────────────────────────────────────

def compute_next_due_date(
    last_assessed_at: date | datetime | None,
    cadence_days: int = 7,
    start_date: date | datetime | None = None,
) -> Optional[date]:
    """
    Fixed cadence: `cadence_days` after the last assessment, or after the
    programme start when the user has never been assessed.
    """
    anchor = to_date(last_assessed_at) or to_date(start_date)
    if anchor is None:
        return None
    return anchor + timedelta(days=max(1, int(cadence_days)))


def assessment_window(today: date, window_days: int = 7) -> tuple[date, date]:
    """The seven full days ending yesterday."""
    end = today - timedelta(days=1)
    return end - timedelta(days=window_days - 1), end


def is_due(
    today: date,
    last_assessed_at: date | datetime | None,
    start_date: date | datetime | None,
    cadence_days: int = 7,
) -> bool:
    due_at = compute_next_due_date(last_assessed_at, cadence_days, start_date)
    return due_at is not None and today >= due_at


def assessment_schedule(
    last_assessed_at: date | datetime | None,
    start_date: date | datetime | None,
    weeks_ahead: int = 4,
    cadence_days: int = 7,
) -> list[date]:
    """Upcoming due dates assuming each assessment happens on its due day."""
    out: list[date] = []
    cursor: date | datetime | None = last_assessed_at
    for _ in range(max(0, weeks_ahead)):
        nxt = compute_next_due_date(cursor, cadence_days, start_date)
        if nxt is None:
            break
        out.append(nxt)
        cursor = nxt
    return out

# ──────────────────────────────────────────────────────────────────────────────
# APScheduler setup (optional in-process trigger; external cron works too)
# ──────────────────────────────────────────────────────────────────────────────

jobstores = {"default": SQLAlchemyJobStore(engine=engine)}
executors = {"default": ThreadPoolExecutor(10)}
scheduler = AsyncIOScheduler(jobstores=jobstores, executors=executors, timezone="UTC")

SWEEP_JOB_ID = "assessment_due_sweep"


def due_sweep(
    session_factory: Callable = SessionLocal,
    today: Optional[date] = None,
    write_queue: Optional[WriteQueue] = None,
) -> list[int]:
    """Queue an assessment_due_check job for every plan that is due and has nothing pending."""
    today = today or datetime.utcnow().date()
    queue = write_queue or WriteQueue(session_factory)
    cadence = settings.ASSESSMENT_CADENCE_DAYS
    due_users: list[int] = []
    with session_factory() as s:
        pending_users = set(s.execute(select(PendingAssessment.user_id)).scalars().all())
        for plan in s.execute(select(PlanProgress)).scalars().all():
            if plan.user_id in pending_users:
                continue
            if is_due(today, plan.last_assessment_at, plan.start_date, cadence):
                due_users.append(int(plan.user_id))

    queued: list[int] = []
    for user_id in due_users:
        if queue.open_jobs_for(ASSESSMENT_DUE_CHECK, user_id, statuses=OPEN_STATUSES):
            continue
        queued.append(queue.enqueue(ASSESSMENT_DUE_CHECK, {"user_id": user_id, "trigger": "cron"}, user_id=user_id))
    print(f"[scheduler] due sweep {today.isoformat()}: {len(due_users)} due, {len(queued)} queued")
    return queued


def _run_due_sweep() -> None:
    due_sweep()


def start_scheduler() -> bool:
    if not settings.SCHEDULER_ENABLED:
        print("[scheduler] disabled (SCHEDULER_ENABLED=0); relying on app launch / cron triggers")
        return False
    scheduler.add_job(
        _run_due_sweep,
        trigger="interval",
        minutes=max(1, settings.SCHEDULER_CHECK_EVERY_MIN),
        id=SWEEP_JOB_ID,
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    if not scheduler.running:
        scheduler.start()
    print(f"[scheduler] due sweep every {settings.SCHEDULER_CHECK_EVERY_MIN} min")
    return True


def shutdown_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)


def describe(plan: PlanProgress, weeks_ahead: int = 4) -> dict[str, Any]:
    due_at = compute_next_due_date(plan.last_assessment_at, settings.ASSESSMENT_CADENCE_DAYS, plan.start_date)
    return {
        "next_due": due_at.isoformat() if due_at else None,
        "upcoming": [
            d.isoformat()
            for d in assessment_schedule(plan.last_assessment_at, plan.start_date, weeks_ahead,
                                         settings.ASSESSMENT_CADENCE_DAYS)
        ],
    }
