from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from .assessment_types import WeeklyAssessmentData
from .config import settings
from .db import SessionLocal
from .debug_utils import debug_log
from .decisions import Resolution
from .errors import AlreadyDecided, PersistenceFailure, PlanNotFound
from .job_queue import PROGRESSION_COMMIT, WriteQueue
from .models import JobAudit, PendingAssessment, PlanProgress, WeeklyPerformanceHistory
from .programme_timeline import to_date


@dataclass
class CommitResult:
    confirmed: bool
    job_id: Optional[int] = None
    duplicate: bool = False


def record_audit(
    session_factory: Callable,
    user_id: Optional[int],
    job_name: str,
    status: str,
    payload: Optional[dict[str, Any]] = None,
    error: Optional[str] = None,
) -> None:
    try:
        with session_factory() as s:
            s.add(JobAudit(user_id=user_id, job_name=job_name, status=status, payload=payload or {}, error=error))
            s.commit()
    except SQLAlchemyError as e:
        print(f"[audit] WARN: could not record {job_name} for user {user_id}: {e}")

# ──────────────────────────────────────────────────────────────────────────────
# Write plan: a JSON document so the same write can be replayed by the worker
# ──────────────────────────────────────────────────────────────────────────────

def build_write(
    user_id: int,
    data: WeeklyAssessmentData,
    resolution: Resolution,
    *,
    now: datetime,
    write_history: bool = True,
) -> dict[str, Any]:
    perf = data.performance
    history = None
    if write_history:
        averages = {p.pillar: p.average_achievement for p in perf.pillar_breakdown}
        decision = resolution.decision
        history = {
            "assessment_week": data.assessment_week,
            "week_number": perf.week,
            "phase_number": perf.phase,
            "start_date": perf.start_date.isoformat(),
            "end_date": perf.end_date.isoformat(),
            "steps_achievement_avg": averages.get("steps", 0.0),
            "water_achievement_avg": averages.get("water", 0.0),
            "sleep_achievement_avg": averages.get("sleep", 0.0),
            "mood_achievement_avg": averages.get("mood", 0.0),
            "overall_achievement_avg": perf.average_achievement,
            "consistency_days": perf.consistency_days,
            "total_tracking_days": perf.total_tracking_days,
            "progression_recommendation": data.assessment.recommendation,
            "user_decision": resolution.user_decision,
            "applied_transition": decision.type if decision else None,
            "executed_by": decision.executed_by if decision else "user",
            "confidence": decision.confidence if decision else data.assessment.confidence,
            "decision_reasoning": list(decision.reasoning) if decision else list(data.assessment.reasoning),
            "targets_at_assessment": dict(data.current_targets),
            "strongest_pillar": perf.strongest_pillar,
            "weakest_pillar": perf.weakest_pillar,
            "assessed_at": now.isoformat(),
        }

    state = resolution.new_state
    log_entry = {
        "at": now.isoformat(),
        "assessment_week": data.assessment_week,
        "user_decision": resolution.user_decision,
        "transition": resolution.decision.type if resolution.decision else "escalated",
        "executed_by": resolution.decision.executed_by if resolution.decision else "user",
        "from_week": perf.week,
        "to_week": state.week,
        "from_phase": perf.phase,
        "to_phase": state.phase,
    }
    return {
        "user_id": user_id,
        "assessment_week": data.assessment_week,
        "history": history,
        "plan": state.to_dict(),
        "log_entry": log_entry,
        "pending_status": resolution.pending_status,
    }


def history_exists(s, user_id: int, assessment_week: int) -> bool:
    row = s.execute(
        select(WeeklyPerformanceHistory.id).where(
            WeeklyPerformanceHistory.user_id == user_id,
            WeeklyPerformanceHistory.assessment_week == assessment_week,
        )
    ).first()
    return row is not None


def apply_write(s, write: dict[str, Any]) -> None:
    """Apply a write plan inside an open session; the caller commits."""
    user_id = int(write["user_id"])
    plan = s.execute(
        select(PlanProgress).where(PlanProgress.user_id == user_id).with_for_update()
    ).scalar_one_or_none()
    if plan is None:
        raise PlanNotFound(f"user {user_id} has no plan", user_id=user_id)

    history = write.get("history")
    if history:
        if history_exists(s, user_id, int(history["assessment_week"])):
            raise AlreadyDecided(
                f"assessment week {history['assessment_week']} already has a decision",
                assessment_week=history["assessment_week"],
            )
        row = dict(history)
        row["start_date"] = to_date(row["start_date"])
        row["end_date"] = to_date(row["end_date"])
        row["assessed_at"] = datetime.fromisoformat(row["assessed_at"])
        s.add(WeeklyPerformanceHistory(user_id=user_id, **row))

    state = write["plan"]
    plan.current_week = int(state["week"])
    plan.current_phase = int(state["phase"])
    plan.current_targets = dict(state["targets"])
    plan.focus = state.get("focus")
    plan.week_extensions = int(state.get("week_extensions") or 0)
    log = list(plan.progression_log or [])
    log.append(write["log_entry"])
    plan.progression_log = log
    s.add(plan)

    pending = s.execute(
        select(PendingAssessment).where(PendingAssessment.user_id == user_id)
    ).scalar_one_or_none()
    if pending is not None and pending.assessment_week == int(write["assessment_week"]):
        status = write.get("pending_status")
        if status is None:
            s.delete(pending)
        else:
            pending.status = status
            payload = dict(pending.payload or {})
            payload["status"] = status
            pending.payload = payload
            s.add(pending)
    s.flush()


class ProgressionWriter:
    """
    Commits decision + plan state + pending cleanup as one transaction.
    Transient database errors are retried with exponential backoff; after the
    last attempt the write goes to the durable queue and is reported unconfirmed.
    """

    def __init__(
        self,
        session_factory: Callable = SessionLocal,
        write_queue: Optional[WriteQueue] = None,
        *,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session_factory = session_factory
        self.queue = write_queue or WriteQueue(session_factory)
        self.max_attempts = max(1, int(max_attempts if max_attempts is not None else settings.PERSIST_MAX_ATTEMPTS))
        self.backoff_seconds = float(backoff_seconds if backoff_seconds is not None else settings.PERSIST_BACKOFF_SECONDS)
        self.sleep = sleep

    def commit_once(self, write: dict[str, Any]) -> None:
        with self.session_factory() as s:
            try:
                apply_write(s, write)
                s.commit()
            except IntegrityError as e:
                s.rollback()
                raise AlreadyDecided(
                    f"assessment week {write.get('assessment_week')} already has a decision",
                    assessment_week=write.get("assessment_week"),
                ) from e
            except Exception:
                s.rollback()
                raise

    def commit(self, write: dict[str, Any]) -> CommitResult:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                self.commit_once(write)
                debug_log("progression write committed", {"user_id": write["user_id"], "attempt": attempt},
                          tag="persist")
                return CommitResult(confirmed=True)
            except OperationalError as e:
                last_error = e
                print(f"[persist] attempt {attempt}/{self.max_attempts} failed for user {write['user_id']}: {e}")
                if attempt < self.max_attempts:
                    self.sleep(self.backoff_seconds * (2 ** (attempt - 1)))

        try:
            job_id = self.queue.enqueue(PROGRESSION_COMMIT, write, user_id=int(write["user_id"]))
        except SQLAlchemyError as e:
            raise PersistenceFailure(
                "decision could not be saved or queued; please retry",
                user_id=write["user_id"],
            ) from e
        print(f"[persist] queued job={job_id} for user {write['user_id']} after {self.max_attempts} attempts: {last_error}")
        return CommitResult(confirmed=False, job_id=job_id)

    def replay(self, write: dict[str, Any]) -> CommitResult:
        """Worker side: apply a queued write. A write that already landed counts as done."""
        try:
            self.commit_once(write)
        except AlreadyDecided:
            return CommitResult(confirmed=True, duplicate=True)
        return CommitResult(confirmed=True)
