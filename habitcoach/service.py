from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .advisor import CoachBriefAdvisor
from .assessment_types import (
    PILLARS,
    AssessmentDueSignal,
    InsufficientData,
    PlanState,
    ProgressionOutcome,
    UserDecision,
    WeeklyAssessmentData,
)
from .config import settings
from .consistency import ConsistencyAnalyzer
from .data_store import HabitDataStore
from .db import SessionLocal
from .debug_utils import debug_log
from .decisions import DecisionCoordinator, Resolution, parse_choice
from .errors import (
    AlreadyDecided,
    NoPendingAssessment,
    PlanAlreadyStarted,
    PlanNotFound,
)
from .job_queue import COACH_CONSULTATION, PROGRESSION_COMMIT, WriteQueue
from .models import PendingAssessment, PlanProgress, User, WeeklyPerformanceHistory
from .performance import PerformanceAggregator
from .persistence import ProgressionWriter, build_write, history_exists, record_audit
from .programme_timeline import ProgrammeTemplateProvider, assessment_week_for, programme_phases, to_date
from .recommendation import RecommendationEngine
from .targets import TargetPhaseManager
from .weekly_scheduler import TRIGGERS, assessment_window, compute_next_due_date, describe


def _plan_state(plan: PlanProgress) -> PlanState:
    return PlanState(
        week=int(plan.current_week),
        phase=int(plan.current_phase),
        targets=dict(plan.current_targets or {}),
        focus=plan.focus,
        week_extensions=int(plan.week_extensions or 0),
    )


def plan_snapshot(plan: PlanProgress) -> dict[str, Any]:
    return {
        "user_id": plan.user_id,
        "start_date": plan.start_date.isoformat() if plan.start_date else None,
        "current_week": plan.current_week,
        "current_phase": plan.current_phase,
        "current_targets": dict(plan.current_targets or {}),
        "focus": plan.focus,
        "week_extensions": int(plan.week_extensions or 0),
        "last_assessment_at": plan.last_assessment_at.isoformat() if plan.last_assessment_at else None,
        "progression_log": list(plan.progression_log or []),
    }


def history_snapshot(row: WeeklyPerformanceHistory) -> dict[str, Any]:
    return {
        "assessment_week": row.assessment_week,
        "week_number": row.week_number,
        "phase_number": row.phase_number,
        "start_date": row.start_date.isoformat(),
        "end_date": row.end_date.isoformat(),
        "pillar_averages": {
            "steps": row.steps_achievement_avg,
            "water": row.water_achievement_avg,
            "sleep": row.sleep_achievement_avg,
            "mood": row.mood_achievement_avg,
        },
        "overall_achievement_avg": row.overall_achievement_avg,
        "consistency_days": row.consistency_days,
        "total_tracking_days": row.total_tracking_days,
        "progression_recommendation": row.progression_recommendation,
        "user_decision": row.user_decision,
        "applied_transition": row.applied_transition,
        "executed_by": row.executed_by,
        "confidence": row.confidence,
        "decision_reasoning": list(row.decision_reasoning or []),
        "targets_at_assessment": dict(row.targets_at_assessment or {}),
        "strongest_pillar": row.strongest_pillar,
        "weakest_pillar": row.weakest_pillar,
        "assessed_at": row.assessed_at.isoformat() if row.assessed_at else None,
    }


class ProgressionService:
    """
    Weekly assessment flow for one deployment: grade the week, hold it as the
    user's pending assessment, capture the decision and persist the outcome.
    Every collaborator is passed in; defaults are the DB-backed ones.
    """

    def __init__(
        self,
        session_factory: Callable = SessionLocal,
        template_provider: Optional[ProgrammeTemplateProvider] = None,
        write_queue: Optional[WriteQueue] = None,
        *,
        data_store: Optional[HabitDataStore] = None,
        advisor: Optional[CoachBriefAdvisor] = None,
        writer: Optional[ProgressionWriter] = None,
        clock: Optional[Callable[[], datetime]] = None,
        cadence_days: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.templates = template_provider or ProgrammeTemplateProvider()
        self.queue = write_queue or WriteQueue(session_factory)
        self.clock = clock or datetime.utcnow
        self.data = data_store or HabitDataStore(session_factory, today=self.today)
        self.advisor = advisor
        self.writer = writer or ProgressionWriter(session_factory, self.queue)
        self.cadence_days = int(cadence_days or settings.ASSESSMENT_CADENCE_DAYS)

        self.aggregator = PerformanceAggregator()
        self.analyzer = ConsistencyAnalyzer()
        self.engine = RecommendationEngine()
        self.target_manager = TargetPhaseManager(self.templates)
        self.coordinator = DecisionCoordinator(self.target_manager)

    def today(self) -> date:
        return self.clock().date()

    # ──────────────────────────────────────────────────────────────────────────
    # Plan
    # ──────────────────────────────────────────────────────────────────────────

    def start_programme(
        self,
        user_id: int,
        start_date: Optional[date] = None,
        display_name: Optional[str] = None,
    ) -> dict[str, Any]:
        start = to_date(start_date) or self.today()
        phase, template = self.target_manager.load_week(1)
        with self.session_factory() as s:
            user = s.get(User, user_id)
            if user is None:
                user = User(id=user_id, display_name=display_name)
                s.add(user)
            elif display_name:
                user.display_name = display_name
            if s.execute(select(PlanProgress.id).where(PlanProgress.user_id == user_id)).first():
                raise PlanAlreadyStarted(f"user {user_id} already has a plan", user_id=user_id)
            plan = PlanProgress(
                user_id=user_id,
                start_date=start,
                current_week=1,
                current_phase=phase,
                current_targets=dict(template["target_template"]),
                focus=template.get("focus_description"),
                week_extensions=0,
                progression_log=[],
            )
            s.add(plan)
            try:
                s.commit()
            except IntegrityError as e:
                s.rollback()
                raise PlanAlreadyStarted(f"user {user_id} already has a plan", user_id=user_id) from e
            s.refresh(plan)
            print(f"[programme] user {user_id} started on {start.isoformat()} (week 1, phase {phase})")
            return plan_snapshot(plan)

    def get_plan(self, user_id: int) -> dict[str, Any]:
        with self.session_factory() as s:
            plan = self._load_plan(s, user_id)
            snap = plan_snapshot(plan)
            snap["schedule"] = describe(plan)
            snap["phases"] = programme_phases(plan.start_date)
            return snap

    def plan_state(self, user_id: int) -> PlanState:
        with self.session_factory() as s:
            return _plan_state(self._load_plan(s, user_id))

    @staticmethod
    def _load_plan(s, user_id: int) -> PlanProgress:
        plan = s.execute(select(PlanProgress).where(PlanProgress.user_id == user_id)).scalar_one_or_none()
        if plan is None:
            raise PlanNotFound(f"user {user_id} has no plan", user_id=user_id)
        return plan

    # ──────────────────────────────────────────────────────────────────────────
    # Assessment
    # ──────────────────────────────────────────────────────────────────────────

    def pending_assessment(self, user_id: int) -> Optional[WeeklyAssessmentData]:
        with self.session_factory() as s:
            row = s.execute(
                select(PendingAssessment).where(PendingAssessment.user_id == user_id)
            ).scalar_one_or_none()
            if row is None:
                return None
            data = WeeklyAssessmentData.from_dict(row.payload)
            data.status = row.status
            return data

    def assess_week(self, user_id: int) -> Union[WeeklyAssessmentData, InsufficientData]:
        """
        Grade the seven days ending yesterday. An existing pending (or escalated)
        assessment is returned unchanged instead of computing a new one.
        """
        existing = self.pending_assessment(user_id)
        if existing is not None:
            debug_log("re-presenting pending assessment", {"user_id": user_id,
                      "assessment_week": existing.assessment_week}, tag="assessment")
            return existing

        with self.session_factory() as s:
            plan = self._load_plan(s, user_id)
            state = _plan_state(plan)
            start_date = plan.start_date

        now = self.clock()
        window_start, window_end = assessment_window(now.date())
        records = self.data.records_for_range(user_id, window_start, window_end)
        history = self.data.history_until(user_id, window_end)

        performance = self.aggregator.aggregate_week(records, window_start, state.week, state.phase)
        consistency = self.analyzer.analyze(performance, history)
        performance = self.analyzer.with_trends(performance, consistency)
        result = self.engine.recommend(performance, consistency, state.targets, state.week_extensions)

        if isinstance(result, InsufficientData):
            print(f"[assessment] user {user_id}: no tracked days {window_start} to {window_end}")
            record_audit(self.session_factory, user_id, "weekly_assessment", "insufficient_data",
                         {"start_date": window_start.isoformat(), "end_date": window_end.isoformat()})
            return result

        ok, note = self.engine.validate_recommendation(result.recommendation, state.week, self.templates.total_weeks)
        if not ok:
            result.risk_factors.append(note)

        assessment_week = assessment_week_for(start_date, window_end)
        data = WeeklyAssessmentData(
            user_id=user_id,
            assessment_week=assessment_week,
            performance=performance,
            consistency=consistency,
            assessment=result,
            current_targets=dict(state.targets),
            next_week_targets=self.target_manager.preview_targets(state, result),
            patterns=self.analyzer.identify_patterns(consistency),
        )

        with self.session_factory() as s:
            if history_exists(s, user_id, assessment_week):
                raise AlreadyDecided(
                    f"assessment week {assessment_week} already has a decision",
                    assessment_week=assessment_week,
                )
            plan = self._load_plan(s, user_id)
            plan.last_assessment_at = now
            s.add(PendingAssessment(
                user_id=user_id,
                assessment_week=assessment_week,
                week_number=state.week,
                status="pending",
                payload=data.to_dict(),
            ))
            try:
                s.commit()
            except IntegrityError:
                # a concurrent trigger created the pending row first; show that one
                s.rollback()
                concurrent = self.pending_assessment(user_id)
                if concurrent is None:
                    raise
                return concurrent

        print(
            f"[assessment] user {user_id} week {state.week} (calendar week {assessment_week}): "
            f"{result.recommendation} @ {result.confidence}%"
        )
        record_audit(self.session_factory, user_id, "weekly_assessment", "ok", {
            "assessment_week": assessment_week,
            "recommendation": result.recommendation,
            "confidence": result.confidence,
            "average_achievement": performance.average_achievement,
        })
        return data

    def check_due(self, user_id: int, trigger: str = "app_launch") -> AssessmentDueSignal:
        if trigger not in TRIGGERS:
            raise ValueError(f"unknown trigger {trigger!r}; expected one of {', '.join(TRIGGERS)}")
        pending = self.pending_assessment(user_id)
        if pending is not None:
            return AssessmentDueSignal(
                due=True,
                due_at=None,
                reason=pending.status,
                assessment_week=pending.assessment_week,
                assessment=pending.to_dict(),
            )

        with self.session_factory() as s:
            plan = self._load_plan(s, user_id)
            due_at = compute_next_due_date(plan.last_assessment_at, self.cadence_days, plan.start_date)

        today = self.today()
        if trigger != "manual" and (due_at is None or today < due_at):
            return AssessmentDueSignal(due=False, due_at=due_at, reason="not_due")

        try:
            result = self.assess_week(user_id)
        except AlreadyDecided as e:
            week = e.context.get("assessment_week")
            self._stamp_assessed(user_id)
            print(f"[assessment] user {user_id}: calendar week {week} already decided; nothing new to grade")
            return AssessmentDueSignal(due=False, due_at=due_at, reason="already_decided", assessment_week=week)
        if isinstance(result, InsufficientData):
            return AssessmentDueSignal(due=True, due_at=due_at, reason="insufficient_data",
                                       assessment=result.to_dict())
        return AssessmentDueSignal(
            due=True,
            due_at=due_at,
            reason="created",
            assessment_week=result.assessment_week,
            assessment=result.to_dict(),
        )

    def _stamp_assessed(self, user_id: int) -> None:
        with self.session_factory() as s:
            plan = self._load_plan(s, user_id)
            plan.last_assessment_at = self.clock()
            s.commit()

    # ──────────────────────────────────────────────────────────────────────────
    # Decisions
    # ──────────────────────────────────────────────────────────────────────────

    def _queued_commit_for(self, user_id: int, assessment_week: int) -> bool:
        for job in self.queue.open_jobs_for(PROGRESSION_COMMIT, user_id):
            if int((job.payload or {}).get("assessment_week") or 0) == int(assessment_week):
                return True
        return False

    def _already_decided(self, user_id: int, assessment_week: int) -> bool:
        with self.session_factory() as s:
            decided = history_exists(s, user_id, assessment_week)
        return decided or self._queued_commit_for(user_id, assessment_week)

    def _last_assessed_week(self, user_id: int) -> Optional[int]:
        with self.session_factory() as s:
            plan = self._load_plan(s, user_id)
            if plan.last_assessment_at is None:
                return None
            window_end = plan.last_assessment_at.date() - timedelta(days=1)
            return assessment_week_for(plan.start_date, window_end)

    def _load_pending_row(self, user_id: int) -> tuple[WeeklyAssessmentData, str]:
        with self.session_factory() as s:
            row = s.execute(
                select(PendingAssessment).where(PendingAssessment.user_id == user_id)
            ).scalar_one_or_none()
            if row is not None:
                return WeeklyAssessmentData.from_dict(row.payload), row.status
        last_week = self._last_assessed_week(user_id)
        if last_week is not None and self._already_decided(user_id, last_week):
            raise AlreadyDecided(f"assessment week {last_week} already has a decision", assessment_week=last_week)
        raise NoPendingAssessment(f"user {user_id} has no assessment awaiting a decision", user_id=user_id)

    def apply_decision(self, user_id: int, choice: Union[str, UserDecision, None]) -> ProgressionOutcome:
        user_decision = parse_choice(choice)
        pending, status = self._load_pending_row(user_id)
        state = self.plan_state(user_id)
        resolution = self.coordinator.resolve(
            pending,
            state,
            user_decision,
            pending_status=status,
            already_decided=self._already_decided(user_id, pending.assessment_week),
        )
        outcome = self._persist(user_id, pending, resolution, write_history=True)

        # unconfirmed escalations get their brief from the worker once the write replays
        if resolution.escalated and outcome.confirmed:
            self.queue_coach_brief(user_id, pending.assessment_week)
        return outcome

    def resolve_escalation(self, user_id: int, transition: str, note: Optional[str] = None) -> ProgressionOutcome:
        pending, status = self._load_pending_row(user_id)
        state = self.plan_state(user_id)
        resolution = self.coordinator.resolve_escalation(pending, state, transition, pending_status=status, note=note)
        return self._persist(user_id, pending, resolution, write_history=False)

    def _persist(
        self,
        user_id: int,
        pending: WeeklyAssessmentData,
        resolution: Resolution,
        *,
        write_history: bool,
    ) -> ProgressionOutcome:
        write = build_write(user_id, pending, resolution, now=self.clock(), write_history=write_history)
        result = self.writer.commit(write)
        state = resolution.new_state
        transition = resolution.decision.type if resolution.decision else "escalated"

        if result.confirmed:
            message = "Decision saved"
        else:
            message = "Decision queued; it will be confirmed once saved"
        if resolution.escalated:
            message = f"{message}. A coach will review this week"

        print(
            f"[decision] user {user_id} calendar week {pending.assessment_week}: "
            f"{resolution.user_decision} -> {transition} (week {state.week}, phase {state.phase}, "
            f"confirmed={result.confirmed})"
        )
        record_audit(self.session_factory, user_id, "progression_decision",
                     "ok" if result.confirmed else "queued", {
                         "assessment_week": pending.assessment_week,
                         "user_decision": resolution.user_decision,
                         "transition": transition,
                         "job_id": result.job_id,
                     })
        return ProgressionOutcome(
            success=True,
            decision=resolution.decision,
            user_decision=resolution.user_decision,
            updated_week=state.week,
            updated_phase=state.phase,
            updated_targets=dict(state.targets),
            confirmed=result.confirmed,
            job_id=result.job_id,
            message=message,
        )

    def queue_coach_brief(self, user_id: int, assessment_week: int) -> Optional[int]:
        try:
            return self.queue.enqueue(COACH_CONSULTATION, {"user_id": user_id, "assessment_week": assessment_week},
                                      user_id=user_id)
        except SQLAlchemyError as e:
            print(f"[decision] WARN: could not queue coach brief for user {user_id}: {e}")
            return None

    def coach_brief(self, user_id: int) -> dict[str, Any]:
        """Worker side of a coach consultation: draft the brief for the escalated week."""
        pending = self.pending_assessment(user_id)
        if pending is None or pending.status != "escalated":
            return {"skipped": True, "reason": "no escalated assessment"}
        advisor = self.advisor or CoachBriefAdvisor()
        brief = advisor.brief(pending)
        record_audit(self.session_factory, user_id, "coach_brief", "ok",
                     {"assessment_week": pending.assessment_week, **brief})
        return {"assessment_week": pending.assessment_week, **brief}

    # ──────────────────────────────────────────────────────────────────────────
    # History + write confirmation
    # ──────────────────────────────────────────────────────────────────────────

    def history(self, user_id: int, limit: int = 52) -> list[dict[str, Any]]:
        with self.session_factory() as s:
            rows = s.execute(
                select(WeeklyPerformanceHistory)
                .where(WeeklyPerformanceHistory.user_id == user_id)
                .order_by(WeeklyPerformanceHistory.assessment_week.desc())
                .limit(limit)
            ).scalars().all()
            return [history_snapshot(r) for r in rows]

    def progression_stats(self, user_id: int) -> dict[str, Any]:
        """
        Summary across every decided week: weeks completed, mean weekly score,
        share of weeks that advanced, strongest pillar overall, and whether the
        last three weeks beat the first three by more than five points.
        """
        with self.session_factory() as s:
            self._load_plan(s, user_id)
            rows = s.execute(
                select(WeeklyPerformanceHistory)
                .where(WeeklyPerformanceHistory.user_id == user_id)
                .order_by(WeeklyPerformanceHistory.assessment_week.asc())
            ).scalars().all()
            weeks = [history_snapshot(r) for r in rows]

        total = len(weeks)
        if total == 0:
            return {
                "user_id": user_id,
                "total_weeks_completed": 0,
                "average_weekly_score": 0,
                "advancement_rate": 0,
                "strongest_pillar": PILLARS[0],
                "improvement_trend": "stable",
            }

        scores = [float(w["overall_achievement_avg"] or 0) for w in weeks]
        advanced = sum(1 for w in weeks if w["applied_transition"] == "advance")
        totals = {p: sum(float(w["pillar_averages"][p] or 0) for w in weeks) for p in PILLARS}

        trend = "stable"
        if total >= 6:
            first, last = sum(scores[:3]) / 3, sum(scores[-3:]) / 3
            if last > first + 5:
                trend = "improving"
            elif last < first - 5:
                trend = "declining"

        return {
            "user_id": user_id,
            "total_weeks_completed": total,
            "average_weekly_score": round(sum(scores) / total),
            "advancement_rate": round(advanced / total * 100),
            "strongest_pillar": max(PILLARS, key=lambda p: totals[p]),
            "improvement_trend": trend,
        }

    def confirmation_status(self, job_id: int) -> dict[str, Any]:
        job = self.queue.get(job_id)
        state = {"done": "confirmed", "error": "failed"}.get(job["status"], "pending_confirmation")
        return {**job, "confirmation": state}

    def retry_write(self, job_id: int) -> dict[str, Any]:
        job = self.queue.retry(job_id)
        return {**job, "confirmation": "pending_confirmation" if job["status"] != "done" else "confirmed"}
