from __future__ import annotations

from datetime import date, datetime
from typing import Callable, Optional

from sqlalchemy import select

from .assessment_types import PILLARS, DailyPillarRecord
from .db import SessionLocal
from .debug_utils import debug_log
from .errors import PastDayLocked
from .models import DailyPillarMetric, PlanProgress


class HabitDataStore:
    """DB-backed daily habit records (one row per user, day and pillar)."""

    def __init__(self, session_factory: Callable = SessionLocal, today: Optional[Callable[[], date]] = None):
        self.session_factory = session_factory
        self._today = today or (lambda: datetime.utcnow().date())

    def records_for_range(self, user_id: int, start: date, end: date) -> list[DailyPillarRecord]:
        with self.session_factory() as s:
            rows = s.execute(
                select(DailyPillarMetric)
                .where(
                    DailyPillarMetric.user_id == user_id,
                    DailyPillarMetric.day >= start,
                    DailyPillarMetric.day <= end,
                )
                .order_by(DailyPillarMetric.day.asc(), DailyPillarMetric.pillar.asc())
            ).scalars().all()
            return [_to_record(r) for r in rows]

    def history_until(self, user_id: int, end: date) -> list[DailyPillarRecord]:
        """Every record up to and including `end`, oldest first."""
        with self.session_factory() as s:
            rows = s.execute(
                select(DailyPillarMetric)
                .where(DailyPillarMetric.user_id == user_id, DailyPillarMetric.day <= end)
                .order_by(DailyPillarMetric.day.asc(), DailyPillarMetric.pillar.asc())
            ).scalars().all()
            return [_to_record(r) for r in rows]

    def log_daily_value(
        self,
        user_id: int,
        day: date,
        pillar: str,
        actual: Optional[float],
        target: Optional[float] = None,
        *,
        backfill: bool = False,
        source: str = "manual",
    ) -> DailyPillarRecord:
        """
        Upsert today's value for a pillar. Past days are closed unless the write
        is an explicit backfill (e.g. a device sync catching up). When no target
        is given the plan's current target for the pillar is stamped on the row.
        """
        if pillar not in PILLARS:
            raise ValueError(f"unknown pillar {pillar!r}; expected one of {', '.join(PILLARS)}")
        if actual is not None and actual < 0:
            raise ValueError("actual must not be negative")
        if day < self._today() and not backfill:
            raise PastDayLocked(f"{day.isoformat()} has passed and can no longer be edited", day=day.isoformat())

        with self.session_factory() as s:
            if target is None:
                plan = s.execute(select(PlanProgress).where(PlanProgress.user_id == user_id)).scalar_one_or_none()
                if plan is not None:
                    target = (plan.current_targets or {}).get(pillar)
            row = s.execute(
                select(DailyPillarMetric).where(
                    DailyPillarMetric.user_id == user_id,
                    DailyPillarMetric.day == day,
                    DailyPillarMetric.pillar == pillar,
                )
            ).scalar_one_or_none()
            if row is None:
                row = DailyPillarMetric(user_id=user_id, day=day, pillar=pillar)
            row.actual = actual
            row.target = target
            row.source = "backfill" if backfill and source == "manual" else source
            s.add(row)
            s.commit()
            s.refresh(row)
            debug_log("daily value logged", {"user_id": user_id, "day": day, "pillar": pillar,
                                             "actual": actual, "target": target}, tag="habit-data")
            return _to_record(row)


def _to_record(row: DailyPillarMetric) -> DailyPillarRecord:
    return DailyPillarRecord(day=row.day, pillar=row.pillar, actual=row.actual, target=row.target)
