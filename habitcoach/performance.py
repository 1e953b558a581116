from __future__ import annotations

import math
from collections import defaultdict
from datetime import date, timedelta
from typing import Iterable, Optional

from .assessment_types import (
    PILLARS,
    CONSISTENT_DAY_THRESHOLD,
    DailyPillarRecord,
    Grade,
    PillarPerformance,
    Trend,
    WeeklyPerformance,
)

WINDOW_DAYS = 7
MASTERY_AVERAGE = 85.0
MASTERY_CONSISTENT_SHARE = 0.8
STRUGGLE_AVERAGE = 60.0


def daily_achievement(actual: Optional[float], target: Optional[float]) -> float:
    """actual/target as a percentage in [0, 100]; 0 when there is no usable target."""
    if actual is None or target is None or target <= 0:
        return 0.0
    ratio = float(actual) / float(target)
    return round(min(max(ratio, 0.0), 1.0) * 100, 2)


def _mean(values: list[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def index_by_day(records: Iterable[DailyPillarRecord]) -> dict[date, dict[str, DailyPillarRecord]]:
    """Group records as {day: {pillar: record}}; later duplicates win."""
    by_day: dict[date, dict[str, DailyPillarRecord]] = defaultdict(dict)
    for rec in records:
        if rec.pillar not in PILLARS:
            continue
        by_day[rec.day][rec.pillar] = rec
    return by_day


def _is_tracked(day_records: dict[str, DailyPillarRecord]) -> bool:
    return any(rec.actual is not None for rec in day_records.values())


def daily_overall_scores(records: Iterable[DailyPillarRecord]) -> dict[date, float]:
    """
    Mean achievement across all four pillars for every tracked day.
    A pillar without data on a tracked day counts as 0 for that day.
    Untracked days are absent from the result.
    """
    scores: dict[date, float] = {}
    for day, day_records in index_by_day(records).items():
        if not _is_tracked(day_records):
            continue
        values = []
        for pillar in PILLARS:
            rec = day_records.get(pillar)
            if rec is None or rec.actual is None:
                values.append(0.0)
            else:
                values.append(daily_achievement(rec.actual, rec.target))
        scores[day] = round(_mean(values), 2)
    return scores


class PerformanceAggregator:
    """Turns seven days of per-pillar records into weekly achievement statistics."""

    def aggregate_week(
        self,
        records: Iterable[DailyPillarRecord],
        start_date: date,
        week: int,
        phase: int,
    ) -> WeeklyPerformance:
        end_date = start_date + timedelta(days=WINDOW_DAYS - 1)
        in_window = [r for r in records if start_date <= r.day <= end_date]
        by_day = index_by_day(in_window)
        tracked_dates = sorted(d for d, recs in by_day.items() if _is_tracked(recs))

        breakdown = [self._pillar_performance(pillar, by_day, tracked_dates) for pillar in PILLARS]

        daily_overall: list[float] = []
        for idx in range(len(tracked_dates)):
            daily_overall.append(round(_mean([p.daily_values[idx] for p in breakdown]), 2))
        consistency_days = sum(1 for v in daily_overall if v >= CONSISTENT_DAY_THRESHOLD)

        averages = {p.pillar: p.average_achievement for p in breakdown}
        overall = round(_mean(list(averages.values())), 2)
        # max/min return the first extreme, so PILLARS order breaks ties
        strongest = max(PILLARS, key=lambda p: averages[p])
        weakest = min(PILLARS, key=lambda p: averages[p])

        return WeeklyPerformance(
            week=week,
            phase=phase,
            start_date=start_date,
            end_date=end_date,
            average_achievement=overall,
            consistency_days=consistency_days,
            total_tracking_days=len(tracked_dates),
            strongest_pillar=strongest,
            weakest_pillar=weakest,
            overall_grade=self.grade(overall, consistency_days, len(tracked_dates)),
            pillar_breakdown=breakdown,
            tracked_dates=tracked_dates,
            daily_overall=daily_overall,
        )

    @staticmethod
    def grade(average: float, consistent_days: int, tracking_days: int) -> str:
        if average >= MASTERY_AVERAGE and consistent_days >= math.ceil(MASTERY_CONSISTENT_SHARE * tracking_days):
            return Grade.MASTERY.value
        if average < STRUGGLE_AVERAGE:
            return Grade.STRUGGLE.value
        return Grade.PROGRESS.value

    @staticmethod
    def _pillar_performance(
        pillar: str,
        by_day: dict[date, dict[str, DailyPillarRecord]],
        tracked_dates: list[date],
    ) -> PillarPerformance:
        daily_values: list[float] = []
        with_data: list[float] = []
        actuals: list[float] = []
        targets: list[float] = []
        for day in tracked_dates:
            rec = by_day[day].get(pillar)
            if rec is None or rec.actual is None:
                daily_values.append(0.0)
                continue
            value = daily_achievement(rec.actual, rec.target)
            daily_values.append(value)
            with_data.append(value)
            actuals.append(float(rec.actual))
            if rec.target is not None and rec.target > 0:
                targets.append(float(rec.target))

        return PillarPerformance(
            pillar=pillar,
            average_achievement=round(_mean(with_data), 2),
            consistent_days=sum(1 for v in with_data if v >= CONSISTENT_DAY_THRESHOLD),
            trend=Trend.STABLE.value,
            daily_values=daily_values,
            average_actual=round(_mean(actuals), 2) if actuals else None,
            average_target=round(_mean(targets), 2) if targets else None,
        )
