"""Shared builders for test data (plain helpers, no fixtures)."""
from datetime import date, datetime, timedelta

from habitcoach.assessment_types import (
    PILLARS,
    ConsistencyMetrics,
    DailyPillarRecord,
    PillarPerformance,
    WeeklyPerformance,
)

# Round numbers so a percentage maps straight onto an actual value.
TARGETS = {"steps": 10000, "water": 100, "sleep": 8.0, "mood": 1}

# Monday 2026-03-09; the first assessment falls due on Monday 2026-03-16.
PROGRAMME_START = date(2026, 3, 9)
FIRST_DUE = datetime(2026, 3, 16, 9, 0)

# Strong, consistent week: pillar averages 90 / 88 / 82 / 100 with the last day under 80.
MASTERY_WEEK = {
    "steps": [95, 95, 95, 95, 95, 95, 60],
    "water": [91, 91, 91, 91, 91, 91, 70],
    "sleep": [85, 85, 85, 85, 85, 85, 64],
    "mood": [100] * 7,
}

# Middling week: averages 80 / 70 / 55 / 75 (overall 70), four of seven days consistent.
MIDDLING_WEEK = {
    "steps": [95, 95, 95, 95, 60, 60, 60],
    "water": [85, 85, 85, 85, 50, 50, 50],
    "sleep": [70, 70, 70, 70, 35, 35, 35],
    "mood": [100, 100, 100, 100, 42, 42, 41],
}


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: int = 0, hours: int = 0) -> None:
        self.now = self.now + timedelta(days=days, hours=hours)


def records_from_percentages(start: date, by_pillar: dict, targets: dict = None) -> list:
    """
    Build DailyPillarRecords from per-day percentages.
    `by_pillar` maps pillar -> list of percentages (None = no data that day).
    """
    targets = targets or TARGETS
    out = []
    for pillar, values in by_pillar.items():
        for offset, pct in enumerate(values):
            if pct is None:
                continue
            out.append(
                DailyPillarRecord(
                    day=start + timedelta(days=offset),
                    pillar=pillar,
                    actual=targets[pillar] * pct / 100.0,
                    target=targets[pillar],
                )
            )
    return out


def uniform_week(pct: float) -> dict:
    return {p: [pct] * 7 for p in PILLARS}


def performance_from_averages(
    averages: dict,
    *,
    consistency_days: int = 0,
    tracking_days: int = 7,
    start: date = PROGRAMME_START,
    week: int = 1,
    phase: int = 1,
    actuals: dict = None,
    targets: dict = None,
) -> WeeklyPerformance:
    """A hand-built week for engine tests that only care about the summary numbers."""
    targets = targets or TARGETS
    actuals = actuals or {p: targets[p] * averages[p] / 100.0 for p in PILLARS}
    breakdown = [
        PillarPerformance(
            pillar=p,
            average_achievement=averages[p],
            consistent_days=tracking_days if averages[p] >= 80 else 0,
            trend="stable",
            daily_values=[averages[p]] * tracking_days,
            average_actual=actuals[p],
            average_target=targets[p],
        )
        for p in PILLARS
    ]
    overall = round(sum(averages.values()) / 4, 2)
    return WeeklyPerformance(
        week=week,
        phase=phase,
        start_date=start,
        end_date=start + timedelta(days=6),
        average_achievement=overall,
        consistency_days=consistency_days,
        total_tracking_days=tracking_days,
        strongest_pillar=max(PILLARS, key=lambda p: averages[p]),
        weakest_pillar=min(PILLARS, key=lambda p: averages[p]),
        overall_grade="progress",
        pillar_breakdown=breakdown,
        tracked_dates=[start + timedelta(days=i) for i in range(tracking_days)],
        daily_overall=[overall] * tracking_days,
    )


def metrics(rate: float, *, total: int = 7, current: int = 0, longest: int = 0, weekend: float = 100.0,
            trends: dict = None) -> ConsistencyMetrics:
    return ConsistencyMetrics(
        total_days=total,
        consistent_days=round(total * rate / 100),
        consistency_rate=rate,
        current_streak=current,
        longest_streak=longest,
        weekend_consistency=weekend,
        pillar_trends=trends or {p: "stable" for p in PILLARS},
    )
