from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta
from typing import Iterable

from .assessment_types import (
    CONSISTENT_DAY_THRESHOLD,
    ConsistencyMetrics,
    DailyPillarRecord,
    PillarPerformance,
    Trend,
    WeeklyPerformance,
)
from .performance import daily_overall_scores

TREND_BAND = 5.0
WEEKEND_DEFAULT = 100.0


def classify_trend(first_half: list[float], second_half: list[float]) -> str:
    if not first_half or not second_half:
        return Trend.STABLE.value
    delta = sum(second_half) / len(second_half) - sum(first_half) / len(first_half)
    if delta > TREND_BAND:
        return Trend.IMPROVING.value
    if delta < -TREND_BAND:
        return Trend.DECLINING.value
    return Trend.STABLE.value


def streaks(scores: dict[date, float], until: date | None = None) -> tuple[int, int]:
    """
    (current, longest) runs of consecutive consistent days.
    An untracked calendar day breaks a run the same way a low day does.
    """
    days = sorted(d for d in scores if until is None or d <= until)
    if not days:
        return 0, 0

    longest = run = 0
    prev: date | None = None
    for day in days:
        ok = scores[day] >= CONSISTENT_DAY_THRESHOLD
        if ok and prev is not None and (day - prev).days == 1 and run > 0:
            run += 1
        elif ok:
            run = 1
        else:
            run = 0
        longest = max(longest, run)
        prev = day

    current = 0
    cursor = days[-1]
    while cursor in scores and scores[cursor] >= CONSISTENT_DAY_THRESHOLD:
        current += 1
        cursor -= timedelta(days=1)
    return current, longest


class ConsistencyAnalyzer:
    """Streaks, weekend split and per-pillar trends for an aggregated week."""

    def analyze(
        self,
        performance: WeeklyPerformance,
        history: Iterable[DailyPillarRecord],
    ) -> ConsistencyMetrics:
        total = performance.total_tracking_days
        consistent = performance.consistency_days
        rate = round(consistent / total * 100, 2) if total > 0 else 0.0

        scores = daily_overall_scores(r for r in history if r.day <= performance.end_date)
        # the window itself is authoritative even if history was truncated by the caller
        for day, value in zip(performance.tracked_dates, performance.daily_overall):
            scores[day] = value
        current, longest = streaks(scores, until=performance.end_date)

        return ConsistencyMetrics(
            total_days=total,
            consistent_days=consistent,
            consistency_rate=min(rate, 100.0),
            current_streak=current,
            longest_streak=longest,
            weekend_consistency=self.weekend_consistency(performance),
            pillar_trends={p.pillar: self.pillar_trend(performance, p) for p in performance.pillar_breakdown},
        )

    @staticmethod
    def weekend_consistency(performance: WeeklyPerformance) -> float:
        weekend = [
            value
            for day, value in zip(performance.tracked_dates, performance.daily_overall)
            if day.weekday() >= 5
        ]
        if not weekend:
            return WEEKEND_DEFAULT
        return round(sum(weekend) / len(weekend), 2)

    @staticmethod
    def pillar_trend(performance: WeeklyPerformance, pillar: PillarPerformance) -> str:
        # days 1-3 against days 5-7 of the window; day 4 sits out
        first: list[float] = []
        second: list[float] = []
        for day, value in zip(performance.tracked_dates, pillar.daily_values):
            offset = (day - performance.start_date).days
            if 0 <= offset <= 2:
                first.append(value)
            elif 4 <= offset <= 6:
                second.append(value)
        return classify_trend(first, second)

    @staticmethod
    def with_trends(performance: WeeklyPerformance, metrics: ConsistencyMetrics) -> WeeklyPerformance:
        """Copy of the week with each pillar's trend filled from the metrics."""
        breakdown = [
            replace(p, trend=metrics.pillar_trends.get(p.pillar, p.trend))
            for p in performance.pillar_breakdown
        ]
        return replace(performance, pillar_breakdown=breakdown)

    @staticmethod
    def pillar_consistency_rate(pillar: PillarPerformance) -> float:
        tracked = len(pillar.daily_values)
        if tracked == 0:
            return 0.0
        return round(pillar.consistent_days / tracked * 100, 2)

    @staticmethod
    def identify_patterns(metrics: ConsistencyMetrics) -> dict[str, list[str]]:
        strengths: list[str] = []
        weaknesses: list[str] = []
        recommendations: list[str] = []

        if metrics.consistency_rate >= 80:
            strengths.append("Excellent overall consistency")
        elif metrics.consistency_rate >= 60:
            strengths.append("Good consistency with room for improvement")
        else:
            weaknesses.append("Inconsistent daily performance")
            recommendations.append("Focus on building daily habits and routines")

        if metrics.current_streak >= 3:
            strengths.append(f"Strong current streak of {metrics.current_streak} days")
        elif metrics.longest_streak >= 5:
            strengths.append("Has demonstrated ability to maintain streaks")
            recommendations.append("Work on rebuilding your previous streak momentum")
        else:
            weaknesses.append("Difficulty maintaining consistent streaks")
            recommendations.append("Start with small, achievable daily goals")

        if metrics.weekend_consistency >= 90:
            strengths.append("Maintains consistency on weekends")
        elif metrics.weekend_consistency < 70:
            weaknesses.append("Weekend performance drops significantly")
            recommendations.append("Plan weekend routines to maintain healthy habits")

        return {"strengths": strengths, "weaknesses": weaknesses, "recommendations": recommendations}
