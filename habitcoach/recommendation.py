from __future__ import annotations

from typing import Optional, Union

from .assessment_types import (
    PILLARS,
    ConsistencyMetrics,
    InsufficientData,
    ProgressionAssessment,
    Recommendation,
    TargetModifications,
    Trend,
    WeeklyPerformance,
    pillar_label,
)

# ──────────────────────────────────────────────────────────────────────────────
# Thresholds
# ──────────────────────────────────────────────────────────────────────────────

RESET_AVERAGE = 50.0
RESET_CONSISTENCY = 40.0
ADVANCE_AVERAGE = 85.0
ADVANCE_CONSISTENCY = 80.0

CONFIDENCE_BASE = 60.0
CONFIDENCE_DISTANCE_POINTS = 25.0
CONFIDENCE_DISTANCE_SCALE = 17.5   # half the gap between the two average thresholds
CONFIDENCE_DATA_POINTS = 15.0

EXTEND_TARGET_FLOOR = 0.7
MAX_WEEK_EXTENSIONS = 5

# Never propose a daily target below these
MINIMUM_TARGETS: dict[str, float] = {"steps": 3000, "water": 30, "sleep": 5.0, "mood": 1}


def round_target(pillar: str, value: float) -> float:
    if pillar == "sleep":
        return round(value, 1)
    return int(round(value))


def decide(average: float, consistency_rate: float) -> str:
    if average < RESET_AVERAGE or consistency_rate < RESET_CONSISTENCY:
        return Recommendation.RESET.value
    if average >= ADVANCE_AVERAGE and consistency_rate >= ADVANCE_CONSISTENCY:
        return Recommendation.ADVANCE.value
    return Recommendation.EXTEND.value


def confidence_score(average: float, tracking_days: int) -> int:
    distance = min(abs(average - RESET_AVERAGE), abs(average - ADVANCE_AVERAGE))
    distance_points = CONFIDENCE_DISTANCE_POINTS * min(distance / CONFIDENCE_DISTANCE_SCALE, 1.0)
    data_points = CONFIDENCE_DATA_POINTS * min(max(tracking_days, 0) / 7.0, 1.0)
    total = CONFIDENCE_BASE + distance_points + data_points
    return int(round(min(max(total, 0.0), 100.0)))


class RecommendationEngine:
    """
    Maps a graded week and its consistency metrics to advance / extend / reset.

    Pure: no I/O, no clock, no randomness. The same inputs always give the same
    recommendation, confidence and reasoning order. `current_targets` is only
    consulted when the week's own records carry no target for the focus pillar;
    `week_extensions` only feeds the risk factors.
    """

    def recommend(
        self,
        performance: WeeklyPerformance,
        consistency: ConsistencyMetrics,
        current_targets: Optional[dict[str, float]] = None,
        week_extensions: int = 0,
    ) -> Union[ProgressionAssessment, InsufficientData]:
        if performance.total_tracking_days == 0:
            return InsufficientData(
                week=performance.week,
                phase=performance.phase,
                start_date=performance.start_date,
                end_date=performance.end_date,
                reasoning=[
                    f"No habit data was tracked between {performance.start_date.isoformat()} "
                    f"and {performance.end_date.isoformat()}",
                    "Keep logging your daily habits so next week can be assessed",
                ],
            )

        recommendation = decide(performance.average_achievement, consistency.consistency_rate)
        modifications = None
        if recommendation == Recommendation.EXTEND.value:
            modifications = self.target_modifications(performance, current_targets)

        return ProgressionAssessment(
            recommendation=recommendation,
            confidence=confidence_score(performance.average_achievement, performance.total_tracking_days),
            reasoning=self.reasoning(performance, consistency, recommendation),
            modifications=modifications,
            risk_factors=self.risk_factors(performance, consistency, week_extensions),
            opportunities=self.opportunities(performance, consistency),
        )

    # ── reasoning ────────────────────────────────────────────────────────────

    @staticmethod
    def reasoning(performance: WeeklyPerformance, consistency: ConsistencyMetrics, recommendation: str) -> list[str]:
        avg = performance.average_achievement
        days_line = (
            f"Consistent for {consistency.consistent_days} out of {consistency.total_days} tracked days "
            f"({consistency.consistency_rate:.0f}%)"
        )
        out: list[str] = []

        if recommendation == Recommendation.ADVANCE.value:
            out.append(f"Achieved {avg:.0f}% average performance (target: {ADVANCE_AVERAGE:.0f}%)")
            out.append(days_line)
            if consistency.current_streak > 0:
                out.append(f"Currently on a {consistency.current_streak}-day streak")
            out.append("Ready for the next challenge level")
        elif recommendation == Recommendation.EXTEND.value:
            out.append(f"Achieved {avg:.0f}% average performance")
            out.append(days_line)
            weakest = performance.pillar(performance.weakest_pillar)
            out.append(
                f"Focus area: {pillar_label(weakest.pillar)} averaged "
                f"{weakest.average_achievement:.0f}% and needs attention"
            )
            out.append("Building a strong foundation before advancing")
        else:
            if avg < RESET_AVERAGE:
                out.append(f"Performance at {avg:.0f}% needs improvement (below {RESET_AVERAGE:.0f}%)")
            if consistency.consistency_rate < RESET_CONSISTENCY:
                out.append(
                    f"Consistency at {consistency.consistency_rate:.0f}% is below "
                    f"the {RESET_CONSISTENCY:.0f}% needed to hold this week"
                )
            out.append("Rebuilding foundation will lead to better long-term success")
            out.append("Previous week targets may be more appropriate right now")

        low = [p for p in performance.pillar_breakdown if p.average_achievement < RESET_AVERAGE]
        if low and recommendation != Recommendation.ADVANCE.value:
            names = ", ".join(f"{pillar_label(p.pillar)} ({p.average_achievement:.0f}%)" for p in low)
            out.append(f"Below 50%: {names}")
        if performance.total_tracking_days < 7:
            out.append(f"Only {performance.total_tracking_days} of 7 days were tracked")
        return out

    # ── extend: ease the weakest pillar ──────────────────────────────────────

    @staticmethod
    def target_modifications(
        performance: WeeklyPerformance,
        current_targets: Optional[dict[str, float]] = None,
    ) -> Optional[TargetModifications]:
        focus = performance.weakest_pillar
        pillar = performance.pillar(focus)
        original = pillar.average_target
        if not original:
            original = (current_targets or {}).get(focus)
        if not original:
            return None
        original = float(original)

        achieved = pillar.average_actual or 0.0
        proposed = max(achieved, EXTEND_TARGET_FLOOR * original, MINIMUM_TARGETS.get(focus, 0))
        proposed = round_target(focus, min(proposed, original))

        return TargetModifications(
            focus_area=focus,
            target_value=proposed,
            original_target=round_target(focus, original),
            adjustment_reason=(
                f"{pillar_label(focus)} averaged {pillar.average_achievement:.0f}% of target; "
                f"easing the daily target to build consistency"
            ),
        )

    # ── risks / opportunities ────────────────────────────────────────────────

    @staticmethod
    def risk_factors(
        performance: WeeklyPerformance,
        consistency: ConsistencyMetrics,
        week_extensions: int = 0,
    ) -> list[str]:
        risks: list[str] = []
        if consistency.consistency_rate < 50:
            risks.append("Low consistency rate may indicate habit formation challenges")
        if consistency.weekend_consistency < 60:
            risks.append("Weekend performance drops significantly")
        if performance.average_achievement < 60 and consistency.current_streak == 0:
            risks.append("No current momentum - may need additional support")
        struggling = [p for p in performance.pillar_breakdown if p.average_achievement < 50]
        if len(struggling) >= 2:
            risks.append("Multiple health areas need attention simultaneously")
        for p in performance.pillar_breakdown:
            if p.consistent_days == 0:
                risks.append(f"{pillar_label(p.pillar)} did not reach 80% on any tracked day")
        if week_extensions >= MAX_WEEK_EXTENSIONS:
            risks.append(f"This week has already been extended {week_extensions} times")
        return risks

    @staticmethod
    def opportunities(performance: WeeklyPerformance, consistency: ConsistencyMetrics) -> list[str]:
        opportunities: list[str] = []
        strongest = performance.pillar(performance.strongest_pillar)
        if strongest.average_achievement >= 85:
            opportunities.append(
                f"Excellent {pillar_label(strongest.pillar)} habits can be a foundation for other areas"
            )
        if consistency.longest_streak >= 5 and consistency.current_streak < 3:
            opportunities.append("Has demonstrated ability to maintain streaks - can rebuild momentum")
        trends = consistency.pillar_trends or {p.pillar: p.trend for p in performance.pillar_breakdown}
        improving = [k for k in PILLARS if trends.get(k) == Trend.IMPROVING.value]
        if len(improving) >= 2:
            opportunities.append("Multiple areas showing improvement trends")
        has_weekend = any(d.weekday() >= 5 for d in performance.tracked_dates)
        if has_weekend and consistency.weekend_consistency >= 90:
            opportunities.append("Strong weekend habits show good lifestyle integration")
        return opportunities

    # ── programme bounds ─────────────────────────────────────────────────────

    @staticmethod
    def validate_recommendation(recommendation: str, current_week: int, total_weeks: int) -> tuple[bool, str]:
        if recommendation == Recommendation.ADVANCE.value and current_week >= total_weeks:
            return False, f"Week {current_week} is the final week of the programme"
        if recommendation == Recommendation.RESET.value and current_week <= 1:
            return True, "Already on week 1; targets will be reloaded for week 1"
        return True, ""
