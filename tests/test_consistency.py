"""
Tests for consistency analysis: rate, streaks over full history,
weekend split and per-pillar trend direction.
"""
from datetime import date, timedelta

import pytest

from habitcoach.assessment_types import PILLARS
from habitcoach.consistency import ConsistencyAnalyzer, classify_trend, streaks
from habitcoach.performance import PerformanceAggregator

from factories import (
    MASTERY_WEEK,
    MIDDLING_WEEK,
    PROGRAMME_START,
    metrics,
    records_from_percentages,
    uniform_week,
)


@pytest.fixture
def analyzer():
    return ConsistencyAnalyzer()


def _week(by_pillar, start=PROGRAMME_START):
    records = records_from_percentages(start, by_pillar)
    return records, PerformanceAggregator().aggregate_week(records, start, 1, 1)


class TestStreaks:
    """current / longest runs of consistent days"""

    def test_current_streak_counts_back_from_latest_day(self):
        d = date(2026, 3, 1)
        scores = {d + timedelta(days=i): v for i, v in enumerate([90, 40, 85, 90, 95])}

        assert streaks(scores) == (3, 3)

    def test_gap_breaks_the_streak(self):
        d = date(2026, 3, 1)
        scores = {d: 90, d + timedelta(days=1): 90, d + timedelta(days=3): 90}

        assert streaks(scores) == (1, 2)

    def test_low_latest_day_means_no_current_streak(self):
        d = date(2026, 3, 1)
        scores = {d + timedelta(days=i): v for i, v in enumerate([90, 90, 90, 90, 90, 10])}

        assert streaks(scores) == (0, 5)

    def test_streaks_respect_the_until_cutoff(self):
        d = date(2026, 3, 1)
        scores = {d + timedelta(days=i): 90 for i in range(10)}

        assert streaks(scores, until=d + timedelta(days=3)) == (4, 4)

    def test_empty_history(self):
        assert streaks({}) == (0, 0)

    def test_repeated_runs_give_identical_results(self):
        d = date(2026, 3, 1)
        scores = {d + timedelta(days=i): v for i, v in enumerate([90, 80, 79, 100, 100])}

        assert streaks(scores) == streaks(dict(scores)) == (2, 2)

    def test_insertion_order_does_not_matter(self):
        d = date(2026, 3, 1)
        ordered = {d + timedelta(days=i): v for i, v in enumerate([90, 90, 10, 90])}
        shuffled = dict(reversed(list(ordered.items())))

        assert streaks(ordered) == streaks(shuffled)


class TestAnalyze:
    """Full metric set for a graded week"""

    def test_mastery_week_metrics(self, analyzer):
        records, perf = _week(MASTERY_WEEK)
        m = analyzer.analyze(perf, records)

        assert m.total_days == 7
        assert m.consistent_days == 6
        assert m.consistency_rate == pytest.approx(85.71)
        assert m.current_streak == 0
        assert m.longest_streak == 6

    def test_longest_streak_uses_earlier_history(self, analyzer):
        earlier = records_from_percentages(PROGRAMME_START - timedelta(days=10), {p: [100] * 10 for p in PILLARS})
        records, perf = _week(MIDDLING_WEEK)
        m = analyzer.analyze(perf, earlier + records)

        # ten days straight before the window, then the first four window days
        assert m.longest_streak == 14
        assert m.current_streak == 0

    def test_history_after_the_window_is_ignored(self, analyzer):
        records, perf = _week(uniform_week(100))
        later = records_from_percentages(PROGRAMME_START + timedelta(days=7), uniform_week(0))
        m = analyzer.analyze(perf, records + later)

        assert m.current_streak == 7

    def test_rate_is_zero_without_tracked_days(self, analyzer):
        _, perf = _week({})
        m = analyzer.analyze(perf, [])

        assert m.consistency_rate == 0.0
        assert m.weekend_consistency == 100.0

    def test_weekend_consistency_uses_saturday_and_sunday(self, analyzer):
        # PROGRAMME_START is a Monday: offsets 5 and 6 are the weekend
        week = {p: [100, 100, 100, 100, 100, 40, 60] for p in PILLARS}
        records, perf = _week(week)

        assert analyzer.analyze(perf, records).weekend_consistency == 50.0

    def test_weekend_defaults_to_100_without_weekend_data(self, analyzer):
        week = {p: [50, 50, 50, 50, 50, None, None] for p in PILLARS}
        records, perf = _week(week)

        assert analyzer.analyze(perf, records).weekend_consistency == 100.0

    def test_rates_stay_within_bounds(self, analyzer):
        records, perf = _week(MIDDLING_WEEK)
        m = analyzer.analyze(perf, records)

        assert 0 <= m.consistency_rate <= 100
        assert 0 <= m.weekend_consistency <= 100


class TestTrends:
    """Days 1-3 against days 5-7"""

    def test_classify_trend_band(self):
        assert classify_trend([50, 50, 50], [56, 56, 56]) == "improving"
        assert classify_trend([50, 50, 50], [44, 44, 44]) == "declining"
        assert classify_trend([50, 50, 50], [55, 55, 55]) == "stable"

    def test_empty_half_is_stable(self):
        assert classify_trend([], [90]) == "stable"

    def test_pillar_trends_from_week(self, analyzer):
        week = {
            "steps": [40, 40, 40, 0, 90, 90, 90],
            "water": [90, 90, 90, 90, 40, 40, 40],
            "sleep": [70] * 7,
            "mood": [70] * 7,
        }
        records, perf = _week(week)
        m = analyzer.analyze(perf, records)

        assert m.pillar_trends == {
            "steps": "improving",
            "water": "declining",
            "sleep": "stable",
            "mood": "stable",
        }

    def test_with_trends_copies_trends_onto_pillars(self, analyzer):
        week = {"steps": [40, 40, 40, 0, 90, 90, 90], "water": [70] * 7, "sleep": [70] * 7, "mood": [70] * 7}
        records, perf = _week(week)
        m = analyzer.analyze(perf, records)
        annotated = analyzer.with_trends(perf, m)

        assert annotated.pillar("steps").trend == "improving"
        assert perf.pillar("steps").trend == "stable"


class TestPatterns:
    """Strengths / weaknesses / recommendations"""

    def test_strong_week(self, analyzer):
        out = analyzer.identify_patterns(metrics(90, current=5, longest=5, weekend=95))

        assert out["strengths"] == [
            "Excellent overall consistency",
            "Strong current streak of 5 days",
            "Maintains consistency on weekends",
        ]
        assert out["weaknesses"] == []

    def test_weak_week(self, analyzer):
        out = analyzer.identify_patterns(metrics(30, current=0, longest=1, weekend=50))

        assert "Inconsistent daily performance" in out["weaknesses"]
        assert "Weekend performance drops significantly" in out["weaknesses"]
        assert "Start with small, achievable daily goals" in out["recommendations"]

    def test_pillar_consistency_rate(self, analyzer):
        _, perf = _week(MIDDLING_WEEK)

        assert analyzer.pillar_consistency_rate(perf.pillar("steps")) == pytest.approx(57.14)
