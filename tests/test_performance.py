"""
Tests for weekly performance aggregation.

Covers the per-day achievement formula, which days count as tracked,
missing-pillar handling, the overall grade and strongest/weakest selection.
"""
from datetime import timedelta

import pytest

from habitcoach.assessment_types import PILLARS, DailyPillarRecord
from habitcoach.performance import PerformanceAggregator, daily_achievement, daily_overall_scores

from factories import MASTERY_WEEK, MIDDLING_WEEK, PROGRAMME_START, records_from_percentages, uniform_week


@pytest.fixture
def aggregator():
    return PerformanceAggregator()


class TestDailyAchievement:
    """actual/target as a capped percentage"""

    def test_ratio_is_expressed_as_percentage(self):
        assert daily_achievement(7500, 10000) == 75.0

    def test_overshoot_is_capped_at_100(self):
        assert daily_achievement(15000, 10000) == 100.0

    @pytest.mark.parametrize("target", [0, None, -5])
    def test_missing_or_zero_target_scores_zero(self, target):
        assert daily_achievement(5000, target) == 0.0

    def test_missing_actual_scores_zero(self):
        assert daily_achievement(None, 10000) == 0.0


class TestAggregateWeek:
    """Aggregating seven days of records"""

    def test_strong_consistent_week_is_mastery(self, aggregator):
        """Pillar averages 90/88/82/100 with six consistent days grade as mastery."""
        records = records_from_percentages(PROGRAMME_START, MASTERY_WEEK)
        perf = aggregator.aggregate_week(records, PROGRAMME_START, week=1, phase=1)

        averages = {p.pillar: p.average_achievement for p in perf.pillar_breakdown}
        assert averages == {"steps": 90.0, "water": 88.0, "sleep": 82.0, "mood": 100.0}
        assert perf.average_achievement == 90.0
        assert perf.total_tracking_days == 7
        assert perf.consistency_days == 6
        assert perf.overall_grade == "mastery"
        assert perf.strongest_pillar == "mood"
        assert perf.weakest_pillar == "sleep"

    def test_window_covers_exactly_seven_days(self, aggregator):
        records = records_from_percentages(PROGRAMME_START - timedelta(days=2), {"steps": [100] * 11})
        perf = aggregator.aggregate_week(records, PROGRAMME_START, week=1, phase=1)

        assert perf.end_date == PROGRAMME_START + timedelta(days=6)
        assert perf.total_tracking_days == 7
        assert perf.tracked_dates[0] == PROGRAMME_START

    def test_untracked_days_are_excluded_from_denominators(self, aggregator):
        week = {p: [100, 100, None, None, None, None, None] for p in PILLARS}
        perf = aggregator.aggregate_week(records_from_percentages(PROGRAMME_START, week), PROGRAMME_START, 1, 1)

        assert perf.total_tracking_days == 2
        assert perf.consistency_days == 2
        assert perf.average_achievement == 100.0

    def test_missing_pillar_counts_as_zero_for_the_day(self, aggregator):
        """A tracked day with only steps logged scores 25% overall."""
        records = records_from_percentages(PROGRAMME_START, {"steps": [100] * 7})
        perf = aggregator.aggregate_week(records, PROGRAMME_START, 1, 1)

        assert perf.daily_overall == [25.0] * 7
        assert perf.consistency_days == 0
        water = perf.pillar("water")
        assert water.daily_values == [0.0] * 7
        assert water.average_achievement == 0.0
        assert water.average_actual is None

    def test_every_pillar_is_always_present(self, aggregator):
        perf = aggregator.aggregate_week([], PROGRAMME_START, 1, 1)

        assert [p.pillar for p in perf.pillar_breakdown] == list(PILLARS)
        assert perf.total_tracking_days == 0
        assert perf.average_achievement == 0.0

    def test_null_actual_does_not_make_a_day_tracked(self, aggregator):
        records = [DailyPillarRecord(day=PROGRAMME_START, pillar="steps", actual=None, target=10000)]
        perf = aggregator.aggregate_week(records, PROGRAMME_START, 1, 1)

        assert perf.total_tracking_days == 0

    def test_pillar_average_uses_only_days_with_data(self, aggregator):
        week = {
            "steps": [80] * 7,
            "water": [80] * 7,
            "sleep": [80] * 7,
            "mood": [100, None, None, None, None, None, None],
        }
        perf = aggregator.aggregate_week(records_from_percentages(PROGRAMME_START, week), PROGRAMME_START, 1, 1)

        assert perf.pillar("mood").average_achievement == 100.0
        assert perf.pillar("mood").daily_values == [100.0] + [0.0] * 6

    def test_actual_and_target_means_are_reported(self, aggregator):
        perf = aggregator.aggregate_week(
            records_from_percentages(PROGRAMME_START, MIDDLING_WEEK), PROGRAMME_START, 1, 1
        )
        sleep = perf.pillar("sleep")

        assert sleep.average_target == 8.0
        assert sleep.average_actual == pytest.approx(4.4)

    def test_averages_stay_within_bounds(self, aggregator):
        week = {p: [250, 0, 100, 40, 300, 90, 10] for p in PILLARS}
        perf = aggregator.aggregate_week(records_from_percentages(PROGRAMME_START, week), PROGRAMME_START, 1, 1)

        assert 0 <= perf.average_achievement <= 100
        for p in perf.pillar_breakdown:
            assert all(0 <= v <= 100 for v in p.daily_values)


class TestGrade:
    """mastery / progress / struggle"""

    def test_mastery_needs_enough_consistent_days(self):
        assert PerformanceAggregator.grade(90, 6, 7) == "mastery"
        assert PerformanceAggregator.grade(90, 5, 7) == "progress"

    def test_struggle_below_sixty(self):
        assert PerformanceAggregator.grade(59.99, 0, 7) == "struggle"

    def test_progress_in_between(self):
        assert PerformanceAggregator.grade(70, 7, 7) == "progress"


class TestStrongestWeakest:
    """Ties resolve in steps > water > sleep > mood order"""

    def test_ties_prefer_earlier_pillar(self, aggregator):
        perf = aggregator.aggregate_week(
            records_from_percentages(PROGRAMME_START, uniform_week(70)), PROGRAMME_START, 1, 1
        )

        assert perf.strongest_pillar == "steps"
        assert perf.weakest_pillar == "steps"

    def test_partial_tie_on_weakest(self, aggregator):
        week = {"steps": [90] * 7, "water": [50] * 7, "sleep": [50] * 7, "mood": [90] * 7}
        perf = aggregator.aggregate_week(records_from_percentages(PROGRAMME_START, week), PROGRAMME_START, 1, 1)

        assert perf.weakest_pillar == "water"
        assert perf.strongest_pillar == "steps"


class TestDailyOverallScores:
    """Day-level means used for streaks"""

    def test_only_tracked_days_are_returned(self):
        records = records_from_percentages(PROGRAMME_START, {"steps": [100, None, 100]})
        scores = daily_overall_scores(records)

        assert sorted(scores) == [PROGRAMME_START, PROGRAMME_START + timedelta(days=2)]
        assert scores[PROGRAMME_START] == 25.0
