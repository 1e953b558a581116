"""
Tests for the programme template and the target/phase transitions.
"""
from datetime import timedelta

import pytest

from habitcoach.assessment_types import (
    InsufficientData,
    PlanState,
    ProgressionAssessment,
    ProgressionDecision,
    TargetModifications,
)
from habitcoach.errors import InvalidDecision, ProgrammeComplete, TemplateMissing
from habitcoach.programme_timeline import (
    PHASE_SEQUENCE,
    ProgrammeTemplateProvider,
    assessment_week_for,
    phase_for_week,
    programme_phases,
    week_targets,
)
from habitcoach.targets import TargetPhaseManager

from factories import PROGRAMME_START

PHASE_1_FOCUS = PHASE_SEQUENCE[0][2]
PHASE_2_FOCUS = PHASE_SEQUENCE[1][2]


@pytest.fixture
def manager():
    return TargetPhaseManager(ProgrammeTemplateProvider())


def _state(week, phase=None, focus=None, extensions=0, targets=None):
    phase = phase or phase_for_week(week)
    return PlanState(
        week=week,
        phase=phase,
        targets=targets or week_targets(week),
        focus=focus or PHASE_SEQUENCE[phase - 1][2],
        week_extensions=extensions,
    )


def _decision(kind, week=1, phase=1, modifications=None):
    return ProgressionDecision(
        type=kind,
        week_number=week,
        phase_number=phase,
        reasoning=("test",),
        confidence=80,
        modifications=modifications,
    )


class TestProgrammeTemplate:
    """12 weeks, 3 phases of 4"""

    def test_week_one_targets(self):
        assert week_targets(1) == {"steps": 6250, "water": 51, "sleep": 6.6, "mood": 1}

    def test_foundation_phase_ramps_weekly(self):
        assert week_targets(2) == {"steps": 7187, "water": 65, "sleep": 6.7, "mood": 1}
        assert week_targets(4)["steps"] == 9061

    def test_movement_and_integration_phases(self):
        assert week_targets(5) == {"steps": 6300, "water": 95, "sleep": 7.0, "mood": 1}
        assert week_targets(8)["steps"] == 10000
        assert week_targets(12) == {"steps": 10000, "water": 95, "sleep": 7.0, "mood": 1}

    @pytest.mark.parametrize("week,phase", [(1, 1), (4, 1), (5, 2), (8, 2), (9, 3), (12, 3)])
    def test_phase_for_week(self, week, phase):
        assert phase_for_week(week) == phase

    @pytest.mark.parametrize("week", [0, 13])
    def test_weeks_outside_the_programme_have_no_template(self, week):
        with pytest.raises(TemplateMissing):
            phase_for_week(week)

    def test_phase_template_shape(self):
        tpl = ProgrammeTemplateProvider().get_phase_template(2, 6)

        assert tpl["phase_name"] == "Movement & Activity"
        assert tpl["week_range"] == (5, 8)
        assert tpl["target_template"]["steps"] == 7500

    def test_week_must_belong_to_phase(self):
        with pytest.raises(TemplateMissing):
            ProgrammeTemplateProvider().get_phase_template(1, 5)

    def test_unknown_phase(self):
        with pytest.raises(TemplateMissing):
            ProgrammeTemplateProvider().get_phase_template(4, 13)

    def test_assessment_week_counts_calendar_weeks(self):
        assert assessment_week_for(PROGRAMME_START, PROGRAMME_START + timedelta(days=6)) == 1
        assert assessment_week_for(PROGRAMME_START, PROGRAMME_START + timedelta(days=7)) == 2
        assert assessment_week_for(PROGRAMME_START, PROGRAMME_START + timedelta(days=13)) == 2
        assert assessment_week_for(None, PROGRAMME_START) == 1

    def test_programme_phases_calendar(self):
        phases = programme_phases(PROGRAMME_START)

        assert [p["label"] for p in phases] == ["Weeks 1-4", "Weeks 5-8", "Weeks 9-12"]
        assert phases[1]["start"] == PROGRAMME_START + timedelta(days=28)
        assert phases[0]["end"] == PROGRAMME_START + timedelta(days=27)


class TestAdvance:
    def test_within_phase(self, manager):
        new = manager.apply(_state(2, focus="custom focus", extensions=2), _decision("advance", 2))

        assert new.week == 3
        assert new.phase == 1
        assert new.targets == week_targets(3)
        assert new.focus == "custom focus"
        assert new.week_extensions == 0

    def test_crosses_phase_boundary(self, manager):
        new = manager.apply(_state(4), _decision("advance", 4))

        assert (new.week, new.phase) == (5, 2)
        assert new.targets == week_targets(5)
        assert new.focus == PHASE_2_FOCUS

    def test_final_week_cannot_advance(self, manager):
        with pytest.raises(ProgrammeComplete):
            manager.apply(_state(12), _decision("advance", 12, 3))

    def test_template_without_targets(self):
        class EmptyProvider(ProgrammeTemplateProvider):
            def get_phase_template(self, phase, week):
                return {"phase": phase, "target_template": {}}

        with pytest.raises(TemplateMissing):
            TargetPhaseManager(EmptyProvider()).apply(_state(1), _decision("advance"))


class TestExtend:
    def test_only_focus_pillar_changes(self, manager):
        state = _state(3, extensions=1)
        mods = TargetModifications("sleep", 5.6, 6.8, "easing")

        new = manager.apply(state, _decision("extend", 3, modifications=mods))

        assert new.week == 3
        assert new.targets["sleep"] == 5.6
        assert {k: v for k, v in new.targets.items() if k != "sleep"} == {
            k: v for k, v in state.targets.items() if k != "sleep"
        }
        assert new.week_extensions == 2
        assert state.targets["sleep"] == 6.8

    def test_without_modifications_keeps_targets(self, manager):
        state = _state(3)
        new = manager.apply(state, _decision("extend", 3))

        assert new.targets == state.targets
        assert new.week_extensions == 1


class TestReset:
    def test_drops_one_week_and_reloads_template(self, manager):
        new = manager.apply(_state(5, extensions=3), _decision("reset", 5, 2))

        assert (new.week, new.phase) == (4, 1)
        assert new.targets == week_targets(4)
        assert new.focus == PHASE_1_FOCUS
        assert new.week_extensions == 0

    def test_floors_at_week_one(self, manager):
        state = _state(1, targets={"steps": 5000, "water": 40, "sleep": 6.0, "mood": 1})
        new = manager.apply(state, _decision("reset"))

        assert new.week == 1
        assert new.targets == week_targets(1)


class TestOtherDecisions:
    def test_insufficient_data_changes_nothing(self, manager):
        state = _state(3)
        marker = InsufficientData(week=3, phase=1, start_date=PROGRAMME_START,
                                  end_date=PROGRAMME_START + timedelta(days=6), reasoning=[])

        assert manager.apply(state, marker) is state

    def test_unknown_transition(self, manager):
        with pytest.raises(InvalidDecision):
            manager.apply(_state(3), _decision("skip", 3))

    def test_preview_targets(self, manager):
        assessment = ProgressionAssessment(recommendation="advance", confidence=80, reasoning=[])

        assert manager.preview_targets(_state(1), assessment) == week_targets(2)
        assert manager.preview_targets(_state(12), assessment) is None
