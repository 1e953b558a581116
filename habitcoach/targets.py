from __future__ import annotations

from typing import Any, Optional, Protocol, Union

from .assessment_types import (
    InsufficientData,
    PlanState,
    ProgressionAssessment,
    ProgressionDecision,
    Recommendation,
    TargetModifications,
)
from .errors import InvalidDecision, ProgrammeComplete, TemplateMissing


class TemplateProvider(Protocol):
    total_weeks: int

    def phase_for_week(self, week: int) -> int: ...

    def get_phase_template(self, phase: int, week: int) -> dict[str, Any]: ...


class TargetPhaseManager:
    """
    Applies a resolved decision to a plan state and returns the new state.
    Never touches storage; the caller persists whatever comes back.
    """

    def __init__(self, template_provider: TemplateProvider):
        self.templates = template_provider

    def apply(
        self,
        state: PlanState,
        decision: Union[ProgressionDecision, InsufficientData],
    ) -> PlanState:
        if isinstance(decision, InsufficientData):
            return state
        if decision.type == Recommendation.ADVANCE.value:
            return self._advance(state)
        if decision.type == Recommendation.EXTEND.value:
            return self._extend(state, decision.modifications)
        if decision.type == Recommendation.RESET.value:
            return self._reset(state)
        raise InvalidDecision(f"unknown transition: {decision.type!r}", transition=decision.type)

    def preview_targets(self, state: PlanState, assessment: ProgressionAssessment) -> Optional[dict[str, float]]:
        """Targets the user would get by accepting; None when the programme has no next week."""
        decision = ProgressionDecision(
            type=assessment.recommendation,
            week_number=state.week,
            phase_number=state.phase,
            reasoning=tuple(assessment.reasoning),
            confidence=assessment.confidence,
            modifications=assessment.modifications,
        )
        try:
            return dict(self.apply(state, decision).targets)
        except ProgrammeComplete:
            return None

    def load_week(self, week: int) -> tuple[int, dict[str, Any]]:
        phase = self.templates.phase_for_week(week)
        template = self.templates.get_phase_template(phase, week)
        if not template or not template.get("target_template"):
            raise TemplateMissing(f"template for phase {phase} week {week} has no targets", phase=phase, week=week)
        return phase, template

    # ──────────────────────────────────────────────────────────────────────────

    def _advance(self, state: PlanState) -> PlanState:
        new_week = state.week + 1
        total = getattr(self.templates, "total_weeks", None)
        if total is not None and new_week > total:
            raise ProgrammeComplete(
                f"week {state.week} is the last week of the programme",
                week=state.week,
            )
        new_phase, template = self.load_week(new_week)
        if new_phase < state.phase:
            raise TemplateMissing(
                f"template maps week {new_week} to phase {new_phase}, behind current phase {state.phase}",
                phase=new_phase,
                week=new_week,
            )
        focus = state.focus
        if new_phase != state.phase or not focus:
            focus = template.get("focus_description")
        return PlanState(
            week=new_week,
            phase=new_phase,
            targets=dict(template["target_template"]),
            focus=focus,
            week_extensions=0,
        )

    @staticmethod
    def _extend(state: PlanState, modifications: Optional[TargetModifications]) -> PlanState:
        targets = dict(state.targets)
        if modifications is not None:
            targets[modifications.focus_area] = modifications.target_value
        return PlanState(
            week=state.week,
            phase=state.phase,
            targets=targets,
            focus=state.focus,
            week_extensions=state.week_extensions + 1,
        )

    def _reset(self, state: PlanState) -> PlanState:
        new_week = max(1, state.week - 1)
        new_phase, template = self.load_week(new_week)
        return PlanState(
            week=new_week,
            phase=new_phase,
            targets=dict(template["target_template"]),
            focus=template.get("focus_description"),
            week_extensions=0,
        )
