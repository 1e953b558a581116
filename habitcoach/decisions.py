from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from .assessment_types import (
    PlanState,
    ProgressionDecision,
    Recommendation,
    UserDecision,
    WeeklyAssessmentData,
)
from .errors import AlreadyDecided, InvalidDecision, InvalidOverride
from .targets import TargetPhaseManager

PENDING = "pending"
ESCALATED = "escalated"


@dataclass(frozen=True)
class Resolution:
    """What a captured choice amounts to, before anything is written."""
    user_decision: str
    decision: Optional[ProgressionDecision]   # None while a coach is consulted
    new_state: PlanState
    pending_status: Optional[str]             # None clears the pending row

    @property
    def escalated(self) -> bool:
        return self.pending_status == ESCALATED


def parse_choice(choice: Union[str, UserDecision, None]) -> UserDecision:
    if isinstance(choice, UserDecision):
        return choice
    raw = (choice or "").strip().lower() if isinstance(choice, str) else ""
    try:
        return UserDecision(raw)
    except ValueError:
        allowed = ", ".join(d.value for d in UserDecision)
        raise InvalidDecision(f"decision must be one of: {allowed}", decision=choice)


def parse_transition(value: Union[str, None]) -> str:
    raw = (value or "").strip().lower() if isinstance(value, str) else ""
    if raw not in {r.value for r in Recommendation}:
        raise InvalidDecision("resolution must be one of: advance, extend, reset", resolution=value)
    return raw


class DecisionCoordinator:
    """
    Pending -> accepted | overridden | escalated, one choice per assessment week.

    The coordinator only decides; storage checks (an existing history row, a
    queued write) are passed in as `already_decided` and the caller persists
    the returned Resolution.
    """

    def __init__(self, target_manager: TargetPhaseManager):
        self.targets = target_manager

    def resolve(
        self,
        pending: WeeklyAssessmentData,
        state: PlanState,
        choice: Union[str, UserDecision, None],
        *,
        pending_status: str = PENDING,
        already_decided: bool = False,
    ) -> Resolution:
        if already_decided or pending_status == ESCALATED:
            raise AlreadyDecided(
                f"assessment week {pending.assessment_week} already has a decision",
                assessment_week=pending.assessment_week,
            )
        user_decision = parse_choice(choice)
        assessment = pending.assessment

        if user_decision == UserDecision.COACH_CONSULTATION:
            return Resolution(
                user_decision=user_decision.value,
                decision=None,
                new_state=state,
                pending_status=ESCALATED,
            )

        if user_decision == UserDecision.OVERRIDE_ADVANCE:
            if assessment.recommendation == Recommendation.ADVANCE.value:
                raise InvalidOverride(
                    "recommendation is already advance; accept it instead",
                    assessment_week=pending.assessment_week,
                )
            decision = ProgressionDecision(
                type=Recommendation.ADVANCE.value,
                week_number=state.week,
                phase_number=state.phase,
                reasoning=(
                    f"Advanced at the user's request over a {assessment.recommendation} recommendation",
                    *assessment.reasoning,
                ),
                confidence=100,
                modifications=None,
                executed_by="user",
            )
        else:
            decision = ProgressionDecision(
                type=assessment.recommendation,
                week_number=state.week,
                phase_number=state.phase,
                reasoning=tuple(assessment.reasoning),
                confidence=assessment.confidence,
                modifications=assessment.modifications,
                executed_by="user",
            )

        return Resolution(
            user_decision=user_decision.value,
            decision=decision,
            new_state=self.targets.apply(state, decision),
            pending_status=None,
        )

    def resolve_escalation(
        self,
        pending: WeeklyAssessmentData,
        state: PlanState,
        transition: str,
        *,
        pending_status: str,
        note: Optional[str] = None,
    ) -> Resolution:
        """Apply a coach's guidance to an escalated assessment on the user's behalf."""
        if pending_status != ESCALATED:
            raise InvalidDecision(
                "only an escalated assessment can be resolved by a coach",
                assessment_week=pending.assessment_week,
            )
        transition = parse_transition(transition)
        assessment = pending.assessment
        reasoning = [f"Coach guidance: {transition}"]
        if note:
            reasoning.append(note.strip())
        modifications = assessment.modifications if transition == assessment.recommendation else None
        decision = ProgressionDecision(
            type=transition,
            week_number=state.week,
            phase_number=state.phase,
            reasoning=tuple(reasoning),
            confidence=assessment.confidence,
            modifications=modifications,
            executed_by="system",
        )
        return Resolution(
            user_decision=UserDecision.COACH_CONSULTATION.value,
            decision=decision,
            new_state=self.targets.apply(state, decision),
            pending_status=None,
        )
