from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

# Fixed pillar set. Order doubles as the tie-break priority for strongest/weakest.
PILLARS: tuple[str, ...] = ("steps", "water", "sleep", "mood")

PILLAR_LABELS: dict[str, str] = {
    "steps": "Steps",
    "water": "Hydration",
    "sleep": "Sleep",
    "mood": "Mood Check-ins",
}

CONSISTENT_DAY_THRESHOLD = 80.0


class Recommendation(str, Enum):
    ADVANCE = "advance"
    EXTEND = "extend"
    RESET = "reset"


class Grade(str, Enum):
    MASTERY = "mastery"
    PROGRESS = "progress"
    STRUGGLE = "struggle"


class Trend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class UserDecision(str, Enum):
    ACCEPTED = "accepted"
    OVERRIDE_ADVANCE = "override_advance"
    COACH_CONSULTATION = "coach_consultation"


def pillar_label(pillar: str) -> str:
    return PILLAR_LABELS.get(pillar, pillar.title())


def _iso(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _iso(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_iso(v) for v in value]
    return value


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))

# ──────────────────────────────────────────────────────────────────────────────
# Raw input
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DailyPillarRecord:
    day: date
    pillar: str
    actual: Optional[float]
    target: Optional[float]

# ──────────────────────────────────────────────────────────────────────────────
# Derived weekly statistics
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class PillarPerformance:
    pillar: str
    average_achievement: float
    consistent_days: int
    trend: str
    daily_values: list[float]
    average_actual: Optional[float] = None
    average_target: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict) -> "PillarPerformance":
        return cls(
            pillar=data["pillar"],
            average_achievement=float(data["average_achievement"]),
            consistent_days=int(data["consistent_days"]),
            trend=data.get("trend") or Trend.STABLE.value,
            daily_values=[float(v) for v in data.get("daily_values") or []],
            average_actual=data.get("average_actual"),
            average_target=data.get("average_target"),
        )


@dataclass
class WeeklyPerformance:
    week: int
    phase: int
    start_date: date
    end_date: date
    average_achievement: float
    consistency_days: int
    total_tracking_days: int
    strongest_pillar: str
    weakest_pillar: str
    overall_grade: str
    pillar_breakdown: list[PillarPerformance]
    # aligned with each pillar's daily_values: one entry per tracked day
    tracked_dates: list[date] = field(default_factory=list)
    daily_overall: list[float] = field(default_factory=list)

    def pillar(self, key: str) -> PillarPerformance:
        for item in self.pillar_breakdown:
            if item.pillar == key:
                return item
        raise KeyError(key)

    def to_dict(self) -> dict:
        return _iso(asdict(self))

    @classmethod
    def from_dict(cls, data: dict) -> "WeeklyPerformance":
        return cls(
            week=int(data["week"]),
            phase=int(data["phase"]),
            start_date=_to_date(data["start_date"]),
            end_date=_to_date(data["end_date"]),
            average_achievement=float(data["average_achievement"]),
            consistency_days=int(data["consistency_days"]),
            total_tracking_days=int(data["total_tracking_days"]),
            strongest_pillar=data["strongest_pillar"],
            weakest_pillar=data["weakest_pillar"],
            overall_grade=data["overall_grade"],
            pillar_breakdown=[PillarPerformance.from_dict(p) for p in data.get("pillar_breakdown") or []],
            tracked_dates=[_to_date(d) for d in data.get("tracked_dates") or []],
            daily_overall=[float(v) for v in data.get("daily_overall") or []],
        )


@dataclass
class ConsistencyMetrics:
    total_days: int
    consistent_days: int
    consistency_rate: float
    current_streak: int
    longest_streak: int
    weekend_consistency: float
    pillar_trends: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return _iso(asdict(self))

    @classmethod
    def from_dict(cls, data: dict) -> "ConsistencyMetrics":
        return cls(
            total_days=int(data["total_days"]),
            consistent_days=int(data["consistent_days"]),
            consistency_rate=float(data["consistency_rate"]),
            current_streak=int(data["current_streak"]),
            longest_streak=int(data["longest_streak"]),
            weekend_consistency=float(data["weekend_consistency"]),
            pillar_trends=dict(data.get("pillar_trends") or {}),
        )

# ──────────────────────────────────────────────────────────────────────────────
# Recommendation + decision
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TargetModifications:
    focus_area: str
    target_value: float
    original_target: float
    adjustment_reason: str

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["TargetModifications"]:
        if not data:
            return None
        return cls(
            focus_area=data["focus_area"],
            target_value=float(data["target_value"]),
            original_target=float(data["original_target"]),
            adjustment_reason=data.get("adjustment_reason") or "",
        )


@dataclass
class ProgressionAssessment:
    recommendation: str
    confidence: int
    reasoning: list[str]
    modifications: Optional[TargetModifications] = None
    risk_factors: list[str] = field(default_factory=list)
    opportunities: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return _iso(asdict(self))

    @classmethod
    def from_dict(cls, data: dict) -> "ProgressionAssessment":
        return cls(
            recommendation=data["recommendation"],
            confidence=int(data["confidence"]),
            reasoning=list(data.get("reasoning") or []),
            modifications=TargetModifications.from_dict(data.get("modifications")),
            risk_factors=list(data.get("risk_factors") or []),
            opportunities=list(data.get("opportunities") or []),
        )


@dataclass
class InsufficientData:
    """No tracked day in the window: nothing to recommend, nothing to change."""
    week: int
    phase: int
    start_date: date
    end_date: date
    reasoning: list[str]
    confidence: int = 0
    recommendation: Optional[str] = None

    def to_dict(self) -> dict:
        out = _iso(asdict(self))
        out["status"] = "insufficient_data"
        return out


@dataclass(frozen=True)
class ProgressionDecision:
    type: str
    week_number: int
    phase_number: int
    reasoning: tuple[str, ...]
    confidence: int
    modifications: Optional[TargetModifications] = None
    executed_by: str = "user"

    def to_dict(self) -> dict:
        return _iso(asdict(self))

# ──────────────────────────────────────────────────────────────────────────────
# Plan state + bundles exchanged with the presentation layer
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PlanState:
    week: int
    phase: int
    targets: dict[str, float]
    focus: Optional[str] = None
    week_extensions: int = 0

    def to_dict(self) -> dict:
        return _iso(asdict(self))


@dataclass
class WeeklyAssessmentData:
    user_id: int
    assessment_week: int
    performance: WeeklyPerformance
    consistency: ConsistencyMetrics
    assessment: ProgressionAssessment
    current_targets: dict[str, float]
    next_week_targets: Optional[dict[str, float]] = None
    patterns: dict[str, list[str]] = field(default_factory=dict)
    status: str = "pending"

    def to_dict(self) -> dict:
        return _iso(asdict(self))

    @classmethod
    def from_dict(cls, data: dict) -> "WeeklyAssessmentData":
        return cls(
            user_id=int(data["user_id"]),
            assessment_week=int(data["assessment_week"]),
            performance=WeeklyPerformance.from_dict(data["performance"]),
            consistency=ConsistencyMetrics.from_dict(data["consistency"]),
            assessment=ProgressionAssessment.from_dict(data["assessment"]),
            current_targets=dict(data.get("current_targets") or {}),
            next_week_targets=data.get("next_week_targets"),
            patterns=dict(data.get("patterns") or {}),
            status=data.get("status") or "pending",
        )


@dataclass
class ProgressionOutcome:
    success: bool
    decision: Optional[ProgressionDecision]
    user_decision: str
    updated_week: int
    updated_phase: int
    updated_targets: dict[str, float]
    confirmed: bool = True
    job_id: Optional[int] = None
    message: str = ""

    def to_dict(self) -> dict:
        return _iso(asdict(self))


@dataclass
class AssessmentDueSignal:
    due: bool
    due_at: Optional[date]
    reason: str
    assessment_week: Optional[int] = None
    assessment: Optional[dict] = None

    def to_dict(self) -> dict:
        return _iso(asdict(self))
