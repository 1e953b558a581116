from __future__ import annotations

import math
from datetime import date, datetime, timedelta
from typing import Any

from .errors import TemplateMissing

PHASE_SEQUENCE: list[tuple[int, str, str]] = [
    (1, "Foundation Building", "Focus on sleep optimization and hydration habits"),
    (2, "Movement & Activity", "Increase physical activity while maintaining foundation"),
    (3, "Nutrition & Integration", "Full integration of all health pillars"),
]

PHASE_WEEKS = 4
TOTAL_WEEKS = PHASE_WEEKS * len(PHASE_SEQUENCE)

OZ_PER_LITRE = 33.814
MOOD_CHECKINS_PER_DAY = 1

# Fallback targets used before a plan exists
DEFAULT_TARGETS: dict[str, float] = {"steps": 8000, "water": 80, "sleep": 7.0, "mood": MOOD_CHECKINS_PER_DAY}

# Movement phase ramps steps week by week; hydration and sleep hold steady
MOVEMENT_STEP_RAMP = [6300, 7500, 8800, 10000]


def to_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if isinstance(value, datetime):
        return value.date()
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        return None


def phase_for_week(week: int) -> int:
    if week < 1 or week > TOTAL_WEEKS:
        raise TemplateMissing(f"week {week} is outside the {TOTAL_WEEKS}-week programme", week=week)
    return int(math.ceil(week / PHASE_WEEKS))


def week_range_for_phase(phase: int) -> tuple[int, int]:
    first = (phase - 1) * PHASE_WEEKS + 1
    return first, first + PHASE_WEEKS - 1


def week_targets(week: int) -> dict[str, float]:
    """Daily targets for a programme week."""
    phase = phase_for_week(week)
    week_in_phase = week - (phase - 1) * PHASE_WEEKS
    if phase == 1:
        offset = week - 1
        return {
            "steps": 6250 + offset * 937,
            "water": round((1.5 + offset * 0.43) * OZ_PER_LITRE),
            "sleep": round(6.6 + offset * 0.1, 1),
            "mood": MOOD_CHECKINS_PER_DAY,
        }
    if phase == 2:
        return {
            "steps": MOVEMENT_STEP_RAMP[week_in_phase - 1],
            "water": 95,
            "sleep": 7.0,
            "mood": MOOD_CHECKINS_PER_DAY,
        }
    return {"steps": 10000, "water": 95, "sleep": 7.0, "mood": MOOD_CHECKINS_PER_DAY}


class ProgrammeTemplateProvider:
    """
    Twelve-week programme in three four-week phases.
    Swap in another provider with the same two methods to change the programme.
    """
    total_weeks = TOTAL_WEEKS

    def phase_for_week(self, week: int) -> int:
        return phase_for_week(week)

    def get_phase_template(self, phase: int, week: int) -> dict[str, Any]:
        entry = next((p for p in PHASE_SEQUENCE if p[0] == phase), None)
        if entry is None:
            raise TemplateMissing(f"no template for phase {phase}", phase=phase, week=week)
        first, last = week_range_for_phase(phase)
        if not first <= week <= last:
            raise TemplateMissing(
                f"week {week} does not belong to phase {phase} (weeks {first}-{last})",
                phase=phase,
                week=week,
            )
        _, name, focus = entry
        return {
            "phase": phase,
            "phase_name": name,
            "target_template": week_targets(week),
            "focus_description": focus,
            "week_range": (first, last),
        }


def assessment_week_for(start_value: date | datetime | None, window_end: date | datetime | None) -> int:
    """Calendar week of the programme a graded window ends in (1-based)."""
    start_day = to_date(start_value)
    end_day = to_date(window_end)
    if start_day is None or end_day is None or end_day < start_day:
        return 1
    return (end_day - start_day).days // 7 + 1


def programme_phases(start_value: date | datetime | None) -> list[dict[str, Any]]:
    """Nominal calendar of the phases, assuming no extensions or resets."""
    start_day = to_date(start_value)
    if start_day is None:
        return []
    phases: list[dict[str, Any]] = []
    for phase, name, focus in PHASE_SEQUENCE:
        first, last = week_range_for_phase(phase)
        blk_start = start_day + timedelta(days=(first - 1) * 7)
        phases.append(
            {
                "phase": phase,
                "name": name,
                "focus": focus,
                "week_start": first,
                "week_end": last,
                "label": f"Weeks {first}-{last}",
                "start": blk_start,
                "end": blk_start + timedelta(days=PHASE_WEEKS * 7 - 1),
            }
        )
    return phases
