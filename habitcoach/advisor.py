from __future__ import annotations

from typing import Any, Optional

from langchain_openai import ChatOpenAI

from .assessment_types import WeeklyAssessmentData, pillar_label
from .config import settings
from .consistency import ConsistencyAnalyzer
from .debug_utils import debug_log


def summary_lines(data: WeeklyAssessmentData) -> list[str]:
    perf = data.performance
    cons = data.consistency
    lines = [
        f"Programme week {perf.week} (phase {perf.phase}), {perf.start_date.isoformat()} to {perf.end_date.isoformat()}",
        f"Overall achievement {perf.average_achievement:.0f}%, grade {perf.overall_grade}",
        f"Consistent days {cons.consistent_days}/{cons.total_days}, current streak {cons.current_streak}, "
        f"longest {cons.longest_streak}",
    ]
    for p in perf.pillar_breakdown:
        lines.append(
            f"{pillar_label(p.pillar)}: {p.average_achievement:.0f}% ({p.trend}, "
            f"{ConsistencyAnalyzer.pillar_consistency_rate(p):.0f}% of days at 80%+)"
        )
    lines.append(f"Engine recommendation: {data.assessment.recommendation} ({data.assessment.confidence}% confidence)")
    lines.extend(f"Risk: {r}" for r in data.assessment.risk_factors)
    return lines


def compose_prompt(data: WeeklyAssessmentData) -> str:
    context = "\n".join(f"- {line}" for line in summary_lines(data))
    return f"""You are briefing a human health coach who has been asked to review a client's week.
Instruction: Summarise what happened and suggest whether the client should advance, repeat, or step back a week.
Do not diagnose medical conditions. Keep it under 120 words.
Week data:
{context}
Write the brief."""


class CoachBriefAdvisor:
    """Drafts the coach's brief for an escalated assessment. The model is only built when first used."""

    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None, client: Any = None):
        self.model = model or settings.LLM_MODEL
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self._llm = client

    def available(self) -> bool:
        return self._llm is not None or bool(self.api_key)

    def _client(self) -> ChatOpenAI:
        if self._llm is None:
            self._llm = ChatOpenAI(model=self.model, temperature=0, api_key=self.api_key)
        return self._llm

    def brief(self, data: WeeklyAssessmentData) -> dict[str, Any]:
        if not self.available():
            debug_log("no OPENAI_API_KEY; plain brief", {"user_id": data.user_id}, tag="advisor")
            return {"source": "summary", "text": "\n".join(summary_lines(data))}
        text = self._client().invoke(compose_prompt(data)).content.strip()
        return {"source": "llm", "model": self.model, "text": text}
