"""Turn free-form AI output into an AnalysisResult.

The model is told to return bare JSON, but replies often arrive wrapped in a
markdown fence or surrounded by prose. Decoding is two-tier: the full shape
(plan + uncertaintyFlags + clarityScore) first, then the plan-only shape with
a locally computed clarity score.
"""

from __future__ import annotations

import json
import math
from typing import Any, Sequence

from inputforge.core.ai.contracts import parse_full_response, parse_plan
from inputforge.core.errors import ParseError
from inputforge.core.model import AnalysisResult, PlanTree


FLAG_PENALTY = 0.15


def parse_response(text: str, version_number: int) -> AnalysisResult:
    extracted = extract_json_text(text)

    try:
        obj: Any = json.loads(extracted)
    except ValueError as e:
        raise ParseError(
            code="E_PARSE_JSON",
            message=f"Could not parse AI response as structured plan: {e}",
        ) from e

    try:
        plan, flags, score = parse_full_response(obj)
    except ValueError:
        pass
    else:
        return AnalysisResult(
            plan=plan,
            clarity_score=clamp(score),
            uncertainty_flags=tuple(flags),
            version_number=version_number,
        )

    try:
        plan = parse_plan(obj)
    except ValueError as e:
        raise ParseError(
            code="E_PARSE_SCHEMA",
            message=f"Could not parse AI response as structured plan: {e}",
        ) from e

    return AnalysisResult(
        plan=plan,
        clarity_score=compute_clarity_score(plan, []),
        uncertainty_flags=(),
        version_number=version_number,
    )


def extract_json_text(text: str) -> str:
    trimmed = text.strip()

    fenced = _fence_interior(trimmed)
    if fenced is not None:
        return fenced

    first = trimmed.find("{")
    last = trimmed.rfind("}")
    if first != -1 and last != -1 and first <= last:
        return trimmed[first : last + 1]

    return trimmed


def _fence_interior(text: str) -> str | None:
    # ```json\n...\n``` or ```\n...\n```; the language tag is skipped with the rest of its line.
    start = text.find("```")
    if start == -1:
        return None
    newline = text.find("\n", start + 3)
    if newline == -1:
        return None
    content_start = newline + 1
    end = text.find("```", content_start)
    if end == -1:
        return None
    return text[content_start:end]


def compute_clarity_score(plan: PlanTree, uncertainty_flags: Sequence[str]) -> float:
    """Average of equally weighted completeness factors, clamped to [0, 1].

    Task-level factors only count when the plan has tasks, so an empty
    plan is not penalized for structure it does not have.
    """
    score = 0.0
    factors = 0

    factors += 1
    if plan.description:
        score += 1

    factors += 1
    if plan.milestones:
        score += 1

    tasks = plan.all_tasks()
    if tasks:
        n = len(tasks)
        factors += 3
        score += sum(1 for t in tasks if t.estimate is not None) / n
        score += sum(1 for t in tasks if t.context is not None) / n
        score += sum(1 for t in tasks if t.next_actions) / n

    factors += 1
    score += 1.0 - min(len(uncertainty_flags) * FLAG_PENALTY, 1.0)

    return clamp(score / factors)


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    if math.isnan(value):
        return lo
    return min(max(value, lo), hi)
