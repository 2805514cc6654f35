from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from inputforge.core.model import Deliverable, Milestone, NextAction, PlanTree, Task


def parse_plan(obj: dict[str, Any]) -> PlanTree:
    """Decode the plan-only shape: {description, milestones}.

    Raises ValueError on any shape mismatch; callers decide whether that is fatal.
    """
    if not isinstance(obj, dict):
        raise ValueError("plan must be an object")

    description = obj.get("description")
    if not isinstance(description, str):
        raise ValueError("description must be a string")

    milestones_raw = obj.get("milestones")
    if not isinstance(milestones_raw, list):
        raise ValueError("milestones must be a list")

    return PlanTree(
        description=description,
        milestones=tuple(_parse_milestone(m) for m in milestones_raw),
    )


def parse_full_response(obj: dict[str, Any]) -> tuple[PlanTree, list[str], float]:
    """Decode the full shape: plan fields plus uncertaintyFlags and clarityScore."""
    plan = parse_plan(obj)

    flags = obj.get("uncertaintyFlags")
    if not isinstance(flags, list) or any(not isinstance(x, str) for x in flags):
        raise ValueError("uncertaintyFlags must be a list[str]")

    score = obj.get("clarityScore")
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        raise ValueError("clarityScore must be a number")

    return plan, flags, float(score)


def _parse_milestone(raw: Any) -> Milestone:
    if not isinstance(raw, dict):
        raise ValueError("milestone must be an object")
    deliverables = raw.get("deliverables")
    if not isinstance(deliverables, list):
        raise ValueError("milestones[].deliverables must be a list")
    return Milestone(
        title=_required_str(raw, "title"),
        deliverables=tuple(_parse_deliverable(d) for d in deliverables),
    )


def _parse_deliverable(raw: Any) -> Deliverable:
    if not isinstance(raw, dict):
        raise ValueError("deliverable must be an object")
    tasks = raw.get("tasks")
    if not isinstance(tasks, list):
        raise ValueError("deliverables[].tasks must be a list")
    return Deliverable(
        title=_required_str(raw, "title"),
        tasks=tuple(_parse_task(t) for t in tasks),
    )


def _parse_task(raw: Any) -> Task:
    if not isinstance(raw, dict):
        raise ValueError("task must be an object")

    flagged = raw.get("isFlagged")
    if flagged is not None and not isinstance(flagged, bool):
        raise ValueError("tasks[].isFlagged must be a boolean")

    actions = raw.get("nextActions")
    if actions is not None and not isinstance(actions, list):
        raise ValueError("tasks[].nextActions must be a list")

    return Task(
        title=_required_str(raw, "title"),
        due_date=_optional_date(raw, "dueDate"),
        defer_date=_optional_date(raw, "deferDate"),
        estimate=_optional_str(raw, "estimate"),
        context=_optional_str(raw, "context"),
        category=_optional_str(raw, "type"),
        flagged=bool(flagged),
        notes=_optional_str(raw, "notes"),
        next_actions=tuple(_parse_next_action(a) for a in actions or []),
    )


def _parse_next_action(raw: Any) -> NextAction:
    if not isinstance(raw, dict):
        raise ValueError("next action must be an object")
    return NextAction(
        title=_required_str(raw, "title"),
        context=_optional_str(raw, "context"),
        estimate=_optional_str(raw, "estimate"),
        notes=_optional_str(raw, "notes"),
    )


def _required_str(raw: dict[str, Any], key: str) -> str:
    v = raw.get(key)
    if not isinstance(v, str):
        raise ValueError(f"{key} must be a string")
    return v


def _optional_str(raw: dict[str, Any], key: str) -> Optional[str]:
    v = raw.get(key)
    if v is not None and not isinstance(v, str):
        raise ValueError(f"{key} must be a string or null")
    return v


def _optional_date(raw: dict[str, Any], key: str) -> Optional[datetime]:
    v = raw.get(key)
    if v is None:
        return None
    if not isinstance(v, str):
        raise ValueError(f"{key} must be an ISO 8601 string or null")
    return parse_timestamp(v)


def parse_timestamp(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(dt: datetime) -> str:
    """ISO 8601, UTC, whole seconds, `Z` suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def plan_to_dict(plan: PlanTree) -> dict[str, Any]:
    return {
        "description": plan.description,
        "milestones": [
            {
                "title": m.title,
                "deliverables": [
                    {"title": d.title, "tasks": [_task_to_dict(t) for t in d.tasks]}
                    for d in m.deliverables
                ],
            }
            for m in plan.milestones
        ],
    }


def _task_to_dict(task: Task) -> dict[str, Any]:
    return {
        "title": task.title,
        "dueDate": format_timestamp(task.due_date) if task.due_date else None,
        "deferDate": format_timestamp(task.defer_date) if task.defer_date else None,
        "estimate": task.estimate,
        "context": task.context,
        "type": task.category,
        "isFlagged": task.flagged,
        "notes": task.notes,
        "nextActions": [
            {"title": a.title, "context": a.context, "estimate": a.estimate, "notes": a.notes}
            for a in task.next_actions
        ],
    }
