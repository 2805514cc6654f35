"""OmniFocus-compatible TaskPaper rendering of a plan.

Projects and groups end with `:`, tasks start with `- `, notes are indented
plain text, tags follow the title inline, and indentation uses tabs.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from inputforge.core.model import NextAction, PlanTree, Task


def format_taskpaper(plan: PlanTree, *, project_name: str, persona_label: str) -> str:
    lines: list[str] = [f"{project_name}:"]

    if plan.description:
        lines.extend(f"\t{line}" for line in plan.description.split("\n"))

    for milestone in plan.milestones:
        lines.append(f"\t{milestone.title}:")
        for deliverable in milestone.deliverables:
            lines.append(f"\t\t{deliverable.title}:")
            for task in deliverable.tasks:
                lines.append(_task_line(task, persona_label, depth=3))
                _append_notes(lines, task.notes, depth=4)
                for action in task.next_actions:
                    lines.append(_action_line(action, depth=4))
                    _append_notes(lines, action.notes, depth=5)

    return "\n".join(lines) + "\n"


def format_date(dt: datetime) -> str:
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%d")


def _task_line(task: Task, persona_label: str, *, depth: int) -> str:
    tags: list[str] = []
    if task.due_date:
        tags.append(f"@due({format_date(task.due_date)})")
    if task.defer_date:
        tags.append(f"@defer({format_date(task.defer_date)})")
    if task.estimate is not None:
        tags.append(f"@estimate({task.estimate})")
    if task.context is not None:
        tags.append(f"@context({task.context})")
    if task.flagged:
        tags.append("@flagged")
    if task.category is not None:
        tags.append(f"@type({task.category})")
    tags.append(f"@persona({persona_label})")
    return "\t" * depth + f"- {task.title} " + " ".join(tags)


def _action_line(action: NextAction, *, depth: int) -> str:
    tags: list[str] = []
    if action.context is not None:
        tags.append(f"@context({action.context})")
    if action.estimate is not None:
        tags.append(f"@estimate({action.estimate})")
    suffix = " " + " ".join(tags) if tags else ""
    return "\t" * depth + f"- {action.title}{suffix}"


def _append_notes(lines: list[str], notes: Optional[str], *, depth: int) -> None:
    if not notes:
        return
    indent = "\t" * depth
    lines.extend(f"{indent}{line}" for line in notes.split("\n"))
