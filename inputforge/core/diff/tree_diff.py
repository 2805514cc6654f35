"""Structural diff between two plan revisions.

Identifiers are regenerated on every AI run, so entities are correlated by
position in the tree plus case-insensitive title equality. Matching is
greedy: each old entity takes the first not-yet-matched new sibling with the
same title. Siblings sharing a title are paired in order of appearance,
which is not guaranteed to be the best possible alignment.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterable, Literal, Optional, Sequence, TypeVar

from inputforge.core.model import Deliverable, Milestone, PlanTree, Task


DiffStatus = Literal["added", "removed", "modified", "unchanged"]

T = TypeVar("T")


@dataclass(frozen=True)
class DiffEntry(Generic[T]):
    status: DiffStatus
    old: Optional[T] = None
    new: Optional[T] = None
    children: list["DiffEntry[Any]"] = field(default_factory=list)

    @property
    def title(self) -> str:
        entity = self.new if self.new is not None else self.old
        return getattr(entity, "title", "")


@dataclass(frozen=True)
class FlagDiff:
    kept: list[str]
    removed: list[str]
    added: list[str]


def diff(old: PlanTree, new: PlanTree) -> list[DiffEntry[Milestone]]:
    return diff_milestones(old.milestones, new.milestones)


def diff_milestones(
    old: Sequence[Milestone], new: Sequence[Milestone]
) -> list[DiffEntry[Milestone]]:
    return _diff_level(old, new, lambda o, n: diff_deliverables(o.deliverables, n.deliverables))


def diff_deliverables(
    old: Sequence[Deliverable], new: Sequence[Deliverable]
) -> list[DiffEntry[Deliverable]]:
    return _diff_level(old, new, lambda o, n: diff_tasks(o.tasks, n.tasks))


def diff_tasks(old: Sequence[Task], new: Sequence[Task]) -> list[DiffEntry[Task]]:
    result: list[DiffEntry[Task]] = []
    unmatched = list(new)

    for old_task in old:
        idx = _first_title_match(unmatched, old_task.title)
        if idx is None:
            result.append(DiffEntry(status="removed", old=old_task))
            continue
        new_task = unmatched.pop(idx)
        status: DiffStatus = "modified" if task_changed(old_task, new_task) else "unchanged"
        result.append(DiffEntry(status=status, old=old_task, new=new_task))

    result.extend(DiffEntry(status="added", new=t) for t in unmatched)
    return result


def task_changed(old: Task, new: Task) -> bool:
    # Flat comparison; next actions are compared by count only.
    return (
        old.flagged != new.flagged
        or old.notes != new.notes
        or old.estimate != new.estimate
        or len(old.next_actions) != len(new.next_actions)
    )


def _diff_level(
    old: Sequence[T],
    new: Sequence[T],
    recurse: Callable[[T, T], list[DiffEntry[Any]]],
) -> list[DiffEntry[T]]:
    result: list[DiffEntry[T]] = []
    unmatched = list(new)

    for old_item in old:
        idx = _first_title_match(unmatched, getattr(old_item, "title"))
        if idx is None:
            # Whole subtree reported as removed; no partial comparison.
            result.append(DiffEntry(status="removed", old=old_item))
            continue
        new_item = unmatched.pop(idx)
        children = recurse(old_item, new_item)
        status: DiffStatus = (
            "unchanged" if all(c.status == "unchanged" for c in children) else "modified"
        )
        result.append(DiffEntry(status=status, old=old_item, new=new_item, children=children))

    result.extend(DiffEntry(status="added", new=item) for item in unmatched)
    return result


def _first_title_match(pool: Sequence[Any], title: str) -> Optional[int]:
    key = title.lower()
    for i, candidate in enumerate(pool):
        if candidate.title.lower() == key:
            return i
    return None


def diff_flags(old: Iterable[str], new: Iterable[str]) -> FlagDiff:
    old_set, new_set = set(old), set(new)
    return FlagDiff(
        kept=sorted(old_set & new_set),
        removed=sorted(old_set - new_set),
        added=sorted(new_set - old_set),
    )


def walk(entries: Iterable[DiffEntry[Any]], depth: int = 0) -> Iterable[tuple[int, DiffEntry[Any]]]:
    """Depth-first (depth, entry) pairs, parents before children."""
    for entry in entries:
        yield depth, entry
        yield from walk(entry.children, depth + 1)


def summarize(entries: Iterable[DiffEntry[Any]]) -> dict[str, int]:
    counts = Counter(e.status for _, e in walk(entries))
    return {s: int(counts.get(s, 0)) for s in ("added", "removed", "modified", "unchanged")}


def diff_to_dict(entries: Iterable[DiffEntry[Any]]) -> list[dict[str, Any]]:
    return [
        {
            "status": e.status,
            "title": e.title,
            "old_title": e.old.title if e.old is not None else None,
            "new_title": e.new.title if e.new is not None else None,
            "children": diff_to_dict(e.children),
        }
        for e in entries
    ]
