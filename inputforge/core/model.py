from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional


InputType = Literal[
    "document",
    "image",
    "screenshot",
    "audio",
    "video",
    "text",
    "mindmap",
    "wardleyMap",
    "chat",
]

ProjectContext = Literal["work", "personal"]


@dataclass(frozen=True)
class NextAction:
    title: str
    context: Optional[str] = None
    estimate: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class Task:
    title: str
    due_date: Optional[datetime] = None
    defer_date: Optional[datetime] = None
    estimate: Optional[str] = None
    context: Optional[str] = None
    category: Optional[str] = None  # "type" on the wire
    flagged: bool = False
    notes: Optional[str] = None
    next_actions: tuple[NextAction, ...] = ()


@dataclass(frozen=True)
class Deliverable:
    title: str
    tasks: tuple[Task, ...] = ()


@dataclass(frozen=True)
class Milestone:
    title: str
    deliverables: tuple[Deliverable, ...] = ()


@dataclass(frozen=True)
class PlanTree:
    description: str = ""
    milestones: tuple[Milestone, ...] = ()

    def all_tasks(self) -> list[Task]:
        return [t for m in self.milestones for d in m.deliverables for t in d.tasks]


@dataclass(frozen=True)
class AnalysisResult:
    plan: PlanTree = field(default_factory=PlanTree)
    clarity_score: float = 0.0
    uncertainty_flags: tuple[str, ...] = ()
    version_number: int = 0


@dataclass(frozen=True)
class VersionSnapshot:
    """One immutable plan revision. Input references are ids, not copies."""

    id: str
    version_number: int
    timestamp: datetime
    persona_label: str
    clarity_score: float
    plan: PlanTree
    uncertainty_flags: tuple[str, ...] = ()
    input_refs: tuple[str, ...] = ()

    def to_result(self) -> AnalysisResult:
        return AnalysisResult(
            plan=self.plan,
            clarity_score=self.clarity_score,
            uncertainty_flags=self.uncertainty_flags,
            version_number=self.version_number,
        )


@dataclass(frozen=True)
class InputAnnotation:
    id: str
    text: str
    created_at: datetime


@dataclass(frozen=True)
class InputItem:
    id: str
    type: InputType
    added_at: datetime
    filename: Optional[str] = None
    asset_path: Optional[str] = None  # relative to the bundle's assets/ directory
    text_content: Optional[str] = None
    extracted_text: Optional[str] = None
    annotations: tuple[InputAnnotation, ...] = ()


@dataclass(frozen=True)
class Persona:
    name: str
    system_prompt: str = ""
    is_built_in: bool = False

    @property
    def is_neutral(self) -> bool:
        return not self.system_prompt
