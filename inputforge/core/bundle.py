from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from inputforge.core.errors import ValidationError
from inputforge.core.ledger.version_ledger import VersionLedger, utc_now
from inputforge.core.model import (
    AnalysisResult,
    InputAnnotation,
    InputItem,
    Persona,
    ProjectContext,
    VersionSnapshot,
)
from inputforge.core.personas.persona_config import NEUTRAL


class ProjectBundle:
    """Aggregate root for one project document.

    All mutation goes through the command methods below so the ledger and
    timestamps stay consistent; nothing else should assign to these fields.
    """

    def __init__(
        self,
        *,
        name: str = "Untitled Project",
        id: Optional[str] = None,
        context: ProjectContext = "work",
        persona: Persona = NEUTRAL,
        goal_text: str = "",
        inputs: Optional[list[InputItem]] = None,
        created_at: Optional[datetime] = None,
        modified_at: Optional[datetime] = None,
        current_analysis: Optional[AnalysisResult] = None,
        ledger: Optional[VersionLedger] = None,
        stored_assets: Optional[set[str]] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._clock = clock
        now = clock()
        self.id = id or str(uuid.uuid4())
        self.name = name
        self.context: ProjectContext = context
        self.persona = persona
        self.goal_text = goal_text
        self.inputs: list[InputItem] = list(inputs or [])
        self.created_at = created_at or now
        self.modified_at = modified_at or self.created_at
        self.current_analysis = current_analysis
        self.ledger = ledger if ledger is not None else VersionLedger(clock=clock)
        # Asset names already persisted in the bundle directory.
        self.stored_assets: set[str] = set(stored_assets or ())
        # Asset blobs added since the last save: name -> bytes.
        self.staged_assets: dict[str, bytes] = {}
        self.path: Optional[Path] = None

    @property
    def input_refs(self) -> list[str]:
        return [i.id for i in self.inputs]

    def _touch(self) -> None:
        self.modified_at = self._clock()

    def find_input(self, input_id: str) -> Optional[InputItem]:
        for item in self.inputs:
            if item.id == input_id:
                return item
        return None

    def add_input(self, item: InputItem, data: Optional[bytes] = None) -> InputItem:
        if self.find_input(item.id) is not None:
            raise ValidationError(
                code="E_DUPLICATE_INPUT", message=f"input already present: {item.id}", path="inputs"
            )
        if data is not None:
            asset_name = item.asset_path or f"{item.id}-{item.filename or 'blob'}"
            item = replace(item, asset_path=asset_name)
            self.staged_assets[asset_name] = data
        self.inputs.append(item)
        self._touch()
        return item

    def remove_input(self, input_id: str) -> bool:
        before = len(self.inputs)
        self.inputs = [i for i in self.inputs if i.id != input_id]
        removed = len(self.inputs) != before
        if removed:
            self._touch()
        return removed

    def add_annotation(self, input_id: str, text: str) -> InputAnnotation:
        for idx, item in enumerate(self.inputs):
            if item.id == input_id:
                note = InputAnnotation(id=str(uuid.uuid4()), text=text, created_at=self._clock())
                self.inputs[idx] = replace(item, annotations=item.annotations + (note,))
                self._touch()
                return note
        raise ValidationError(
            code="E_UNKNOWN_INPUT", message=f"no input with id {input_id}", path="inputs"
        )

    def set_persona(self, persona: Persona) -> None:
        self.persona = persona
        self._touch()

    def set_goal(self, text: str) -> None:
        self.goal_text = text
        self._touch()

    def rename(self, name: str) -> None:
        self.name = name
        self._touch()

    def set_analysis_result(self, result: AnalysisResult) -> VersionSnapshot:
        snapshot = self.ledger.append(result, self.persona.name, self.input_refs)
        self.current_analysis = snapshot.to_result()
        self._touch()
        return snapshot

    def restore_version(self, snapshot: VersionSnapshot) -> AnalysisResult:
        result = self.ledger.restore(snapshot, self.persona.name, self.input_refs)
        self.current_analysis = result
        self._touch()
        return result

    def mark_saved(self, path: Path) -> None:
        self.stored_assets.update(self.staged_assets)
        self.staged_assets.clear()
        self.path = path
