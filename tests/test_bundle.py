from datetime import datetime, timedelta, timezone

import pytest

from inputforge.core.bundle import ProjectBundle
from inputforge.core.errors import ValidationError
from inputforge.core.model import AnalysisResult, InputItem, PlanTree
from inputforge.core.personas.persona_config import BUILT_IN_PERSONAS, NEUTRAL


class Clock:
    def __init__(self):
        self.now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


def _item(id="i1", **kw):
    return InputItem(id=id, type="text", added_at=datetime(2025, 1, 1, tzinfo=timezone.utc), **kw)


def test_defaults():
    b = ProjectBundle()
    assert b.name == "Untitled Project"
    assert b.context == "work"
    assert b.persona == NEUTRAL
    assert b.current_analysis is None
    assert len(b.ledger) == 0
    assert b.modified_at == b.created_at


def test_every_command_bumps_modified_at():
    b = ProjectBundle(clock=Clock())
    stamps = [b.modified_at]

    b.add_input(_item())
    stamps.append(b.modified_at)
    b.add_annotation("i1", "note")
    stamps.append(b.modified_at)
    b.set_persona(BUILT_IN_PERSONAS["Parent"])
    stamps.append(b.modified_at)
    b.set_goal("Plan the party")
    stamps.append(b.modified_at)
    b.rename("Party")
    stamps.append(b.modified_at)
    b.remove_input("i1")
    stamps.append(b.modified_at)

    assert stamps == sorted(set(stamps))
    assert b.name == "Party"
    assert b.goal_text == "Plan the party"


def test_duplicate_input_is_rejected():
    b = ProjectBundle()
    b.add_input(_item())
    with pytest.raises(ValidationError) as ei:
        b.add_input(_item())
    assert ei.value.code == "E_DUPLICATE_INPUT"


def test_annotation_on_unknown_input():
    with pytest.raises(ValidationError) as ei:
        ProjectBundle().add_annotation("ghost", "boo")
    assert ei.value.code == "E_UNKNOWN_INPUT"


def test_remove_unknown_input_is_noop():
    b = ProjectBundle(clock=Clock())
    before = b.modified_at
    assert b.remove_input("ghost") is False
    assert b.modified_at == before


def test_staged_asset_name_and_refs():
    b = ProjectBundle()
    item = b.add_input(_item("a", filename="sketch.png"), b"img")
    b.add_input(_item("b"))
    assert item.asset_path == "a-sketch.png"
    assert b.staged_assets == {"a-sketch.png": b"img"}
    assert b.input_refs == ["a", "b"]


def test_analysis_result_is_stamped_by_ledger():
    b = ProjectBundle(persona=BUILT_IN_PERSONAS["CPO"])
    b.add_input(_item())
    snap = b.set_analysis_result(AnalysisResult(plan=PlanTree(description="x"), version_number=9))
    assert snap.version_number == 1
    assert snap.persona_label == "CPO"
    assert b.current_analysis.version_number == 1

    result = b.restore_version(snap)
    assert result.version_number == 2
    assert b.current_analysis == result
