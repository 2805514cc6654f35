from __future__ import annotations

from typing import Any, cast

from inputforge.core.ai.contracts import format_timestamp, parse_plan, parse_timestamp, plan_to_dict
from inputforge.core.ai.interpreter import clamp
from inputforge.core.model import (
    AnalysisResult,
    InputAnnotation,
    InputItem,
    InputType,
    Persona,
    VersionSnapshot,
)


def snapshot_to_dict(s: VersionSnapshot) -> dict[str, Any]:
    return {
        "id": s.id,
        "versionNumber": s.version_number,
        "timestamp": format_timestamp(s.timestamp),
        "personaName": s.persona_label,
        "clarityScore": s.clarity_score,
        "plan": plan_to_dict(s.plan),
        "uncertaintyFlags": list(s.uncertainty_flags),
        "inputRefs": list(s.input_refs),
    }


def snapshot_from_dict(obj: Any) -> VersionSnapshot:
    if not isinstance(obj, dict):
        raise ValueError("snapshot must be an object")
    number = obj.get("versionNumber")
    if isinstance(number, bool) or not isinstance(number, int) or number < 1:
        raise ValueError("versionNumber must be a positive integer")
    return VersionSnapshot(
        id=str(obj["id"]),
        version_number=number,
        timestamp=parse_timestamp(obj["timestamp"]),
        persona_label=str(obj.get("personaName", "")),
        clarity_score=clamp(float(obj["clarityScore"])),
        plan=parse_plan(obj["plan"]),
        uncertainty_flags=_flags(obj),
        input_refs=tuple(str(r) for r in obj.get("inputRefs") or ()),
    )


def result_to_dict(r: AnalysisResult) -> dict[str, Any]:
    return {
        "plan": plan_to_dict(r.plan),
        "clarityScore": r.clarity_score,
        "uncertaintyFlags": list(r.uncertainty_flags),
        "version": r.version_number,
    }


def result_from_dict(obj: dict[str, Any]) -> AnalysisResult:
    return AnalysisResult(
        plan=parse_plan(obj["plan"]),
        clarity_score=clamp(float(obj.get("clarityScore", 0.0))),
        uncertainty_flags=_flags(obj),
        version_number=int(obj.get("version", 0)),
    )


def persona_to_dict(p: Persona) -> dict[str, Any]:
    return {"name": p.name, "systemPrompt": p.system_prompt, "isBuiltIn": p.is_built_in}


def persona_from_dict(obj: dict[str, Any]) -> Persona:
    return Persona(
        name=str(obj["name"]),
        system_prompt=str(obj.get("systemPrompt", "")),
        is_built_in=bool(obj.get("isBuiltIn", False)),
    )


def input_to_dict(item: InputItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "type": item.type,
        "filename": item.filename,
        "assetPath": item.asset_path,
        "textContent": item.text_content,
        "extractedText": item.extracted_text,
        "annotations": [
            {"id": a.id, "text": a.text, "createdAt": format_timestamp(a.created_at)}
            for a in item.annotations
        ],
        "addedAt": format_timestamp(item.added_at),
    }


def input_from_dict(obj: dict[str, Any]) -> InputItem:
    return InputItem(
        id=str(obj["id"]),
        type=cast(InputType, obj["type"]),
        added_at=parse_timestamp(obj["addedAt"]),
        filename=obj.get("filename"),
        asset_path=obj.get("assetPath"),
        text_content=obj.get("textContent"),
        extracted_text=obj.get("extractedText"),
        annotations=tuple(
            InputAnnotation(
                id=str(a["id"]), text=str(a["text"]), created_at=parse_timestamp(a["createdAt"])
            )
            for a in obj.get("annotations") or ()
        ),
    )


def _flags(obj: dict[str, Any]) -> tuple[str, ...]:
    flags = obj.get("uncertaintyFlags")
    if flags is None:
        return ()
    if not isinstance(flags, list) or any(not isinstance(f, str) for f in flags):
        raise ValueError("uncertaintyFlags must be a list[str]")
    return tuple(flags)
