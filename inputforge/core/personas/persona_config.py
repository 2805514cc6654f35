from __future__ import annotations

from pathlib import Path

import yaml

from inputforge.core.model import Persona


NEUTRAL = Persona(name="None", system_prompt="", is_built_in=True)

BUILT_IN_PERSONAS: dict[str, Persona] = {
    p.name: p
    for p in (
        NEUTRAL,
        Persona(
            name="CPO",
            system_prompt=(
                "Emphasize product strategy, user outcomes, market fit, and prioritization. "
                "Structure plans around business impact and flag unclear user needs."
            ),
            is_built_in=True,
        ),
        Persona(
            name="Engineer",
            system_prompt=(
                "Emphasize technical feasibility, architecture, implementation complexity, "
                "and dependencies. Structure plans around technical milestones and flag technical risks."
            ),
            is_built_in=True,
        ),
        Persona(
            name="Parent",
            system_prompt=(
                "Emphasize practical logistics, family scheduling, safety considerations, "
                "and age-appropriate planning. Structure plans around family routines and "
                "realistic time windows."
            ),
            is_built_in=True,
        ),
        Persona(
            name="Homeowner",
            system_prompt=(
                "Emphasize maintenance schedules, contractor coordination, permits, budgeting, "
                "and seasonal planning. Structure plans around project phases and dependencies "
                "between trades."
            ),
            is_built_in=True,
        ),
    )
}


class PersonaConfigError(ValueError):
    pass


def load_persona_file(path: str | Path) -> dict[str, Persona]:
    """Load custom personas from a YAML file.

    Format:
      <name>: "<system prompt>"

    Returns a mapping of persona name -> Persona.
    """
    p = Path(path)
    raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise PersonaConfigError("persona file must be a mapping of name -> system prompt")

    out: dict[str, Persona] = {}
    for k, v in raw.items():
        if not isinstance(k, str) or not k.strip():
            raise PersonaConfigError("persona names must be non-empty strings")
        if not isinstance(v, str):
            raise PersonaConfigError(f"persona '{k}' must map to a string prompt")
        out[k.strip()] = Persona(name=k.strip(), system_prompt=v.strip())
    return out


def merged_personas(overrides: dict[str, Persona] | None = None) -> dict[str, Persona]:
    """Return BUILT_IN_PERSONAS merged with optional custom personas.

    Custom personas replace built-ins of the same name, and may add new ones.
    """
    merged = dict(BUILT_IN_PERSONAS)
    if overrides:
        merged.update(overrides)
    return merged


def load_and_merge(persona_file: str | None) -> dict[str, Persona]:
    if not persona_file:
        return merged_personas()
    return merged_personas(load_persona_file(persona_file))


def resolve_persona(name: str, catalog: dict[str, Persona]) -> Persona:
    for key, persona in catalog.items():
        if key.lower() == name.lower():
            return persona
    raise PersonaConfigError(
        f"unknown persona: {name} (choose one of: {', '.join(sorted(catalog))})"
    )
