from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Sequence

from inputforge.core.model import InputItem, Persona


Role = Literal["system", "user", "assistant"]

CONTENT_LIMIT = 2000


@dataclass(frozen=True)
class AIMessage:
    role: Role
    content: str


@dataclass(frozen=True)
class AnalysisRequest:
    messages: list[AIMessage]
    project_name: str
    version_number: int


BASE_PROMPT = (
    "You are a project planning assistant. Analyze inputs and create structured, "
    "actionable project plans. Be thorough, practical, and precise."
)

OUTPUT_SCHEMA = """{
  "description": "A high-level summary of the project plan",
  "milestones": [
    {
      "title": "Milestone title",
      "deliverables": [
        {
          "title": "Deliverable title",
          "tasks": [
            {
              "title": "Task title",
              "dueDate": "2025-01-15T00:00:00Z or null",
              "deferDate": "2025-01-01T00:00:00Z or null",
              "estimate": "2h or null",
              "context": "@office or null",
              "type": "development or null",
              "isFlagged": false,
              "notes": "Additional notes or null",
              "nextActions": [
                {
                  "title": "Next action title",
                  "context": "@mac or null",
                  "estimate": "30m or null",
                  "notes": "Notes or null"
                }
              ]
            }
          ]
        }
      ]
    }
  ],
  "uncertaintyFlags": ["List of areas where information is unclear or missing"],
  "clarityScore": 0.75
}"""

RULES = """## Rules
- Output ONLY the JSON object, no markdown fencing, no explanation
- clarityScore: 0.0 (no clarity) to 1.0 (completely clear)
- uncertaintyFlags: list specific gaps, ambiguities, or missing information
- All dates must be ISO 8601 format
- Use null (not empty string) for absent optional fields"""


def build_system_prompt(persona: Persona) -> str:
    prompt = BASE_PROMPT
    if not persona.is_neutral:
        prompt += f"\n\n{persona.system_prompt}"
    return (
        f"{prompt}\n\n"
        "You are analyzing project inputs to produce a structured plan. "
        "Your response MUST be valid JSON matching the following schema exactly.\n\n"
        f"## Output JSON Schema\n\n{OUTPUT_SCHEMA}\n\n{RULES}"
    )


def build_analysis_request(
    *,
    persona: Persona,
    inputs: Sequence[InputItem],
    project_name: str,
    version_number: int,
    goal_text: str = "",
) -> AnalysisRequest:
    user = f"Project: {project_name}\nAnalysis Version: {version_number}\n"
    if goal_text.strip():
        user += f"Goal: {goal_text.strip()}\n"
    user += (
        f"\nInputs:\n{describe_inputs(inputs)}\n\n"
        "Analyze all inputs and produce a structured project plan as JSON."
    )
    return AnalysisRequest(
        messages=[
            AIMessage(role="system", content=build_system_prompt(persona)),
            AIMessage(role="user", content=user),
        ],
        project_name=project_name,
        version_number=version_number,
    )


def describe_inputs(inputs: Sequence[InputItem]) -> str:
    if not inputs:
        return "(no inputs provided)"

    lines: list[str] = []
    for idx, item in enumerate(inputs, start=1):
        desc = f"{idx}. [{item.type}]"
        if item.filename:
            desc += f" {item.filename}"
        if item.text_content:
            desc += f"\n   Content: {_truncate(item.text_content)}"
        if item.extracted_text:
            desc += f"\n   Extracted content: {_truncate(item.extracted_text)}"
        if item.annotations:
            notes = "\n".join(f"   - {a.text}" for a in item.annotations)
            desc += f"\n   Annotations:\n{notes}"
        lines.append(desc)
    return "\n".join(lines)


def _truncate(text: str) -> str:
    if len(text) <= CONTENT_LIMIT:
        return text
    return text[:CONTENT_LIMIT] + "... (truncated)"
