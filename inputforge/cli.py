from __future__ import annotations

import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table
from rich.tree import Tree

from inputforge.core.ai.gateway import GatewaySettings, build_gateway
from inputforge.core.ai.orchestrator import AnalysisOrchestrator, AnalysisState
from inputforge.core.bundle import ProjectBundle
from inputforge.core.diff.tree_diff import DiffEntry, diff, diff_flags, diff_to_dict, summarize
from inputforge.core.errors import ForgeError, PersistenceError, ValidationError
from inputforge.core.export.taskpaper import format_taskpaper
from inputforge.core.io.package_store import PackageStore
from inputforge.core.ledger.version_ledger import utc_now
from inputforge.core.model import InputItem, VersionSnapshot
from inputforge.core.personas.persona_config import (
    PersonaConfigError,
    load_and_merge,
    resolve_persona,
)

app = typer.Typer(add_completion=False, no_args_is_help=True)
console = Console()
store = PackageStore()

INPUT_TYPES = (
    "document",
    "image",
    "screenshot",
    "audio",
    "video",
    "text",
    "mindmap",
    "wardleyMap",
    "chat",
)

STATUS_MARKERS = {"added": "+", "removed": "-", "modified": "~", "unchanged": "="}
STATUS_STYLES = {"added": "green", "removed": "red", "modified": "yellow", "unchanged": "dim"}


@app.callback()
def _callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """InputForge CLI: turn project inputs into versioned AI plans."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )


@app.command("init")
def init(
    path: str = typer.Argument(..., help="Bundle directory to create (e.g. MyProject.inputforge)"),
    name: Optional[str] = typer.Option(None, "--name", help="Project name (default: directory stem)"),
    context: str = typer.Option("work", "--context", help="Project context: work|personal"),
    persona: str = typer.Option("None", "--persona", help="Persona name"),
    goal: str = typer.Option("", "--goal", help="Free-text project goal"),
    persona_file: Optional[str] = typer.Option(
        None, "--persona-file", help="Optional YAML file to add/override personas"
    ),
) -> None:
    """Create an empty project bundle."""
    p = Path(path)
    if p.exists():
        _fail(PersistenceError(code="E_BUNDLE_EXISTS", message="path already exists", file=str(p)), 1)
    if context not in ("work", "personal"):
        _fail(
            ValidationError(
                code="E_UNKNOWN_CONTEXT",
                message=f"unknown context: {context} (choose one of: work, personal)",
                path="context",
            ),
            2,
        )

    bundle = ProjectBundle(
        name=name or p.stem,
        context=context,  # type: ignore[arg-type]
        persona=_resolve_persona(persona, persona_file),
        goal_text=goal,
    )
    _save(bundle, p)
    typer.echo(f"Created {p}")


@app.command("add-input")
def add_input(
    bundle_path: str = typer.Argument(..., help="Path to a project bundle"),
    text: Optional[str] = typer.Option(None, "--text", help="Inline text input"),
    file: Optional[Path] = typer.Option(None, "--file", help="File to copy into the bundle"),
    input_type: Optional[str] = typer.Option(
        None, "--type", help=f"Input type: {'|'.join(INPUT_TYPES)}"
    ),
    note: list[str] = typer.Option([], "--note", help="Annotation (repeatable)"),
) -> None:
    """Add an input (inline text or a file) to a bundle."""
    if (text is None) == (file is None):
        _fail(
            ValidationError(
                code="E_INPUT_SOURCE", message="pass exactly one of --text or --file", path="input"
            ),
            2,
        )
    kind = input_type or ("text" if text is not None else "document")
    if kind not in INPUT_TYPES:
        _fail(
            ValidationError(
                code="E_UNKNOWN_INPUT_TYPE",
                message=f"unknown input type: {kind} (choose one of: {', '.join(INPUT_TYPES)})",
                path="type",
            ),
            2,
        )

    data: Optional[bytes] = None
    if file is not None:
        try:
            data = file.read_bytes()
        except OSError as e:
            _fail(PersistenceError(code="E_FILE_READ", message=str(e), file=str(file)), 1)

    bundle = _load(bundle_path)
    item = InputItem(
        id=str(uuid.uuid4()),
        type=kind,  # type: ignore[arg-type]
        added_at=utc_now(),
        filename=file.name if file is not None else None,
        text_content=text,
    )
    try:
        item = bundle.add_input(item, data)
        for n in note:
            bundle.add_annotation(item.id, n)
    except ValidationError as e:
        _fail(e, 2)
    _save(bundle, Path(bundle_path))
    typer.echo(item.id)


@app.command("remove-input")
def remove_input(
    bundle_path: str = typer.Argument(..., help="Path to a project bundle"),
    input_id: str = typer.Argument(..., help="Input id"),
) -> None:
    """Remove an input from a bundle (its stored asset file is kept)."""
    bundle = _load(bundle_path)
    if not bundle.remove_input(input_id):
        _fail(
            ValidationError(code="E_UNKNOWN_INPUT", message=f"no input with id {input_id}", path="inputs"),
            2,
        )
    _save(bundle, Path(bundle_path))
    typer.echo(f"Removed {input_id}")


@app.command("annotate")
def annotate(
    bundle_path: str = typer.Argument(..., help="Path to a project bundle"),
    input_id: str = typer.Argument(..., help="Input id"),
    text: str = typer.Argument(..., help="Annotation text"),
) -> None:
    """Attach a sticky-note annotation to an input."""
    bundle = _load(bundle_path)
    try:
        bundle.add_annotation(input_id, text)
    except ValidationError as e:
        _fail(e, 2)
    _save(bundle, Path(bundle_path))
    typer.echo(f"Annotated {input_id}")


@app.command("persona")
def persona(
    bundle_path: str = typer.Argument(..., help="Path to a project bundle"),
    name: str = typer.Argument(..., help="Persona name"),
    persona_file: Optional[str] = typer.Option(
        None, "--persona-file", help="Optional YAML file to add/override personas"
    ),
) -> None:
    """Set the persona used for the next analysis."""
    bundle = _load(bundle_path)
    bundle.set_persona(_resolve_persona(name, persona_file))
    _save(bundle, Path(bundle_path))
    typer.echo(f"Persona: {bundle.persona.name}")


@app.command("personas")
def personas(
    persona_file: Optional[str] = typer.Option(
        None, "--persona-file", help="Optional YAML file to add/override personas"
    ),
) -> None:
    """List available personas."""
    catalog = _persona_catalog(persona_file)
    table = Table(title="Personas")
    table.add_column("Name")
    table.add_column("Built-in")
    table.add_column("Prompt")
    for key in sorted(catalog):
        p = catalog[key]
        table.add_row(escape(p.name), "yes" if p.is_built_in else "no", escape(p.system_prompt or "(neutral)"))
    console.print(table)


@app.command("analyze")
def analyze(
    bundle_path: str = typer.Argument(..., help="Path to a project bundle"),
    backend: Optional[str] = typer.Option(
        None, "--backend", help="AI backend: openai|mock (default: $INPUTFORGE_BACKEND or openai)"
    ),
    model: Optional[str] = typer.Option(None, "--model", help="Model id (default: $OPENAI_MODEL)"),
) -> None:
    """Run one analysis and append the result as a new version."""
    settings = GatewaySettings.from_env(backend=backend, model=model)
    try:
        gateway = build_gateway(settings)
    except ValidationError as e:
        _fail(e, 2)

    bundle = _load(bundle_path)

    with Progress(
        TextColumn("{task.description}"), BarColumn(), console=console, transient=True
    ) as progress:
        bar = progress.add_task("Analyzing", total=1.0)

        def on_state(state: AnalysisState) -> None:
            if state.is_analyzing:
                progress.update(bar, completed=state.progress)

        orchestrator = AnalysisOrchestrator(gateway, on_state=on_state)

        async def run() -> Optional[VersionSnapshot]:
            orchestrator.submit(bundle)
            return await orchestrator.wait()

        try:
            snapshot = asyncio.run(run())
        except ValidationError as e:
            _fail(e, 2)

    state = orchestrator.state
    if state.kind == "error":
        _fail(
            state.error
            or ForgeError(code="E_ANALYSIS_FAILED", message=state.message or "analysis failed"),
            2,
        )
    if snapshot is None:
        typer.echo("Analysis cancelled; no version was added.")
        return

    _save(bundle, Path(bundle_path))
    typer.echo(
        f"v{snapshot.version_number}: clarity {snapshot.clarity_score:.0%}, "
        f"{len(snapshot.plan.milestones)} milestones, {len(snapshot.uncertainty_flags)} flags"
    )


@app.command("versions")
def versions(
    bundle_path: str = typer.Argument(..., help="Path to a project bundle"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """List stored versions."""
    _check_format(format)
    bundle = _load(bundle_path)

    if format == "json":
        payload = {
            "tool": "inputforge",
            "command": "versions",
            "versions": [
                {
                    "version": s.version_number,
                    "timestamp": s.timestamp.isoformat(),
                    "persona": s.persona_label,
                    "clarity_score": s.clarity_score,
                    "milestones": len(s.plan.milestones),
                    "uncertainty_flags": list(s.uncertainty_flags),
                }
                for s in bundle.ledger
            ],
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    if not len(bundle.ledger):
        typer.echo("No versions yet.")
        return

    table = Table(title=escape(bundle.name))
    table.add_column("Version")
    table.add_column("Timestamp")
    table.add_column("Persona")
    table.add_column("Clarity")
    table.add_column("Milestones")
    table.add_column("Flags")
    for s in bundle.ledger:
        table.add_row(
            f"v{s.version_number}",
            s.timestamp.strftime("%Y-%m-%d %H:%M"),
            escape(s.persona_label),
            f"{s.clarity_score:.0%}",
            str(len(s.plan.milestones)),
            str(len(s.uncertainty_flags)),
        )
    console.print(table)


@app.command("diff")
def diff_cmd(
    bundle_path: str = typer.Argument(..., help="Path to a project bundle"),
    old: int = typer.Argument(..., help="Older version number"),
    new: int = typer.Argument(..., help="Newer version number"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Compare two versions structurally."""
    _check_format(format)
    bundle = _load(bundle_path)
    older = _snapshot(bundle, old)
    newer = _snapshot(bundle, new)

    entries = diff(older.plan, newer.plan)
    flags = diff_flags(older.uncertainty_flags, newer.uncertainty_flags)

    if format == "json":
        payload = {
            "tool": "inputforge",
            "command": "diff",
            "old": old,
            "new": new,
            "description_changed": older.plan.description != newer.plan.description,
            "clarity_delta": newer.clarity_score - older.clarity_score,
            "summary": summarize(entries),
            "milestones": diff_to_dict(entries),
            "uncertainty_flags": {"kept": flags.kept, "removed": flags.removed, "added": flags.added},
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    tree = Tree(f"v{old} -> v{new}")
    _add_diff_nodes(tree, entries)
    console.print(tree)
    counts = summarize(entries)
    typer.echo(", ".join(f"{k}={v}" for k, v in counts.items()))
    for flag in flags.removed:
        typer.echo(f"- flag: {flag}")
    for flag in flags.added:
        typer.echo(f"+ flag: {flag}")


@app.command("restore")
def restore(
    bundle_path: str = typer.Argument(..., help="Path to a project bundle"),
    version: int = typer.Argument(..., help="Version number to restore"),
) -> None:
    """Re-append an older version as the newest one (history is kept)."""
    bundle = _load(bundle_path)
    target = _snapshot(bundle, version)
    result = bundle.restore_version(target)
    _save(bundle, Path(bundle_path))
    typer.echo(f"Restored v{version} as v{result.version_number}")


@app.command("export")
def export(
    bundle_path: str = typer.Argument(..., help="Path to a project bundle"),
    version: Optional[int] = typer.Option(None, "--version", help="Version (default: current)"),
    out: Optional[str] = typer.Option(None, "--out", help="Write TaskPaper here instead of stdout"),
) -> None:
    """Export a plan as TaskPaper."""
    bundle = _load(bundle_path)
    if version is not None:
        snap = _snapshot(bundle, version)
        plan, persona_label = snap.plan, snap.persona_label
    elif bundle.current_analysis is not None:
        plan, persona_label = bundle.current_analysis.plan, bundle.persona.name
    else:
        _fail(ValidationError(code="E_NO_ANALYSIS", message="bundle has no analysis yet"), 2)

    text = format_taskpaper(plan, project_name=bundle.name, persona_label=persona_label)
    if out is None:
        typer.echo(text, nl=False)
        return
    try:
        Path(out).write_text(text, encoding="utf-8")
    except OSError as e:
        _fail(PersistenceError(code="E_FILE_WRITE", message=str(e), file=out), 1)
    typer.echo(f"Wrote {out}")


def _add_diff_nodes(parent: Tree, entries: list[DiffEntry]) -> None:
    for e in entries:
        style = STATUS_STYLES[e.status]
        label = f"[{style}]{STATUS_MARKERS[e.status]} {escape(e.title)}[/{style}]"
        node = parent.add(label)
        _add_diff_nodes(node, e.children)


def _check_format(format: str) -> None:
    if format not in ("text", "json"):
        _fail(
            ValidationError(
                code="E_UNKNOWN_FORMAT",
                message=f"unknown format: {format} (choose one of: text, json)",
                path="format",
            ),
            2,
        )


def _persona_catalog(persona_file: Optional[str]):
    try:
        return load_and_merge(persona_file)
    except FileNotFoundError:
        _fail(
            PersistenceError(
                code="E_PERSONA_FILE_NOT_FOUND",
                message=f"persona file not found: {persona_file}",
                path="persona_file",
            ),
            1,
        )
    except PersonaConfigError as e:
        _fail(ValidationError(code="E_PERSONA_FILE_INVALID", message=str(e), path="persona_file"), 2)


def _resolve_persona(name: str, persona_file: Optional[str]):
    try:
        return resolve_persona(name, _persona_catalog(persona_file))
    except PersonaConfigError as e:
        _fail(ValidationError(code="E_UNKNOWN_PERSONA", message=str(e), path="persona"), 2)


def _snapshot(bundle: ProjectBundle, version: int) -> VersionSnapshot:
    snap = bundle.ledger.get(version)
    if snap is None:
        _fail(
            ValidationError(code="E_UNKNOWN_VERSION", message=f"no version v{version}", path="version"),
            2,
        )
    return snap


def _load(path: str) -> ProjectBundle:
    try:
        return store.load(path)
    except PersistenceError as e:
        _fail(e, 1)


def _save(bundle: ProjectBundle, path: Path) -> None:
    try:
        store.save(bundle, path)
    except PersistenceError as e:
        _fail(e, 1)


def _fail(error: ForgeError, code: int) -> NoReturn:
    _print_errors([error])
    raise typer.Exit(code=code)


def _print_errors(errors: list[ForgeError]) -> None:
    errors_sorted = sorted(errors, key=lambda e: (e.file or "", e.path or "", e.code))
    for e in errors_sorted:
        typer.echo(str(e), err=True)


def main() -> None:
    app(prog_name="inputforge")


cli = typer.main.get_command(app)

if __name__ == "__main__":
    main()
