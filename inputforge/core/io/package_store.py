"""Read and write the on-disk project bundle.

Layout:

    <project>.inputforge/
      project.json        metadata + current analysis
      assets/<name>       one file per input blob
      versions/v001.json  one file per snapshot, zero-padded

Each file is replaced atomically, but a save touches many files and is not
transactional as a whole: a crash part-way through can leave new metadata
next to an older set of version files.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from inputforge.core.ai.contracts import format_timestamp, parse_timestamp
from inputforge.core.bundle import ProjectBundle
from inputforge.core.errors import CorruptError, NotFoundError, PersistenceError
from inputforge.core.io.codec import (
    input_from_dict,
    input_to_dict,
    persona_from_dict,
    persona_to_dict,
    result_from_dict,
    result_to_dict,
    snapshot_from_dict,
    snapshot_to_dict,
)
from inputforge.core.ledger.version_ledger import VersionLedger
from inputforge.core.model import VersionSnapshot

logger = logging.getLogger(__name__)

METADATA_FILENAME = "project.json"
ASSETS_DIRNAME = "assets"
VERSIONS_DIRNAME = "versions"
BUNDLE_SUFFIX = ".inputforge"

_locks_guard = threading.Lock()
# resolved path -> [lock, number of savers holding or waiting on it]
_path_locks: dict[Path, list[Any]] = {}


@contextmanager
def _path_lock(path: Path) -> Iterator[None]:
    """Serialize saves per bundle path; the entry is dropped once no saver uses it."""
    key = path.resolve()
    with _locks_guard:
        entry = _path_locks.setdefault(key, [threading.Lock(), 0])
        entry[1] += 1
    try:
        with entry[0]:
            yield
    finally:
        with _locks_guard:
            entry[1] -= 1
            if entry[1] == 0:
                del _path_locks[key]


def version_filename(version_number: int) -> str:
    return f"v{version_number:03d}.json"


class PackageStore:
    def load(self, path: str | Path) -> ProjectBundle:
        p = Path(path)
        if not p.is_dir():
            raise NotFoundError(
                code="E_BUNDLE_NOT_FOUND", message="bundle directory does not exist", file=str(p)
            )

        meta_path = p / METADATA_FILENAME
        if not meta_path.is_file():
            raise CorruptError(
                code="E_METADATA_MISSING",
                message=f"{METADATA_FILENAME} is missing",
                file=str(p),
            )

        try:
            meta = json.loads(meta_path.read_text(encoding="utf-8"))
            bundle = _bundle_from_metadata(meta)
        except (ValueError, KeyError, TypeError) as e:
            raise CorruptError(code="E_METADATA_PARSE", message=str(e), file=str(meta_path)) from e
        except OSError as e:
            raise PersistenceError(code="E_FILE_READ", message=str(e), file=str(meta_path)) from e

        bundle.ledger = VersionLedger(_load_versions(p / VERSIONS_DIRNAME))
        assets_dir = p / ASSETS_DIRNAME
        if assets_dir.is_dir():
            bundle.stored_assets = {a.name for a in assets_dir.iterdir() if a.is_file()}
        bundle.path = p

        logger.info(f"Loaded bundle {p} ({len(bundle.ledger)} versions)")
        return bundle

    def save(self, bundle: ProjectBundle, path: str | Path) -> None:
        p = Path(path)
        with _path_lock(p):
            try:
                self._write(bundle, p)
            except OSError as e:
                # Nothing is cleared on failure: staged assets and in-memory versions survive.
                raise PersistenceError(code="E_FILE_WRITE", message=str(e), file=str(p)) from e
        bundle.mark_saved(p)
        logger.info(f"Saved bundle {p} ({len(bundle.ledger)} versions)")

    def _write(self, bundle: ProjectBundle, p: Path) -> None:
        p.mkdir(parents=True, exist_ok=True)
        _write_json(p / METADATA_FILENAME, _bundle_to_metadata(bundle))

        assets_dir = p / ASSETS_DIRNAME
        assets_dir.mkdir(exist_ok=True)
        for name, data in bundle.staged_assets.items():
            target = assets_dir / name
            if target.exists():
                continue
            _write_bytes(target, data)
        if bundle.path is not None and bundle.path.resolve() != p.resolve():
            _copy_stored_assets(bundle, bundle.path / ASSETS_DIRNAME, assets_dir)

        versions_dir = p / VERSIONS_DIRNAME
        versions_dir.mkdir(exist_ok=True)
        for snapshot in bundle.ledger:
            target = versions_dir / version_filename(snapshot.version_number)
            _write_json(target, snapshot_to_dict(snapshot))

    def read_asset(self, bundle: ProjectBundle, name: str) -> bytes:
        if name in bundle.staged_assets:
            return bundle.staged_assets[name]
        if bundle.path is None:
            raise NotFoundError(code="E_ASSET_NOT_FOUND", message=f"asset not saved yet: {name}")
        target = bundle.path / ASSETS_DIRNAME / name
        try:
            return target.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(
                code="E_ASSET_NOT_FOUND", message="asset does not exist", file=str(target)
            ) from e
        except OSError as e:
            raise PersistenceError(code="E_FILE_READ", message=str(e), file=str(target)) from e


def _copy_stored_assets(bundle: ProjectBundle, source: Path, target_dir: Path) -> None:
    # Save-as: blobs persisted under the previous location must follow the bundle.
    for name in sorted(bundle.stored_assets):
        target = target_dir / name
        if target.exists():
            continue
        src = source / name
        if not src.is_file():
            logger.warning(f"Stored asset {name} is missing from {source}; not copied")
            continue
        _write_bytes(target, src.read_bytes())


def _load_versions(versions_dir: Path) -> list[VersionSnapshot]:
    if not versions_dir.is_dir():
        return []
    try:
        files = sorted(f for f in versions_dir.iterdir() if f.is_file() and f.suffix == ".json")
    except OSError as e:
        logger.warning(f"Could not list {versions_dir}: {e}")
        return []

    snapshots: list[VersionSnapshot] = []
    seen: set[int] = set()
    for f in files:
        try:
            snap = snapshot_from_dict(json.loads(f.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Skipping unreadable version file {f.name}: {e}")
            continue
        if snap.version_number in seen:
            logger.warning(f"Skipping duplicate version v{snap.version_number} in {f.name}")
            continue
        seen.add(snap.version_number)
        snapshots.append(snap)
    return snapshots


def _bundle_to_metadata(bundle: ProjectBundle) -> dict[str, Any]:
    return {
        "id": bundle.id,
        "name": bundle.name,
        "context": bundle.context,
        "createdAt": format_timestamp(bundle.created_at),
        "modifiedAt": format_timestamp(bundle.modified_at),
        "persona": persona_to_dict(bundle.persona),
        "goalText": bundle.goal_text,
        "inputs": [input_to_dict(i) for i in bundle.inputs],
        "currentAnalysis": (
            result_to_dict(bundle.current_analysis) if bundle.current_analysis else None
        ),
    }


def _bundle_from_metadata(meta: Any) -> ProjectBundle:
    if not isinstance(meta, dict):
        raise ValueError("top-level document must be a mapping/object")
    current = meta.get("currentAnalysis")
    return ProjectBundle(
        id=str(meta["id"]),
        name=str(meta["name"]),
        context=meta.get("context", "work"),
        persona=persona_from_dict(meta["persona"]),
        goal_text=str(meta.get("goalText", "")),
        inputs=[input_from_dict(i) for i in meta.get("inputs") or []],
        created_at=parse_timestamp(meta["createdAt"]),
        modified_at=parse_timestamp(meta["modifiedAt"]),
        current_analysis=result_from_dict(current) if current else None,
    )


def _write_json(target: Path, payload: Any) -> None:
    text = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False) + "\n"
    _write_bytes(target, text.encode("utf-8"))


def _write_bytes(target: Path, data: bytes) -> None:
    fd, tmp = tempfile.mkstemp(dir=str(target.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, target)
    except BaseException:
        os.unlink(tmp)
        raise
