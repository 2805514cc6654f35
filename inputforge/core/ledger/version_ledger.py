from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, Iterator, Optional, Sequence

from inputforge.core.model import AnalysisResult, VersionSnapshot

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


class VersionLedger:
    """Append-only, ordered sequence of plan snapshots.

    All numbering is decided here: a new entry is always max(existing) + 1,
    whatever number the caller's result carries. Snapshots are frozen and
    there is no operation that removes or replaces one.
    """

    def __init__(
        self,
        snapshots: Iterable[VersionSnapshot] = (),
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._snapshots: list[VersionSnapshot] = sorted(snapshots, key=lambda s: s.version_number)
        self._clock = clock

    def __len__(self) -> int:
        return len(self._snapshots)

    def __iter__(self) -> Iterator[VersionSnapshot]:
        return iter(tuple(self._snapshots))

    @property
    def snapshots(self) -> tuple[VersionSnapshot, ...]:
        return tuple(self._snapshots)

    def latest_version_number(self) -> int:
        return max((s.version_number for s in self._snapshots), default=0)

    def latest(self) -> Optional[VersionSnapshot]:
        return self._snapshots[-1] if self._snapshots else None

    def get(self, version_number: int) -> Optional[VersionSnapshot]:
        for s in self._snapshots:
            if s.version_number == version_number:
                return s
        return None

    def append(
        self,
        result: AnalysisResult,
        persona_label: str,
        input_refs: Sequence[str],
    ) -> VersionSnapshot:
        number = self.latest_version_number() + 1
        if result.version_number and result.version_number != number:
            logger.debug(
                f"Result labelled v{result.version_number} stored as v{number}"
            )
        snapshot = VersionSnapshot(
            id=str(uuid.uuid4()),
            version_number=number,
            timestamp=self._clock(),
            persona_label=persona_label,
            clarity_score=result.clarity_score,
            plan=result.plan,
            uncertainty_flags=tuple(result.uncertainty_flags),
            input_refs=tuple(input_refs),
        )
        self._snapshots.append(snapshot)
        logger.info(f"Appended version v{number} (persona={persona_label})")
        return snapshot

    def restore(
        self,
        snapshot: VersionSnapshot,
        persona_label: str,
        input_refs: Sequence[str],
    ) -> AnalysisResult:
        """Re-append an older revision as the next version. History is never rewritten."""
        restored = self.append(
            AnalysisResult(
                plan=snapshot.plan,
                clarity_score=snapshot.clarity_score,
                uncertainty_flags=snapshot.uncertainty_flags,
            ),
            persona_label,
            input_refs,
        )
        logger.info(f"Restored v{snapshot.version_number} as v{restored.version_number}")
        return restored.to_result()
