"""
Run-mode detection for the collector.

A run is a first run (historical backfill + snapshots) only when none of the
REST output files exist; any existing output file means a recurring run
(snapshots only), so immutable history is never downloaded twice.

File existence alone is a fragile signal: deleting one output silently changes
future behaviour. The collector therefore also persists a small JSON marker
once the backfill has completed. When the marker is present it decides the
mode, and output files that have gone missing are reported instead of
triggering a second backfill.
"""

from __future__ import annotations

import json
import shutil
import tempfile
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from loguru import logger

from .csv_store import file_exists


class RunMode(str, Enum):
    FIRST_RUN = "first_run"
    RECURRING_RUN = "recurring_run"


@dataclass
class RunState:
    """Persisted marker contents."""
    backfill_completed_at: Optional[str] = None
    backfill_records: int = 0
    phases_completed: Dict[str, str] = field(default_factory=dict)


class RunStateMarker:
    """JSON run-state marker with atomic replace on save."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return file_exists(self.path)

    def load(self) -> Optional[RunState]:
        """Marker contents, or None when absent or unreadable."""
        if not self.exists():
            return None
        try:
            data = json.loads(self.path.read_text())
            return RunState(
                backfill_completed_at=data.get("backfill_completed_at"),
                backfill_records=int(data.get("backfill_records", 0)),
                phases_completed=dict(data.get("phases_completed") or {}),
            )
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Run-state marker {self.path} unreadable ({e}); ignoring it")
            return None

    def save(self, state: RunState) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix="run_state_", suffix=".json", dir=str(self.path.parent))
        tmp = Path(tmp_name)
        try:
            with open(fd, "w") as fh:
                json.dump(asdict(state), fh, indent=2)
            shutil.move(str(tmp), str(self.path))
            logger.debug(f"Saved run-state marker {self.path}")
            return True
        except OSError as e:
            logger.error(f"Failed to save run-state marker {self.path}: {e}")
            tmp.unlink(missing_ok=True)
            return False

    def record_phase(self, phase: str, records: int = 0, backfill: bool = False) -> bool:
        """Stamp a completed phase; ``backfill=True`` also marks history as collected."""
        state = self.load() or RunState()
        now = datetime.now(timezone.utc).isoformat(timespec="seconds")
        state.phases_completed[phase] = now
        if backfill:
            state.backfill_completed_at = now
            state.backfill_records = records
        return self.save(state)


def existing_outputs(paths: Iterable[Path]) -> List[Path]:
    return [Path(p) for p in paths if file_exists(p)]


def detect_run_mode(paths: Iterable[Path], marker: Optional[RunStateMarker] = None) -> RunMode:
    """
    Decide first vs recurring run.

    Never raises; unreadable paths count as missing.
    """
    paths = [Path(p) for p in paths]
    present = existing_outputs(paths)

    state = marker.load() if marker is not None else None
    if state is not None and state.backfill_completed_at:
        missing = [p for p in paths if p not in present]
        if missing:
            logger.warning(
                f"Backfill completed at {state.backfill_completed_at} but outputs are missing: "
                f"{', '.join(str(p) for p in missing)}; history will not be re-collected "
                f"(run with --force-backfill, or delete {marker.path})"
            )
        return RunMode.RECURRING_RUN

    if present:
        if marker is not None and len(present) < len(paths):
            logger.warning(
                f"Only {', '.join(str(p) for p in present)} exists and no run-state marker was found; "
                "treating this as a recurring run"
            )
        return RunMode.RECURRING_RUN
    return RunMode.FIRST_RUN
