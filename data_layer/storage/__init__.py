"""
Storage layer: append-only CSV outputs and run-state tracking.
"""

from .csv_store import CsvStore, StorageError, file_exists
from .run_state import RunMode, RunState, RunStateMarker, detect_run_mode

__all__ = [
    "CsvStore",
    "StorageError",
    "file_exists",
    "RunMode",
    "RunState",
    "RunStateMarker",
    "detect_run_mode",
]
