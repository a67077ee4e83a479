"""
Append-only CSV persistence for canonical records.

The store is the only writer of the output files. It creates a file with its
header exactly once, appends rows after everything already committed, and never
rewrites, reorders or deletes existing rows. Each append is flushed and fsynced
before returning. There is no locking: one process, one writer per file.

Failure policy:
- initialize(): cannot create the directory or header -> StorageError (fatal)
- append(): I/O error -> logged, returns 0; no rollback of a partial write
"""

from __future__ import annotations

import csv
import os
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import pandas as pd
from loguru import logger


class StorageError(Exception):
    """Raised when an output file or its directory cannot be created."""
    pass


def file_exists(path: Path) -> bool:
    """True for an existing regular file; any OS error counts as absent."""
    try:
        return Path(path).is_file()
    except OSError:
        return False


class CsvStore:
    """Owner of the canonical CSV outputs."""

    def __init__(self, fsync: bool = True):
        self.fsync = fsync

    def initialize(self, path: Path, columns: Sequence[str]) -> bool:
        """
        Create ``path`` with a header row if it does not exist yet.

        An existing non-empty file is left untouched, so calling this again is
        harmless. Returns True when a header was written.

        Raises:
            StorageError: if the directory or file cannot be created
        """
        path = Path(path)
        try:
            if path.is_file() and path.stat().st_size > 0:
                existing = self.read_header(path)
                if existing is not None and list(existing) != list(columns):
                    logger.warning(f"{path}: header {existing} differs from expected {list(columns)}; leaving as-is")
                return False
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", newline="", encoding="utf-8") as fh:
                pd.DataFrame(columns=list(columns)).to_csv(fh, index=False, lineterminator="\n")
                fh.flush()
                if self.fsync:
                    os.fsync(fh.fileno())
        except OSError as e:
            raise StorageError(f"Cannot initialize {path}: {e}") from e

        logger.info(f"Initialized {path} with {len(columns)} columns")
        return True

    def append(self, path: Path, records: Iterable, columns: Optional[Sequence[str]] = None) -> int:
        """
        Append one row per record, in the file's column order.

        Records provide ``to_row()`` returning formatted cells. Returns the
        number of rows written; 0 on any I/O error.
        """
        path = Path(path)
        rows: List[List[str]] = [r.to_row() for r in records]
        if not rows:
            return 0
        if columns is None:
            columns = self.read_header(path)
        if columns is not None and any(len(row) != len(columns) for row in rows):
            logger.error(f"{path}: refusing to append rows that do not match the {len(columns)}-column header")
            return 0

        frame = pd.DataFrame(rows, columns=list(columns) if columns is not None else None, dtype=str)
        try:
            with open(path, "a", newline="", encoding="utf-8") as fh:
                frame.to_csv(fh, header=False, index=False, lineterminator="\n")
                fh.flush()
                if self.fsync:
                    os.fsync(fh.fileno())
        except OSError as e:
            logger.error(f"Error appending {len(rows)} rows to {path}: {e}")
            return 0

        logger.debug(f"Appended {len(rows)} rows to {path}")
        return len(rows)

    @staticmethod
    def read_header(path: Path) -> Optional[List[str]]:
        """Header row of an existing file, or None if unreadable/empty."""
        try:
            with open(path, newline="", encoding="utf-8") as fh:
                return next(csv.reader(fh), None)
        except OSError:
            return None

    @staticmethod
    def row_count(path: Path) -> int:
        """Number of data rows (header excluded); 0 when the file is missing."""
        if not file_exists(path):
            return 0
        try:
            return len(pd.read_csv(path, dtype=str, keep_default_na=False))
        except pd.errors.EmptyDataError:
            return 0
