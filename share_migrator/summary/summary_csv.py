"""Centralized, lock-protected summary CSV files.

Several uploads (threads or separate processes) append to the same summary
file. Each append takes the file's ``SummaryFileLock``, appends any rows
queued by earlier failed attempts, then writes the new row in a single
``write`` call. Transient failures (anti-virus scans, other writers holding
the file) are retried with exponential backoff; a row that still cannot be
written is saved in the queue directory and appended by a later call.
"""

import csv
import io
import itertools
import json
import logging
import os
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from ..config_manager import SummaryConfig
from ..exceptions import LockError, SummaryWriteError
from .summary_lock import SummaryFileLock

logger = logging.getLogger(__name__)

_queue_counter = itertools.count()


class SummaryCsvStore:
    """Append-only CSV shared by parallel writers."""

    def __init__(
        self,
        path: Union[str, Path],
        fieldnames: Sequence[str],
        config: Optional[SummaryConfig] = None,
    ):
        self.path = Path(path)
        self.fieldnames = list(fieldnames)
        self.config = config or SummaryConfig()
        self.queue_dir = self.path.parent / self.config.queue_dir_name

    def _lock(self) -> SummaryFileLock:
        # One lock object per operation; instances are not shared between threads
        return SummaryFileLock(self.path, timeout=self.config.lock_timeout)

    def append(self, row: Dict[str, object]) -> bool:
        """Append one row.

        Returns:
            True when the row reached the CSV, False when it was queued instead

        Raises:
            SummaryWriteError: If the row could neither be written nor queued
        """
        normalized = self._normalize(row)
        attempts = self.config.write_retries
        for attempt in range(1, attempts + 1):
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self._lock():
                    self._drain_queue_locked()
                    self._append_locked([normalized])
                return True
            except (OSError, LockError) as e:
                if attempt == attempts:
                    logger.error(
                        f"Could not append to {self.path} after {attempts} attempts: {e}"
                    )
                    break
                delay = self.config.retry_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"Append to {self.path} failed (attempt {attempt}), retrying in {delay:.2f}s: {e}"
                )
                time.sleep(delay)

        self._enqueue(normalized)
        return False

    def drain_queue(self) -> int:
        """Append all queued rows under the lock. Returns the number appended."""
        if not self.pending_queue_files():
            return 0
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock():
            return self._drain_queue_locked()

    def pending_queue_files(self) -> List[Path]:
        if not self.queue_dir.is_dir():
            return []
        return sorted(self.queue_dir.glob(f"{self.path.stem}__*.json"))

    def read_rows(self) -> List[Dict[str, str]]:
        if not self.path.exists():
            return []
        with open(self.path, newline="", encoding="utf-8") as f:
            return list(csv.DictReader(f))

    def deduplicate(
        self, key_fields: Sequence[str], timestamp_field: str = "FechaHora"
    ) -> int:
        """Keep only the newest row per key (last write wins on equal timestamps).

        Returns:
            Number of rows removed
        """
        if not self.path.exists():
            return 0
        with self._lock():
            rows = self.read_rows()
            newest: Dict[tuple, tuple] = {}
            for index, row in enumerate(rows):
                key = tuple(row.get(k, "") for k in key_fields)
                rank = (row.get(timestamp_field, ""), index)
                if key not in newest or rank >= newest[key][0]:
                    newest[key] = (rank, row)
            kept = sorted(newest.values(), key=lambda item: item[0][1])
            removed = len(rows) - len(kept)
            if removed:
                self._rewrite_locked([row for _, row in kept])
                logger.info(f"Removed {removed} duplicate rows from {self.path}")
            return removed

    def _normalize(self, row: Dict[str, object]) -> Dict[str, str]:
        unknown = set(row) - set(self.fieldnames)
        if unknown:
            raise ValueError(f"Unknown summary columns: {sorted(unknown)}")
        return {name: "" if row.get(name) is None else str(row.get(name)) for name in self.fieldnames}

    def _render(self, rows: List[Dict[str, str]], header: bool) -> str:
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=self.fieldnames, lineterminator="\r\n")
        if header:
            writer.writeheader()
        writer.writerows(rows)
        return buffer.getvalue()

    def _ensure_canonical_header(self) -> bool:
        """True when a header still has to be written."""
        if not self.path.exists() or self.path.stat().st_size == 0:
            return True
        with open(self.path, newline="", encoding="utf-8") as f:
            existing = next(csv.reader(f), [])
        if existing == self.fieldnames:
            return False
        archived = self.path.with_name(
            f"{self.path.stem}.legacy-{datetime.now():%Y%m%d-%H%M%S}{self.path.suffix}"
        )
        logger.warning(
            f"{self.path} has a non-canonical header {existing}; archiving it as {archived.name}"
        )
        os.replace(self.path, archived)
        return True

    def _append_locked(self, rows: List[Dict[str, str]]) -> None:
        if not rows:
            return
        text = self._render(rows, header=self._ensure_canonical_header())
        with open(self.path, "a", newline="", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())

    def _rewrite_locked(self, rows: List[Dict[str, str]]) -> None:
        tmp = self.path.with_name(f".{self.path.name}.{os.getpid()}.tmp")
        try:
            with open(tmp, "w", newline="", encoding="utf-8") as f:
                f.write(self._render(rows, header=True))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            try:
                tmp.unlink()
            except OSError:
                pass
            raise SummaryWriteError(
                f"Could not rewrite summary: {e}", path=str(self.path), cause=e
            ) from e

    def _drain_queue_locked(self) -> int:
        drained = 0
        for queued in self.pending_queue_files():
            try:
                row = json.loads(queued.read_text(encoding="utf-8"))
            except ValueError as e:
                bad = queued.with_suffix(".bad")
                logger.error(f"Unreadable queued summary row {queued.name}: {e}")
                os.replace(queued, bad)
                continue
            self._append_locked([self._normalize(row)])
            queued.unlink()
            drained += 1
        if drained:
            logger.info(f"Appended {drained} queued rows to {self.path}")
        return drained

    def _enqueue(self, row: Dict[str, str]) -> Path:
        name = (
            f"{self.path.stem}__{datetime.now():%Y%m%d-%H%M%S-%f}"
            f"-{os.getpid()}-{threading.get_ident()}-{next(_queue_counter)}.json"
        )
        try:
            self.queue_dir.mkdir(parents=True, exist_ok=True)
            queued = self.queue_dir / name
            queued.write_text(json.dumps(row), encoding="utf-8")
        except OSError as e:
            raise SummaryWriteError(
                f"Summary row could not be written or queued: {e}",
                path=str(self.path),
                cause=e,
                recovery_suggestion="Check free space and permissions of the runs directory",
            ) from e
        logger.warning(f"Summary row queued in {queued}; it will be appended on a later run")
        return queued
