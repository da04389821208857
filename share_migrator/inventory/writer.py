"""Incremental output of inventory runs.

Every row is written and flushed as soon as it is produced, so a crashed or
killed run leaves valid CSV files covering everything visited so far. Files
are truncated at the start of each run.
"""

import csv
import logging
from datetime import datetime
from pathlib import Path
from typing import IO, List, Optional

from .models import INVENTORY_COLUMNS, FolderSummary, InventoryRow

logger = logging.getLogger(__name__)

INVENTORY_CSV = "inventory.csv"
FAILED_CSV = "inventory-failed-or-denied.csv"
INVENTORY_LOG = "inventory.log"
FOLDER_INFO = "folder-info.txt"

# Names that are not valid Unicode (undecodable bytes, lone surrogates) are
# written as escapes instead of failing the run
ENCODING_ERRORS = "backslashreplace"


class InventoryWriter:
    """Streams inventory rows to ``inventory.csv``, the failure CSV and the log."""

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)
        self.inventory_path = self.output_dir / INVENTORY_CSV
        self.failed_path = self.output_dir / FAILED_CSV
        self.log_path = self.output_dir / INVENTORY_LOG
        self.folder_info_path = self.output_dir / FOLDER_INFO

        self._files: List[IO[str]] = []
        self._inventory: Optional[csv.DictWriter] = None
        self._failed: Optional[csv.DictWriter] = None
        self._log: Optional[IO[str]] = None
        self.rows_written = 0
        self.failed_rows_written = 0

    def open(self) -> "InventoryWriter":
        self.output_dir.mkdir(parents=True, exist_ok=True)
        inventory_file = self._open(self.inventory_path, newline="")
        failed_file = self._open(self.failed_path, newline="")
        self._log = self._open(self.log_path)
        self._files = [inventory_file, failed_file, self._log]

        self._inventory = csv.DictWriter(inventory_file, fieldnames=INVENTORY_COLUMNS)
        self._failed = csv.DictWriter(failed_file, fieldnames=INVENTORY_COLUMNS)
        self._inventory.writeheader()
        self._failed.writeheader()
        inventory_file.flush()
        failed_file.flush()
        return self

    @staticmethod
    def _open(path: Path, newline: Optional[str] = None) -> IO[str]:
        return open(path, "w", newline=newline, encoding="utf-8", errors=ENCODING_ERRORS)

    def write_row(self, row: InventoryRow) -> None:
        """Append one row to every output and flush."""
        if self._inventory is None or self._failed is None or self._log is None:
            raise RuntimeError("InventoryWriter is not open")

        csv_row = row.to_csv_row()
        self._inventory.writerow(csv_row)
        self._files[0].flush()
        self.rows_written += 1

        if row.access_status.is_failure:
            self._failed.writerow(csv_row)
            self._files[1].flush()
            self.failed_rows_written += 1

        self.log(row.to_log_line())

    def log(self, message: str) -> None:
        if self._log is None:
            raise RuntimeError("InventoryWriter is not open")
        stamp = datetime.now().isoformat(timespec="seconds")
        self._log.write(f"{stamp} {message}\n")
        self._log.flush()

    def write_summary(self, summary: FolderSummary) -> None:
        summary.write(self.folder_info_path)
        logger.debug(f"Wrote folder summary to {self.folder_info_path}")

    def close(self) -> None:
        for handle in self._files:
            try:
                handle.close()
            except OSError as e:
                logger.warning(f"Error closing inventory output {handle.name}: {e}")
        self._files = []
        self._inventory = None
        self._failed = None
        self._log = None

    def __enter__(self) -> "InventoryWriter":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
