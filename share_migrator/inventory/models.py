"""Record types produced by inventory walks.

``InventoryRow`` is the canonical row schema of ``inventory.csv``;
``FolderSummary`` is the aggregate written once to ``folder-info.txt``.
"""

from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union


class EntryType(Enum):
    """Kind of filesystem entry a row describes."""

    FOLDER = "Folder"
    FILE = "File"


class AccessStatus(Enum):
    """Outcome of probing one filesystem entry."""

    OK = "OK"
    PARTIAL = "PARTIAL"
    DENIED = "DENIED"
    SKIPPED_REPARSE = "SKIPPED_REPARSE"
    ATTR_DENIED = "ATTR_DENIED"
    ENUMERATION_ERROR = "ENUMERATION_ERROR"

    @property
    def user_has_access(self) -> bool:
        return self in (AccessStatus.OK, AccessStatus.PARTIAL)

    @property
    def is_failure(self) -> bool:
        """Statuses reported in ``inventory-failed-or-denied.csv``."""
        return self in (
            AccessStatus.DENIED,
            AccessStatus.PARTIAL,
            AccessStatus.ATTR_DENIED,
            AccessStatus.ENUMERATION_ERROR,
        )


INVENTORY_COLUMNS: List[str] = [
    "Type",
    "Name",
    "OlderName",
    "NewName",
    "Path",
    "LastWriteTime",
    "CreationTime",
    "FileSize",
    "UserHasAccess",
    "AccessStatus",
    "AccessError",
]


@dataclass(frozen=True)
class InventoryRow:
    """One visited filesystem entry. Rows are written once and never updated."""

    entry_type: EntryType
    name: str
    path: str
    access_status: AccessStatus
    older_name: str = ""
    new_name: str = ""
    last_write_time: str = ""
    creation_time: str = ""
    file_size: Optional[int] = None
    access_error: str = ""

    @property
    def user_has_access(self) -> bool:
        return self.access_status.user_has_access

    def to_csv_row(self) -> Dict[str, str]:
        """Return the row keyed by ``INVENTORY_COLUMNS``."""
        return {
            "Type": self.entry_type.value,
            "Name": self.name,
            "OlderName": self.older_name,
            "NewName": self.new_name,
            "Path": self.path,
            "LastWriteTime": self.last_write_time,
            "CreationTime": self.creation_time,
            "FileSize": "" if self.file_size is None else str(self.file_size),
            "UserHasAccess": str(self.user_has_access),
            "AccessStatus": self.access_status.value,
            "AccessError": self.access_error,
        }

    def to_log_line(self) -> str:
        """Human readable line for ``inventory.log``."""
        line = f"[{self.access_status.value}] {self.entry_type.value}: {self.path}"
        if self.new_name:
            line += f" (renamed from '{self.older_name}')"
        elif self.older_name:
            line += f" (invalid name '{self.older_name}')"
        if self.file_size is not None and self.entry_type is EntryType.FILE:
            line += f" - {self.file_size} bytes"
        if self.access_error:
            line += f" - {self.access_error}"
        return line


def format_timestamp(epoch_seconds: Optional[float]) -> str:
    if epoch_seconds is None:
        return ""
    return datetime.fromtimestamp(epoch_seconds).isoformat(timespec="seconds")


@dataclass
class FolderSummary:
    """Aggregate counters of one inventory run (``folder-info.txt``)."""

    root: str
    started_at: str = ""
    finished_at: str = ""
    total_folders: int = 0
    total_files: int = 0
    accessible_folders: int = 0
    inaccessible_folders: int = 0
    accessible_files: int = 0
    inaccessible_files: int = 0
    skipped_reparse: int = 0
    renamed_items: int = 0
    invalid_names: int = 0
    total_bytes: int = 0
    size_computed: bool = False

    _KEYS = {
        "Root": "root",
        "StartedAt": "started_at",
        "FinishedAt": "finished_at",
        "TotalFolders": "total_folders",
        "TotalFiles": "total_files",
        "AccessibleFolders": "accessible_folders",
        "InaccessibleFolders": "inaccessible_folders",
        "AccessibleFiles": "accessible_files",
        "InaccessibleFiles": "inaccessible_files",
        "SkippedReparse": "skipped_reparse",
        "RenamedItems": "renamed_items",
        "InvalidNames": "invalid_names",
        "TotalBytes": "total_bytes",
        "SizeComputed": "size_computed",
    }

    @property
    def renamed_or_invalid(self) -> int:
        return self.renamed_items + self.invalid_names

    def record(self, row: InventoryRow) -> None:
        """Update counters with one written row."""
        if row.access_status is AccessStatus.SKIPPED_REPARSE:
            self.skipped_reparse += 1
        if row.new_name:
            self.renamed_items += 1
        elif row.older_name:
            self.invalid_names += 1

        if row.entry_type is EntryType.FOLDER:
            self.total_folders += 1
            if row.user_has_access:
                self.accessible_folders += 1
            elif row.access_status is not AccessStatus.SKIPPED_REPARSE:
                self.inaccessible_folders += 1
        else:
            self.total_files += 1
            if row.user_has_access:
                self.accessible_files += 1
            elif row.access_status is not AccessStatus.SKIPPED_REPARSE:
                self.inaccessible_files += 1

    def to_text(self) -> str:
        lines = []
        for key, attr in self._KEYS.items():
            lines.append(f"{key}: {getattr(self, attr)}")
            if key == "InvalidNames":
                lines.append(f"RenamedOrInvalid: {self.renamed_or_invalid}")
        return "\n".join(lines) + "\n"

    def write(self, path: Union[str, Path]) -> None:
        with open(path, "w", encoding="utf-8", errors="backslashreplace") as f:
            f.write(self.to_text())

    @classmethod
    def from_text(cls, text: str) -> "FolderSummary":
        """Parse ``folder-info.txt`` content. Unknown keys are ignored."""
        values: Dict[str, str] = {}
        for line in text.splitlines():
            key, sep, value = line.partition(":")
            if sep and key.strip() in cls._KEYS:
                values[cls._KEYS[key.strip()]] = value.strip()

        summary = cls(root=values.get("root", ""))
        for f in fields(cls):
            if f.name == "root" or f.name not in values:
                continue
            raw = values[f.name]
            if f.type in (int, "int"):
                setattr(summary, f.name, int(raw or 0))
            elif f.type in (bool, "bool"):
                setattr(summary, f.name, raw.lower() == "true")
            else:
                setattr(summary, f.name, raw)
        return summary

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "FolderSummary":
        return cls.from_text(Path(path).read_text(encoding="utf-8"))
