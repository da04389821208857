"""Duplicate-folder fixer.

Copy tools sometimes nest a folder inside itself (``Finance\\Finance``). For
every immediate subdirectory ``X`` of a root, the fixer moves the children of
``X\\X`` up into ``X`` and removes ``X\\X`` once it is empty.

Existing names in ``X`` are conflicts: they are skipped unless overwrite is
requested. The fixer runs in dry-run mode unless told otherwise.
"""

import csv
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Union

from .inventory.sanitizer import unique_target
from .inventory.walker import describe_error, is_reparse_point

logger = logging.getLogger(__name__)

REPORT_COLUMNS = ["Folder", "Item", "Action", "Detail", "DryRun"]


@dataclass
class FolderFixResult:
    """What happened (or would happen) to one ``X\\X`` folder."""

    folder: str
    dry_run: bool
    moved: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    overwritten: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    inner_removed: bool = False


class DuplicateFolderFixer:
    """Detects and merges self-duplicated folders under a root."""

    def __init__(
        self, root: Union[str, Path], dry_run: bool = True, overwrite: bool = False
    ):
        self.root = Path(root)
        self.dry_run = dry_run
        self.overwrite = overwrite

    def find_duplicates(self) -> List[Path]:
        """Immediate subdirectories ``X`` of the root that contain ``X\\X``."""
        found = []
        with os.scandir(self.root) as it:
            entries = sorted(it, key=lambda e: e.name)
        for entry in entries:
            try:
                st = entry.stat(follow_symlinks=False)
            except OSError as e:
                logger.warning(f"Cannot read {entry.path}: {e}")
                continue
            if is_reparse_point(st, entry.path) or not entry.is_dir(follow_symlinks=False):
                continue
            inner = Path(entry.path) / entry.name
            if inner.is_dir() and not inner.is_symlink():
                found.append(Path(entry.path))
        return found

    def run(self) -> List[FolderFixResult]:
        """Fix every duplicated folder under the root."""
        if not self.root.is_dir():
            raise ValueError(f"Root is not a directory: {self.root}")
        results = [self.fix_folder(folder) for folder in self.find_duplicates()]
        mode = "dry run" if self.dry_run else "applied"
        logger.info(f"Duplicate folder fix ({mode}): {len(results)} folders under {self.root}")
        return results

    def fix_folder(self, folder: Path) -> FolderFixResult:
        """Merge ``folder/folder.name`` into ``folder``."""
        inner = folder / folder.name
        result = FolderFixResult(folder=str(folder), dry_run=self.dry_run)
        try:
            with os.scandir(inner) as it:
                children = sorted(it, key=lambda e: e.name)
        except OSError as e:
            result.errors.append(f"{inner}: {describe_error(e)}")
            return result

        for child in children:
            target = folder / child.name
            if target == inner:
                # X\X\X cannot replace its own parent
                result.skipped.append(child.name)
                continue
            try:
                if os.path.lexists(target):
                    if not self.overwrite:
                        result.skipped.append(child.name)
                        logger.info(f"Conflict, skipping: {target}")
                        continue
                    if not self.dry_run:
                        self._replace(child.path, target, result)
                    result.overwritten.append(child.name)
                elif not self.dry_run:
                    shutil.move(child.path, str(target))
                result.moved.append(child.name)
            except OSError as e:
                result.errors.append(f"{child.path}: {describe_error(e)}")
                logger.warning(f"Could not move {child.path}: {e}")

        if self.dry_run:
            # Would be empty after the planned moves
            result.inner_removed = not result.skipped and not result.errors
        else:
            result.inner_removed = self._remove_if_empty(inner, result)
        return result

    def _replace(self, source: str, target: Path, result: FolderFixResult) -> None:
        """Move ``source`` over ``target``. ``target`` is restored if the move fails."""
        backup = unique_target(target.parent, f"{target.name}.overwritten")
        os.rename(target, backup)
        try:
            shutil.move(source, str(target))
        except OSError:
            try:
                if os.path.lexists(target):
                    # Partial copy of a cross-device move
                    self._remove(target)
                os.rename(backup, target)
            except OSError as e:
                result.errors.append(f"{target}: original kept at {backup}")
                logger.error(f"Could not restore {target} from {backup}: {e}")
            raise
        try:
            self._remove(backup)
        except OSError as e:
            result.errors.append(f"{backup}: {describe_error(e)}")
            logger.warning(f"Could not remove replaced item {backup}: {e}")

    @staticmethod
    def _remove(target: Path) -> None:
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        else:
            target.unlink()

    @staticmethod
    def _remove_if_empty(inner: Path, result: FolderFixResult) -> bool:
        try:
            if any(inner.iterdir()):
                return False
            inner.rmdir()
            return True
        except OSError as e:
            result.errors.append(f"{inner}: {describe_error(e)}")
            return False


def write_fix_report(results: List[FolderFixResult], path: Union[str, Path]) -> None:
    """Write one CSV line per planned/performed action."""
    with open(path, "w", newline="", encoding="utf-8", errors="backslashreplace") as f:
        writer = csv.DictWriter(f, fieldnames=REPORT_COLUMNS)
        writer.writeheader()
        for r in results:
            overwritten = set(r.overwritten)
            for name in r.moved:
                action = "OVERWRITE" if name in overwritten else "MOVE"
                writer.writerow(
                    {"Folder": r.folder, "Item": name, "Action": action, "Detail": "", "DryRun": r.dry_run}
                )
            for name in r.skipped:
                writer.writerow(
                    {"Folder": r.folder, "Item": name, "Action": "SKIP", "Detail": "name exists", "DryRun": r.dry_run}
                )
            for error in r.errors:
                writer.writerow(
                    {"Folder": r.folder, "Item": "", "Action": "ERROR", "Detail": error, "DryRun": r.dry_run}
                )
            if r.inner_removed:
                writer.writerow(
                    {"Folder": r.folder, "Item": Path(r.folder).name, "Action": "REMOVE_INNER", "Detail": "", "DryRun": r.dry_run}
                )
