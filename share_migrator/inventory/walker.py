"""Breadth-first inventory walker with per-entry access probing.

The walker lists every directory exactly once. A directory that cannot be
listed produces a single ``DENIED`` (or ``ENUMERATION_ERROR``) row and its
subtree is not visited; any other per-entry failure is recorded as a row and
the walk continues with the siblings. Traversal uses an explicit queue, so
deep trees do not hit recursion limits.
"""

import logging
import os
import stat
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Deque, List, Optional, Set, Tuple, Union

from ..exceptions import InventoryError
from .models import (
    AccessStatus,
    EntryType,
    FolderSummary,
    InventoryRow,
    format_timestamp,
)
from .sanitizer import rename_entry, sanitized_or_none, validate_replacement_char
from .writer import InventoryWriter

logger = logging.getLogger(__name__)

FILE_ATTRIBUTE_REPARSE_POINT = getattr(stat, "FILE_ATTRIBUTE_REPARSE_POINT", 0x400)


@dataclass
class InventoryOptions:
    """Parameters of one inventory run."""

    root: Path
    output_dir: Path
    sanitize_names: bool = False
    replacement_char: str = "_"
    compute_sizes: bool = False
    max_depth: Optional[int] = None
    follow_reparse_points: bool = False
    probe_file_read: bool = False

    def __post_init__(self) -> None:
        self.root = Path(self.root)
        self.output_dir = Path(self.output_dir)
        validate_replacement_char(self.replacement_char)
        if self.max_depth is not None and self.max_depth < 0:
            raise ValueError("Max depth must be non-negative")


@dataclass
class QueuedFolder:
    """A directory waiting to be listed, with what is known from its parent."""

    path: Path
    older_name: str = ""
    new_name: str = ""
    note: str = ""
    stat_result: Optional[os.stat_result] = None


@dataclass
class WalkState:
    """Mutable traversal context passed through one walk."""

    summary: FolderSummary
    queue: Deque[QueuedFolder] = field(default_factory=deque)
    visited_real_paths: Set[str] = field(default_factory=set)
    folders_listed: int = 0


def _list_directory(path: Path) -> List[os.DirEntry]:
    """List the immediate children of ``path`` in one attempt."""
    with os.scandir(path) as it:
        return list(it)


def classify_os_error(exc: OSError) -> AccessStatus:
    """Map a listing failure to an access status."""
    if isinstance(exc, PermissionError):
        return AccessStatus.DENIED
    return AccessStatus.ENUMERATION_ERROR


def describe_error(exc: BaseException) -> str:
    detail = getattr(exc, "strerror", None) or str(exc)
    return f"{type(exc).__name__}: {detail}"


def is_reparse_point(st: os.stat_result, path: Union[str, Path, None] = None) -> bool:
    """True for symlinks, junctions and other Windows reparse points."""
    if stat.S_ISLNK(st.st_mode):
        return True
    if getattr(st, "st_file_attributes", 0) & FILE_ATTRIBUTE_REPARSE_POINT:
        return True
    isjunction = getattr(os.path, "isjunction", None)
    return bool(path is not None and isjunction is not None and isjunction(path))


def _creation_time(st: os.stat_result) -> float:
    return getattr(st, "st_birthtime", None) or st.st_ctime


class InventoryWalker:
    """Walks a tree breadth-first and streams one row per visited entry."""

    def __init__(self, options: InventoryOptions):
        self.options = options
        self._output_real = os.path.realpath(options.output_dir)

    def run(self) -> FolderSummary:
        """Walk the root and write all outputs.

        Returns:
            The run's FolderSummary (also written to ``folder-info.txt``)

        Raises:
            InventoryError: If the root does not exist or is not a directory
        """
        root = self.options.root
        if not os.path.lexists(root):
            raise InventoryError("Inventory root does not exist", path=str(root))
        if os.path.exists(root) and not os.path.isdir(root):
            raise InventoryError("Inventory root is not a directory", path=str(root))

        state = WalkState(
            summary=FolderSummary(
                root=str(root),
                started_at=datetime.now().isoformat(timespec="seconds"),
                size_computed=self.options.compute_sizes,
            )
        )
        root_stat = None
        try:
            root_stat = os.stat(root)
        except OSError as e:
            logger.warning(f"Cannot read attributes of root {root}: {e}")
        state.queue.append(QueuedFolder(path=root, stat_result=root_stat))
        if self.options.follow_reparse_points:
            state.visited_real_paths.add(os.path.realpath(root))

        logger.info(f"Starting inventory of {root} -> {self.options.output_dir}")
        with InventoryWriter(self.options.output_dir) as writer:
            writer.log(f"Inventory started: {root}")
            while state.queue:
                self._visit_directory(state.queue.popleft(), state, writer)
                if state.folders_listed and state.folders_listed % 1000 == 0:
                    logger.debug(
                        f"{state.folders_listed} folders listed, {len(state.queue)} queued"
                    )

            state.summary.finished_at = datetime.now().isoformat(timespec="seconds")
            writer.write_summary(state.summary)
            writer.log(
                f"Inventory finished: {state.summary.total_folders} folders, "
                f"{state.summary.total_files} files, {writer.failed_rows_written} failed or denied"
            )

        logger.info(
            f"Inventory of {root} complete: {state.summary.total_folders} folders, "
            f"{state.summary.total_files} files, {state.summary.total_bytes} bytes"
        )
        return state.summary

    def depth_of(self, path: Path) -> int:
        """Number of path segments between the root and ``path``."""
        try:
            return len(path.relative_to(self.options.root).parts)
        except ValueError:
            return 0

    def _write(self, row: InventoryRow, state: WalkState, writer: InventoryWriter) -> None:
        writer.write_row(row)
        state.summary.record(row)

    def _folder_row(
        self, folder: QueuedFolder, status: AccessStatus, error: str = ""
    ) -> InventoryRow:
        st = folder.stat_result
        errors = "; ".join(e for e in (folder.note, error) if e)
        return InventoryRow(
            entry_type=EntryType.FOLDER,
            name=folder.path.name or str(folder.path),
            path=str(folder.path),
            access_status=status,
            older_name=folder.older_name,
            new_name=folder.new_name,
            last_write_time=format_timestamp(st.st_mtime) if st else "",
            creation_time=format_timestamp(_creation_time(st)) if st else "",
            access_error=errors,
        )

    def _visit_directory(
        self, folder: QueuedFolder, state: WalkState, writer: InventoryWriter
    ) -> None:
        try:
            entries = _list_directory(folder.path)
        except OSError as e:
            status = classify_os_error(e)
            self._write(self._folder_row(folder, status, describe_error(e)), state, writer)
            return

        state.folders_listed += 1
        child_rows: List[InventoryRow] = []
        depth = self.depth_of(folder.path)
        if self.options.max_depth is None or depth < self.options.max_depth:
            for entry in sorted(entries, key=lambda e: e.name):
                row = self._visit_entry(entry, state)
                if row is not None:
                    child_rows.append(row)

        partial = any(row.access_status.is_failure for row in child_rows)
        status = AccessStatus.PARTIAL if partial else AccessStatus.OK
        self._write(self._folder_row(folder, status), state, writer)
        for row in child_rows:
            self._write(row, state, writer)

    def _visit_entry(self, entry: os.DirEntry, state: WalkState) -> Optional[InventoryRow]:
        """Probe one child. Directories are queued and yield no row yet."""
        path = Path(entry.path)
        if os.path.realpath(path) == self._output_real:
            return None

        try:
            st = entry.stat(follow_symlinks=False)
        except OSError as e:
            return InventoryRow(
                entry_type=self._guess_type(entry),
                name=entry.name,
                path=str(path),
                access_status=AccessStatus.ATTR_DENIED,
                access_error=describe_error(e),
            )

        if is_reparse_point(st, path):
            skip_reason = self._reparse_skip_reason(path, state)
            if skip_reason:
                return InventoryRow(
                    entry_type=self._guess_type(entry),
                    name=entry.name,
                    path=str(path),
                    access_status=AccessStatus.SKIPPED_REPARSE,
                    last_write_time=format_timestamp(st.st_mtime),
                    creation_time=format_timestamp(_creation_time(st)),
                    access_error=skip_reason,
                )
            try:
                st = os.stat(path)
            except OSError as e:
                return InventoryRow(
                    entry_type=self._guess_type(entry),
                    name=entry.name,
                    path=str(path),
                    access_status=AccessStatus.ATTR_DENIED,
                    access_error=describe_error(e),
                )

        path, older_name, new_name, note = self._apply_name_policy(path, entry.name)

        if stat.S_ISDIR(st.st_mode):
            state.queue.append(
                QueuedFolder(
                    path=path,
                    older_name=older_name,
                    new_name=new_name,
                    note=note,
                    stat_result=st,
                )
            )
            return None

        status, error = self._probe_file(path)
        if self.options.compute_sizes:
            state.summary.total_bytes += st.st_size
        return InventoryRow(
            entry_type=EntryType.FILE,
            name=path.name,
            path=str(path),
            access_status=status,
            older_name=older_name,
            new_name=new_name,
            last_write_time=format_timestamp(st.st_mtime),
            creation_time=format_timestamp(_creation_time(st)),
            file_size=st.st_size,
            access_error="; ".join(e for e in (note, error) if e),
        )

    def _reparse_skip_reason(self, path: Path, state: WalkState) -> str:
        """Empty string when a reparse point should be followed."""
        if not self.options.follow_reparse_points:
            return "Reparse point not followed"
        real = os.path.realpath(path)
        if os.path.isdir(path):
            if real in state.visited_real_paths:
                return f"Reparse point loops back to {real}"
            state.visited_real_paths.add(real)
        return ""

    def _apply_name_policy(
        self, path: Path, name: str
    ) -> Tuple[Path, str, str, str]:
        """Detect (and optionally fix) invalid names.

        Returns:
            (current path, older name, new name, note)
        """
        new_name = sanitized_or_none(name, self.options.replacement_char)
        if new_name is None:
            return path, "", "", ""
        if not self.options.sanitize_names:
            return path, name, "", ""
        try:
            renamed = rename_entry(path, new_name)
        except OSError as e:
            logger.warning(f"Could not rename {path}: {e}")
            return path, name, "", f"Rename failed: {describe_error(e)}"
        logger.info(f"Renamed '{path}' -> '{renamed.name}'")
        return renamed, name, renamed.name, ""

    def _probe_file(self, path: Path) -> Tuple[AccessStatus, str]:
        if not self.options.probe_file_read:
            return AccessStatus.OK, ""
        try:
            with open(path, "rb"):
                pass
        except PermissionError as e:
            return AccessStatus.DENIED, describe_error(e)
        except OSError as e:
            return AccessStatus.ATTR_DENIED, describe_error(e)
        return AccessStatus.OK, ""

    @staticmethod
    def _guess_type(entry: os.DirEntry) -> EntryType:
        try:
            return EntryType.FOLDER if entry.is_dir() else EntryType.FILE
        except OSError:
            return EntryType.FILE


def run_inventory(options: InventoryOptions) -> FolderSummary:
    """Convenience wrapper around ``InventoryWalker(options).run()``."""
    return InventoryWalker(options).run()
