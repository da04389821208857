"""Numbered wrapper logs: ``upload-logs-1.txt``, ``upload-logs-2.txt``, ..."""

import logging
import re
from pathlib import Path
from typing import List, Tuple, Union

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "upload-logs"


def _numbered_logs(directory: Path, prefix: str) -> List[Tuple[int, Path]]:
    pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)\.txt$")
    if not directory.is_dir():
        return []
    found = []
    for path in directory.iterdir():
        match = pattern.match(path.name)
        if match and path.is_file():
            found.append((int(match.group(1)), path))
    return sorted(found)


def next_log_path(directory: Union[str, Path], prefix: str = DEFAULT_PREFIX) -> Path:
    """Path of the next log: one past the highest existing number."""
    directory = Path(directory)
    logs = _numbered_logs(directory, prefix)
    number = logs[-1][0] + 1 if logs else 1
    return directory / f"{prefix}-{number}.txt"


def prune_logs(
    directory: Union[str, Path], keep: int = 10, prefix: str = DEFAULT_PREFIX
) -> List[Path]:
    """Delete all but the ``keep`` newest numbered logs. Returns the deleted paths."""
    if keep < 1:
        raise ValueError("keep must be at least 1")
    logs = _numbered_logs(Path(directory), prefix)
    removed = []
    for _, path in logs[: max(0, len(logs) - keep)]:
        try:
            path.unlink()
            removed.append(path)
        except OSError as e:
            logger.warning(f"Could not delete old log {path}: {e}")
    return removed
