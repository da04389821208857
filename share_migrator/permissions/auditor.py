"""Permission auditing based on ``icacls`` listings.

``icacls <path>`` prints the path followed by the first ACE, then one
indented ACE per line and a trailing status line::

    D:\\Shares\\Finance NT AUTHORITY\\SYSTEM:(OI)(CI)(F)
                       CONTOSO\\migration:(I)(OI)(CI)(M)

    Successfully processed 1 files; Failed processing 0 files
"""

import csv
import logging
import os
import re
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Deque, Dict, List, Optional, Tuple, Union

from ..inventory.walker import is_reparse_point
from ..timeout_config import Timeouts
from ..utils.process_runner import CommandRunner, run_command

logger = logging.getLogger(__name__)

ACE_FLAGS = frozenset(["I", "OI", "CI", "IO", "NP", "DENY"])

_ACE_RE = re.compile(r"^(?P<identity>.+?):(?P<perms>(?:\([^)]*\))+)$")
_GROUP_RE = re.compile(r"\(([^)]*)\)")

AUDIT_COLUMNS = [
    "Path",
    "Identity",
    "Rights",
    "Flags",
    "Inherited",
    "HasFullControl",
    "AccountMatch",
    "Error",
]


@dataclass
class AclEntry:
    """One access control entry reported by icacls."""

    path: str
    identity: str
    rights: List[str] = field(default_factory=list)
    flags: List[str] = field(default_factory=list)

    @property
    def inherited(self) -> bool:
        return "I" in self.flags

    @property
    def is_deny(self) -> bool:
        return "DENY" in self.flags

    @property
    def has_full_control(self) -> bool:
        return "F" in self.rights and not self.is_deny

    def matches_account(self, account: str) -> bool:
        """Match ``DOMAIN\\user`` or bare ``user`` case-insensitively."""
        identity = self.identity.lower()
        account = account.lower()
        return identity == account or identity.endswith("\\" + account)


def _parse_ace(text: str) -> Optional[Tuple[str, List[str], List[str]]]:
    match = _ACE_RE.match(text.strip())
    if not match:
        return None
    flags: List[str] = []
    rights: List[str] = []
    for group in _GROUP_RE.findall(match.group("perms")):
        if group in ACE_FLAGS:
            flags.append(group)
        else:
            rights.extend(part for part in group.split(",") if part)
    return match.group("identity").strip(), rights, flags


def parse_icacls_output(text: str, path: Optional[str] = None) -> List[AclEntry]:
    """Parse the listing of ``icacls <path>``.

    Args:
        text: icacls stdout
        path: The queried path. When given, it is stripped from the first
            line of each listing; otherwise the path is taken as everything
            before the first ACE on a non-indented line.
    """
    entries: List[AclEntry] = []
    current_path = path or ""
    for raw_line in text.splitlines():
        line = raw_line.rstrip()
        if not line.strip():
            continue
        if line.startswith(("Successfully processed", "Failed processing")):
            continue

        if not raw_line[:1].isspace():
            # First line of a listing: "<path> <ace>"
            if path and line.startswith(path):
                current_path, remainder = path, line[len(path):]
            else:
                current_path, remainder = _split_path_line(line)
        else:
            remainder = line

        parsed = _parse_ace(remainder)
        if parsed is None:
            logger.debug(f"Unrecognized icacls line: {line!r}")
            continue
        identity, rights, flags = parsed
        entries.append(
            AclEntry(path=current_path, identity=identity, rights=rights, flags=flags)
        )
    return entries


def _split_path_line(line: str) -> Tuple[str, str]:
    # The ACE is the last whitespace separated token containing ":("
    idx = line.find(":(")
    if idx == -1:
        return line, ""
    start = line.rfind(" ", 0, idx)
    # Identities such as "NT AUTHORITY\SYSTEM" contain a space; back up over it
    if start > 0 and "\\" in line[start:idx]:
        maybe = line.rfind(" ", 0, start)
        if maybe > 0 and "\\" not in line[maybe:start] and line[maybe + 1 : start].isupper():
            start = maybe
    return line[:start].strip(), line[start:].strip()


class PermissionAuditor:
    """Lists the ACLs of a root and of its directories down to ``max_depth``."""

    def __init__(
        self,
        account: Optional[str] = None,
        max_depth: int = 0,
        runner: CommandRunner = run_command,
        icacls: str = "icacls",
    ):
        if max_depth < 0:
            raise ValueError("Max depth must be non-negative")
        self.account = account
        self.max_depth = max_depth
        self.runner = runner
        self.icacls = icacls

    def iter_targets(self, root: Union[str, Path]) -> List[Path]:
        """Root plus non-reparse directories down to ``max_depth``, breadth-first."""
        root = Path(root)
        targets = [root]
        queue: Deque[Tuple[Path, int]] = deque([(root, 0)])
        while queue:
            directory, depth = queue.popleft()
            if depth >= self.max_depth:
                continue
            try:
                with os.scandir(directory) as it:
                    children = sorted(it, key=lambda e: e.name)
            except OSError as e:
                logger.warning(f"Cannot list {directory}: {e}")
                continue
            for entry in children:
                try:
                    st = entry.stat(follow_symlinks=False)
                except OSError:
                    continue
                if is_reparse_point(st, entry.path) or not entry.is_dir(follow_symlinks=False):
                    continue
                targets.append(Path(entry.path))
                queue.append((Path(entry.path), depth + 1))
        return targets

    def audit_path(self, path: Union[str, Path]) -> Tuple[List[AclEntry], str]:
        """Return the ACEs of one path and an error text ('' on success)."""
        result = self.runner([self.icacls, str(path)], timeout=Timeouts.ICACLS_AUDIT)
        if result.exit_code != 0:
            logger.warning(f"icacls exited with code {result.exit_code} for {path}")
            error = (result.stderr or result.stdout).strip() or f"exit code {result.exit_code}"
            return [], error
        return parse_icacls_output(result.stdout, str(path)), ""

    def audit(self, root: Union[str, Path], output_csv: Union[str, Path]) -> Dict[str, int]:
        """Write one CSV row per ACE (or per failing path).

        Returns:
            Counters: paths, entries, errors, full_control (for the account)
        """
        counters = {"paths": 0, "entries": 0, "errors": 0, "full_control": 0}
        output_csv = Path(output_csv)
        output_csv.parent.mkdir(parents=True, exist_ok=True)

        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=AUDIT_COLUMNS)
            writer.writeheader()
            for target in self.iter_targets(root):
                counters["paths"] += 1
                entries, error = self.audit_path(target)
                if error:
                    counters["errors"] += 1
                    writer.writerow({"Path": str(target), "Identity": "ERROR", "Error": error})
                    f.flush()
                    continue
                account_has_full = False
                for entry in entries:
                    match = bool(self.account) and entry.matches_account(self.account)
                    if match and entry.has_full_control:
                        account_has_full = True
                    writer.writerow(
                        {
                            "Path": entry.path,
                            "Identity": entry.identity,
                            "Rights": ",".join(entry.rights),
                            "Flags": ",".join(entry.flags),
                            "Inherited": str(entry.inherited),
                            "HasFullControl": str(entry.has_full_control),
                            "AccountMatch": str(match),
                            "Error": "",
                        }
                    )
                    counters["entries"] += 1
                if account_has_full:
                    counters["full_control"] += 1
                f.flush()

        logger.info(
            f"Audited {counters['paths']} paths under {root}: "
            f"{counters['entries']} entries, {counters['errors']} errors"
        )
        return counters
