"""Grant full control to an account with ``takeown`` and ``icacls``.

Entries are added with ``/grant`` (existing ACEs are kept). Exit codes of
the external tools are logged and returned; nothing is retried or rolled
back.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from ..timeout_config import Timeouts
from ..utils.process_runner import CommandResult, CommandRunner, run_command

logger = logging.getLogger(__name__)


@dataclass
class GrantResult:
    """Outcome of granting permissions on one path."""

    path: str
    icacls_exit_code: Optional[int] = None
    takeown_exit_code: Optional[int] = None
    output: str = ""
    commands: List[List[str]] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        if self.takeown_exit_code not in (None, 0):
            return False
        return self.icacls_exit_code == 0


class PermissionGranter:
    """Adds full-control ACEs for one account, optionally taking ownership first."""

    def __init__(
        self,
        account: str,
        recursive: bool = True,
        take_ownership: bool = False,
        continue_on_error: bool = True,
        runner: CommandRunner = run_command,
        icacls: str = "icacls",
        takeown: str = "takeown",
    ):
        if not account or not account.strip():
            raise ValueError("An account is required to grant permissions")
        self.account = account.strip()
        self.recursive = recursive
        self.take_ownership = take_ownership
        self.continue_on_error = continue_on_error
        self.runner = runner
        self.icacls = icacls
        self.takeown = takeown

    def build_takeown_command(self, path: Union[str, Path]) -> List[str]:
        cmd = [self.takeown, "/F", str(path)]
        if self.recursive:
            # /D Y answers "yes" for folders the caller cannot list
            cmd.extend(["/R", "/D", "Y"])
        return cmd

    def build_icacls_grant_command(self, path: Union[str, Path]) -> List[str]:
        if os.path.isdir(path):
            ace = f"{self.account}:(OI)(CI)F"
        else:
            ace = f"{self.account}:F"
        cmd = [self.icacls, str(path), "/grant", ace]
        if self.recursive:
            cmd.append("/T")
        if self.continue_on_error:
            cmd.append("/C")
        return cmd

    def grant(self, path: Union[str, Path]) -> GrantResult:
        """Grant full control on ``path`` (and below when recursive).

        Raises:
            ExternalToolError: If takeown/icacls cannot be started
        """
        result = GrantResult(path=str(path))
        outputs = []

        if self.take_ownership:
            cmd = self.build_takeown_command(path)
            takeown = self._run(cmd, Timeouts.TAKEOWN)
            result.commands.append(cmd)
            result.takeown_exit_code = takeown.exit_code
            outputs.append(takeown.combined_output)
            if takeown.exit_code != 0:
                logger.warning(
                    f"takeown exited with code {takeown.exit_code} for {path}"
                )

        cmd = self.build_icacls_grant_command(path)
        icacls = self._run(cmd, Timeouts.ICACLS_GRANT)
        result.commands.append(cmd)
        result.icacls_exit_code = icacls.exit_code
        outputs.append(icacls.combined_output)
        if icacls.exit_code != 0:
            logger.warning(f"icacls exited with code {icacls.exit_code} for {path}")
        else:
            logger.info(f"Granted full control on {path} to {self.account}")

        result.output = "\n".join(o for o in outputs if o)
        return result

    def grant_many(self, paths: List[Union[str, Path]]) -> List[GrantResult]:
        """Grant on several paths; a failing path does not stop the others."""
        results = []
        for path in paths:
            results.append(self.grant(path))
        failed = sum(1 for r in results if not r.succeeded)
        if failed:
            logger.warning(f"{failed} of {len(results)} permission grants failed")
        return results

    def _run(self, cmd: List[str], timeout: Optional[int]) -> CommandResult:
        logger.debug(f"Running: {' '.join(cmd)}")
        return self.runner(cmd, timeout=timeout)
