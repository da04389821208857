"""Synchronous execution of external command line tools.

All external tools (azcopy, icacls, takeown) are started through
``run_command`` so that callers and tests share one seam for process
execution.
"""

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..exceptions import wrap_tool_exception
from ..timeout_config import log_timeout_event, redact_command

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of one external command."""

    args: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    @property
    def combined_output(self) -> str:
        if self.stdout and self.stderr:
            return f"{self.stdout.rstrip()}\n{self.stderr}"
        return self.stdout or self.stderr


CommandRunner = Callable[..., CommandResult]


def run_command(
    args: List[str],
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[int] = None,
) -> CommandResult:
    """Run a command and wait for it to exit.

    Args:
        args: Executable and arguments
        cwd: Working directory
        env: Extra environment variables, merged over the current environment
        timeout: Seconds to wait, ``None`` waits until the command exits

    Returns:
        CommandResult with captured stdout/stderr

    Raises:
        ExternalToolError: If the executable cannot be started
    """
    full_env = None
    if env:
        full_env = os.environ.copy()
        full_env.update(env)

    logger.debug(f"Running command: {redact_command(args)}")
    start = time.monotonic()
    try:
        completed = subprocess.run(
            args,
            cwd=cwd,
            env=full_env,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        log_timeout_event(args[0], timeout or 0, args)
        return CommandResult(
            args=list(args),
            exit_code=1,
            stdout=_to_text(e.stdout),
            stderr=_to_text(e.stderr) or "Command timed out",
            duration_seconds=time.monotonic() - start,
            timed_out=True,
        )
    except OSError as e:
        raise wrap_tool_exception(e, args[0], context={"command": args[0]}) from e

    return CommandResult(
        args=list(args),
        exit_code=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
        duration_seconds=time.monotonic() - start,
    )


def _to_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
