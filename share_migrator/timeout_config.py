"""
Timeouts for the external tools the migrator starts.

Only short queries are bounded. Transfers (azcopy copy/sync) and permission
changes (icacls /grant, takeown) run synchronously until the tool exits, so
their timeout is ``None``.

Usage:
    from share_migrator.timeout_config import Timeouts

    run_command(["azcopy", "--version"], timeout=Timeouts.VERSION_CHECK)

Environment Variables:
    - SMG_TIMEOUT_QUICK: ``azcopy --version`` and similar probes (default: 30s)
    - SMG_TIMEOUT_JOB_SHOW: ``azcopy jobs show`` queries (default: 120s)
    - SMG_TIMEOUT_ICACLS_AUDIT: read-only ``icacls <path>`` queries (default: 120s)
"""

import logging
import os
import re
from typing import Final, List, Optional, Union

logger = logging.getLogger(__name__)

# Query strings of storage URLs carry the SAS signature
_URL_QUERY = re.compile(r"(https?://[^\s?\"']+)\?[^\s\"']+")
_MAX_LOGGED_COMMAND = 200


def _timeout_from_env(env_var: str, default: int) -> int:
    """Positive integer from ``env_var``, or ``default`` when unset or invalid."""
    raw = os.environ.get(env_var)
    if raw is None:
        return default
    try:
        seconds = int(raw)
    except ValueError:
        seconds = 0
    if seconds <= 0:
        logger.warning(
            f"Ignoring {env_var}={raw!r}: expected a positive number of seconds, "
            f"using {default}s"
        )
        return default
    return seconds


class Timeouts:
    """Timeouts in seconds. ``None`` waits for the command to exit."""

    QUICK: Final[int] = _timeout_from_env("SMG_TIMEOUT_QUICK", 30)
    VERSION_CHECK: Final[int] = QUICK

    JOB_SHOW: Final[int] = _timeout_from_env("SMG_TIMEOUT_JOB_SHOW", 120)
    ICACLS_AUDIT: Final[int] = _timeout_from_env("SMG_TIMEOUT_ICACLS_AUDIT", 120)

    AZCOPY_TRANSFER: Final[Optional[int]] = None
    ICACLS_GRANT: Final[Optional[int]] = None
    TAKEOWN: Final[Optional[int]] = None


def redact_command(command: Union[str, List[str]]) -> str:
    """Command line for logs, with URL query strings replaced and long lines cut."""
    text = " ".join(command) if isinstance(command, list) else command
    text = _URL_QUERY.sub(r"\1?<SAS redacted>", text)
    if len(text) > _MAX_LOGGED_COMMAND:
        text = text[: _MAX_LOGGED_COMMAND - 3] + "..."
    return text


def log_timeout_event(
    operation: str,
    timeout_value: int,
    command: Union[str, List[str], None] = None,
    level: str = "warning",
) -> None:
    """Log that ``operation`` exceeded ``timeout_value`` seconds."""
    message = f"{operation} did not finish within {timeout_value}s"
    if command:
        message += f": {redact_command(command)}"
    getattr(logger, level, logger.warning)(message)
