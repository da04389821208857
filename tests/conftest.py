import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from share_migrator.config_manager import SummaryConfig
from share_migrator.utils.process_runner import CommandResult

# ============================================================================
# Filesystem fixtures
# ============================================================================


@pytest.fixture
def sample_tree(tmp_path: Path) -> Path:
    """root/a.txt (10 bytes) and root/b/c.txt (5 bytes)."""
    root = tmp_path / "share"
    (root / "b").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"x" * 10)
    (root / "b" / "c.txt").write_bytes(b"y" * 5)
    return root


@pytest.fixture
def fast_summary_config() -> SummaryConfig:
    """Summary settings with tiny retry delays for tests."""
    return SummaryConfig(write_retries=3, retry_delay=0.0, lock_timeout=5, queue_dir_name=".resumen-queue")


# ============================================================================
# External command fixtures
# ============================================================================


def azcopy_line(message_type: str, content: Any) -> str:
    """One line of azcopy --output-type json output."""
    if isinstance(content, dict):
        content = json.dumps(content)
    return json.dumps(
        {
            "TimeStamp": "2024-05-02T10:00:00.0000000Z",
            "MessageType": message_type,
            "MessageContent": content,
        }
    )


def azcopy_copy_output(
    job_id: str = "job-1",
    status: str = "Completed",
    total: int = 2,
    completed: int = 2,
    failed: int = 0,
    skipped: int = 0,
    bytes_transferred: int = 15,
) -> str:
    lines = [
        azcopy_line("Init", {"JobID": job_id, "LogFileLocation": f"/logs/{job_id}.log"}),
        azcopy_line(
            "Progress",
            {"JobStatus": "InProgress", "TotalTransfers": str(total), "TransfersCompleted": "0"},
        ),
        azcopy_line(
            "EndOfJob",
            {
                "JobID": job_id,
                "JobStatus": status,
                "TotalTransfers": str(total),
                "TransfersCompleted": str(completed),
                "TransfersFailed": str(failed),
                "TransfersSkipped": str(skipped),
                "TotalBytesTransferred": str(bytes_transferred),
            },
        ),
    ]
    return "\n".join(lines) + "\n"


class FakeRunner:
    """Records commands and returns canned results."""

    def __init__(self, results: Optional[List[CommandResult]] = None, handler: Optional[Callable] = None):
        self.results = list(results or [])
        self.handler = handler
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, args, cwd=None, env=None, timeout=None) -> CommandResult:
        self.calls.append({"args": list(args), "env": env, "timeout": timeout})
        if self.handler is not None:
            return self.handler(list(args))
        if self.results:
            return self.results.pop(0)
        return CommandResult(args=list(args), exit_code=0)


@pytest.fixture
def fake_runner() -> Callable[..., FakeRunner]:
    """Factory for FakeRunner instances."""
    return FakeRunner
