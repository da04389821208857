"""
AzCopy wrapper.

Runs one ``azcopy copy`` or ``azcopy sync`` synchronously, keeps a numbered
human-readable log of the run, writes a machine-readable
``transfer-summary.json`` and appends one row to the centralized upload
summary CSV.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..config_manager import AzCopyConfig
from ..exceptions import AzCopyError, ExternalToolError, SummaryWriteError, ToolNotFoundError
from ..summary.models import TIMESTAMP_FORMAT, TransferSummaryRow
from ..summary.summary_csv import SummaryCsvStore
from ..timeout_config import Timeouts
from ..utils.cli_installer import ensure_tool
from ..utils.process_runner import CommandResult, CommandRunner, run_command
from .azcopy_command import TransferOptions, TransferTarget, build_azcopy_command
from .azcopy_output import AzCopyJobSummary, summarize_output
from .log_rotation import next_log_path, prune_logs

logger = logging.getLogger(__name__)

TRANSFER_SUMMARY_JSON = "transfer-summary.json"
AZCOPY_LOG_DIR = "azcopy-logs"


def format_duration(seconds: float) -> str:
    """Format seconds as ``HH:MM:SS``."""
    total = int(round(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


@dataclass
class TransferResult:
    """Outcome of one wrapped azcopy run."""

    subfolder: str
    exit_code: int
    status: str
    summary: AzCopyJobSummary
    wrapper_log: Path
    summary_file: Path
    duration_seconds: float
    summary_row_written: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and self.summary.failed == 0

    @classmethod
    def from_summary_file(cls, path: Union[str, Path]) -> "TransferResult":
        """Rebuild a result from the ``transfer-summary.json`` of a finished run."""
        data = load_transfer_summary(path)
        return cls(
            subfolder=data.get("subfolder", ""),
            exit_code=int(data.get("exit_code", 1)),
            status=data.get("status", ""),
            summary=data["summary"],
            wrapper_log=Path(data.get("wrapper_log", "")),
            summary_file=Path(path),
            duration_seconds=float(data.get("duration_seconds", 0.0)),
        )


def load_transfer_summary(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a ``transfer-summary.json`` written by ``AzCopyWrapper.run``."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    data["summary"] = AzCopyJobSummary.from_dict(data.get("summary", {}))
    return data


class AzCopyWrapper:
    """Runs azcopy and records the outcome of every run."""

    def __init__(
        self,
        config: Optional[AzCopyConfig] = None,
        summary_store: Optional[SummaryCsvStore] = None,
        runner: CommandRunner = run_command,
    ):
        self.config = config or AzCopyConfig()
        self.summary_store = summary_store
        self.runner = runner

    def check_installed(self) -> bool:
        try:
            ensure_tool("azcopy", self.config.executable)
        except ToolNotFoundError as e:
            logger.warning(str(e))
            return False
        return True

    def version(self) -> str:
        result = self.runner([self.config.executable, "--version"], timeout=Timeouts.VERSION_CHECK)
        if not result.succeeded:
            raise AzCopyError(
                "azcopy --version failed",
                exit_code=result.exit_code,
                context={"output": result.combined_output.strip()},
            )
        return result.stdout.strip().splitlines()[0] if result.stdout.strip() else ""

    def show_job(self, job_id: str) -> AzCopyJobSummary:
        """Query the final state of a job with ``azcopy jobs show``."""
        result = self.runner(
            [self.config.executable, "jobs", "show", job_id, "--output-type", "json"],
            timeout=Timeouts.JOB_SHOW,
        )
        if not result.succeeded:
            logger.warning(f"azcopy jobs show {job_id} exited with code {result.exit_code}")
        summary = summarize_output(result.stdout)
        if not summary.job_id:
            summary.job_id = job_id
        return summary

    def run(
        self,
        source: Union[str, Path],
        target: TransferTarget,
        output_dir: Union[str, Path],
        subfolder: Optional[str] = None,
        options: Optional[TransferOptions] = None,
    ) -> TransferResult:
        """Run one transfer and record it.

        A non-zero azcopy exit code is reported in the result, not raised.

        Raises:
            ValueError: If the source is not a directory
            ExternalToolError: If azcopy cannot be started
        """
        source = Path(source)
        if not source.is_dir():
            raise ValueError(f"Source is not a directory: {source}")
        options = options or TransferOptions()
        subfolder = subfolder or source.name
        output_dir = Path(output_dir)
        azcopy_logs = output_dir / AZCOPY_LOG_DIR
        azcopy_logs.mkdir(parents=True, exist_ok=True)

        command = build_azcopy_command(
            self.config.executable,
            str(source),
            target,
            options,
            log_level=self.config.log_level,
            cap_mbps=self.config.cap_mbps,
        )
        env = {
            "AZCOPY_LOG_LOCATION": str(azcopy_logs),
            "AZCOPY_JOB_PLAN_LOCATION": str(azcopy_logs / "plans"),
        }

        logger.info(f"azcopy {options.mode} {source} -> {target.safe_url()}")
        started = datetime.now()
        result = self.runner(command, env=env, timeout=Timeouts.AZCOPY_TRANSFER)
        finished = datetime.now()

        summary = summarize_output(result.stdout)
        if not summary.has_final_status and summary.job_id:
            try:
                summary.merge(self.show_job(summary.job_id))
            except ExternalToolError as e:
                logger.warning(f"Could not query job {summary.job_id}: {e}")

        status = summary.job_status or ("Failed" if result.exit_code != 0 else "Unknown")
        if result.exit_code != 0:
            logger.warning(f"azcopy exited with code {result.exit_code} for {subfolder}")

        wrapper_log = self._write_wrapper_log(
            output_dir, command, target, result, started, finished, status
        )
        summary_file = output_dir / TRANSFER_SUMMARY_JSON
        duration = (finished - started).total_seconds()
        self._write_summary_json(
            summary_file,
            {
                "subfolder": subfolder,
                "source": str(source),
                "destination": target.safe_url(),
                "mode": options.mode,
                "exit_code": result.exit_code,
                "status": status,
                "started": started.strftime(TIMESTAMP_FORMAT),
                "finished": finished.strftime(TIMESTAMP_FORMAT),
                "duration": format_duration(duration),
                "duration_seconds": round(duration, 3),
                "wrapper_log": str(wrapper_log),
                "summary": summary.to_dict(),
            },
        )

        transfer = TransferResult(
            subfolder=subfolder,
            exit_code=result.exit_code,
            status=status,
            summary=summary,
            wrapper_log=wrapper_log,
            summary_file=summary_file,
            duration_seconds=duration,
        )
        transfer.summary_row_written = self._append_summary_row(transfer, finished)
        logger.info(
            f"{subfolder}: {status} (completed={summary.completed}, "
            f"failed={summary.failed}, skipped={summary.skipped})"
        )
        return transfer

    def _write_wrapper_log(
        self,
        output_dir: Path,
        command,
        target: TransferTarget,
        result: CommandResult,
        started: datetime,
        finished: datetime,
        status: str,
    ) -> Path:
        log_path = next_log_path(output_dir)
        lines = [
            f"Started:  {started.strftime(TIMESTAMP_FORMAT)}",
            f"Command:  {target.mask(' '.join(command))}",
            f"Finished: {finished.strftime(TIMESTAMP_FORMAT)}",
            f"ExitCode: {result.exit_code}",
            f"Status:   {status}",
            "",
            "----- stdout -----",
            target.mask(result.stdout.rstrip()),
            "----- stderr -----",
            target.mask(result.stderr.rstrip()),
        ]
        log_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        prune_logs(output_dir, keep=self.config.keep_wrapper_logs)
        return log_path

    @staticmethod
    def _write_summary_json(path: Path, data: Dict[str, Any]) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def _append_summary_row(self, transfer: TransferResult, finished: datetime) -> bool:
        if self.summary_store is None:
            return False
        summary = transfer.summary
        row = TransferSummaryRow(
            subfolder=transfer.subfolder,
            job_id=summary.job_id,
            status=transfer.status,
            total_transfers=summary.total_transfers,
            completed=summary.completed,
            failed=summary.failed,
            skipped=summary.skipped,
            bytes_transferred=summary.bytes_transferred,
            duration=format_duration(transfer.duration_seconds),
            timestamp=finished.strftime(TIMESTAMP_FORMAT),
            wrapper_log=str(transfer.wrapper_log),
        )
        try:
            return self.summary_store.append(row.to_csv_row())
        except SummaryWriteError as e:
            logger.error(f"Summary row for {transfer.subfolder} was lost: {e}")
            return False
