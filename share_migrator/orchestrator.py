"""
Migration Orchestrator

Runs inventory and upload for every immediate subfolder of a root, either in
a thread pool or as one spawned ``share_migrator run-folder`` process per
subfolder, then consolidates the per-folder artifacts into the
reconciliation CSV.

Layout of the runs directory::

    <runs_dir>/
        resumen-subidas.csv
        resumen-conciliaciones.csv
        <subfolder>/inventory/   inventory.csv, folder-info.txt, ...
        <subfolder>/upload/      upload-logs-N.txt, transfer-summary.json
"""

import filecmp
import os
import shutil
import subprocess
import sys
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import psutil
import structlog

from .config_manager import MigrationConfig
from .exceptions import OrchestrationError, ShareMigratorError
from .inventory.models import FolderSummary
from .inventory.walker import InventoryOptions, InventoryWalker, is_reparse_point
from .inventory.writer import FOLDER_INFO
from .logging_config import configure_logging
from .summary.models import (
    RECONCILIATION_COLUMNS,
    RECONCILIATION_FILE,
    TIMESTAMP_FORMAT,
    TRANSFER_SUMMARY_COLUMNS,
    TRANSFER_SUMMARY_FILE,
    ReconciliationRow,
)
from .summary.summary_csv import SummaryCsvStore
from .transfer.azcopy_command import TransferOptions, TransferTarget
from .transfer.azcopy_wrapper import TRANSFER_SUMMARY_JSON, AzCopyWrapper, TransferResult
from .utils.process_runner import CommandRunner, run_command

configure_logging()
logger = structlog.get_logger(__name__)

INVENTORY_DIR = "inventory"
UPLOAD_DIR = "upload"
PROCESS_POLL_INTERVAL = 1.0
COMPLETED_STATUSES = ("Completed", "CompletedWithSkipped")


def list_subfolders(
    root: Union[str, Path], exclude: Iterable[Union[str, Path]] = ()
) -> List[Path]:
    """Immediate non-reparse subdirectories of ``root``, sorted by name."""
    root = Path(root)
    excluded = {Path(p).resolve() for p in exclude}
    folders = []
    with os.scandir(root) as it:
        for entry in it:
            try:
                st = entry.stat(follow_symlinks=False)
            except OSError as e:
                logger.warning("Cannot read subfolder", path=entry.path, error=str(e))
                continue
            if is_reparse_point(st, entry.path) or not entry.is_dir(follow_symlinks=False):
                continue
            path = Path(entry.path)
            if path.resolve() in excluded:
                continue
            folders.append(path)
    return sorted(folders, key=lambda p: p.name.lower())


def stage_root_files(
    root: Union[str, Path], folder_name: str, dry_run: bool = False
) -> int:
    """Copy loose files of ``root`` into ``root/<folder_name>``.

    Files already present with identical content are skipped.

    Returns:
        Number of files copied (or that would be copied in dry-run mode)
    """
    root = Path(root)
    staging = root / folder_name
    copied = 0
    with os.scandir(root) as it:
        files = sorted((e for e in it if e.is_file(follow_symlinks=False)), key=lambda e: e.name)
    for entry in files:
        target = staging / entry.name
        if target.is_file() and filecmp.cmp(entry.path, target, shallow=False):
            continue
        if not dry_run:
            staging.mkdir(exist_ok=True)
            shutil.copy2(entry.path, target)
        copied += 1
    logger.info(
        "Staged root files", root=str(root), folder=folder_name, copied=copied, dry_run=dry_run
    )
    return copied


@dataclass
class FolderJob:
    """One subfolder to inventory and upload."""

    name: str
    source: Path
    run_dir: Path

    @property
    def inventory_dir(self) -> Path:
        return self.run_dir / INVENTORY_DIR

    @property
    def upload_dir(self) -> Path:
        return self.run_dir / UPLOAD_DIR


@dataclass
class FolderJobResult:
    """What happened to one subfolder."""

    name: str
    inventory: Optional[FolderSummary] = None
    transfer: Optional[TransferResult] = None
    error: str = ""
    exit_code: int = 0

    @property
    def succeeded(self) -> bool:
        if self.error or self.exit_code != 0:
            return False
        return self.transfer is None or self.transfer.succeeded


def reconcile(
    name: str,
    inventory: Optional[FolderSummary],
    transfer: Optional[TransferResult],
    timestamp: Optional[str] = None,
) -> ReconciliationRow:
    """Put the inventory counters of a subfolder next to its transfer outcome.

    ``Conciliado`` is ``SI`` when the transfer completed without failures and
    its completed plus skipped transfers cover every accessible file.
    """
    summary = transfer.summary if transfer else None
    reconciled = bool(
        inventory is not None
        and transfer is not None
        and transfer.exit_code == 0
        and transfer.status in COMPLETED_STATUSES
        and summary.failed == 0
        and summary.completed + summary.skipped >= inventory.accessible_files
    )
    return ReconciliationRow(
        subfolder=name,
        total_folders=inventory.total_folders if inventory else 0,
        total_files=inventory.total_files if inventory else 0,
        inaccessible_folders=inventory.inaccessible_folders if inventory else 0,
        inaccessible_files=inventory.inaccessible_files if inventory else 0,
        total_bytes=inventory.total_bytes if inventory else 0,
        job_id=summary.job_id if summary else "",
        status=transfer.status if transfer else "",
        completed=summary.completed if summary else 0,
        failed=summary.failed if summary else 0,
        skipped=summary.skipped if summary else 0,
        bytes_transferred=summary.bytes_transferred if summary else 0,
        reconciled="SI" if reconciled else "NO",
        timestamp=timestamp or datetime.now().strftime(TIMESTAMP_FORMAT),
    )


def load_folder_result(job: FolderJob, exit_code: int = 0) -> FolderJobResult:
    """Build a result from the artifacts a finished run left on disk."""
    result = FolderJobResult(name=job.name, exit_code=exit_code)
    info = job.inventory_dir / FOLDER_INFO
    if info.is_file():
        result.inventory = FolderSummary.from_file(info)
    summary_file = job.upload_dir / TRANSFER_SUMMARY_JSON
    if summary_file.is_file():
        try:
            result.transfer = TransferResult.from_summary_file(summary_file)
        except (OSError, ValueError) as e:
            result.error = f"Unreadable {summary_file}: {e}"
    if exit_code != 0 and not result.error:
        result.error = f"run-folder exited with code {exit_code}"
    return result


class MigrationOrchestrator:
    """Runs the per-subfolder pipeline over a root."""

    def __init__(
        self,
        config: MigrationConfig,
        root: Union[str, Path],
        runs_dir: Union[str, Path],
        target: Optional[TransferTarget] = None,
        options: Optional[TransferOptions] = None,
        inventory_options: Optional[InventoryOptions] = None,
        runner: CommandRunner = run_command,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Migration configuration
            root: Folder whose immediate subfolders are migrated
            runs_dir: Where per-folder artifacts and summary CSVs are written
            target: Destination of the root; each subfolder goes to a child path
            options: azcopy options for every upload
            inventory_options: Template for the per-folder inventory options;
                root and output_dir are replaced per folder
            runner: Command runner used for azcopy
        """
        self.config = config
        self.root = Path(root)
        self.runs_dir = Path(runs_dir)
        self.target = target
        self.options = options or TransferOptions()
        self.inventory_options = inventory_options or InventoryOptions(
            root=self.root,
            output_dir=self.runs_dir,
            sanitize_names=config.inventory.sanitize_names,
            replacement_char=config.inventory.replacement_char,
            compute_sizes=config.inventory.compute_sizes,
            max_depth=config.inventory.max_depth,
            follow_reparse_points=config.inventory.follow_reparse_points,
        )
        self.runner = runner
        self.summary_store = SummaryCsvStore(
            self.runs_dir / TRANSFER_SUMMARY_FILE, TRANSFER_SUMMARY_COLUMNS, config.summary
        )
        self.reconciliation_store = SummaryCsvStore(
            self.runs_dir / RECONCILIATION_FILE, RECONCILIATION_COLUMNS, config.summary
        )
        self._logger = logger.bind(component="MigrationOrchestrator", root=str(self.root))

    def build_jobs(self) -> List[FolderJob]:
        return [
            FolderJob(name=path.name, source=path, run_dir=self.runs_dir / path.name)
            for path in list_subfolders(self.root, exclude=[self.runs_dir])
        ]

    def job_for(self, source: Union[str, Path]) -> FolderJob:
        source = Path(source)
        return FolderJob(name=source.name, source=source, run_dir=self.runs_dir / source.name)

    def target_for(self, job: FolderJob, target_path: Optional[str] = None) -> TransferTarget:
        """Destination of one folder: a child of the root target unless given explicitly."""
        if self.target is None:
            raise OrchestrationError("A transfer target is required to upload", subfolder=job.name)
        if target_path is not None:
            return replace(self.target, path=target_path)
        return self.target.child(job.name)

    def run_folder(
        self, job: FolderJob, upload: bool = True, target_path: Optional[str] = None
    ) -> FolderJobResult:
        """Inventory then upload one subfolder. Failures are recorded, not raised."""
        log = self._logger.bind(subfolder=job.name)
        result = FolderJobResult(name=job.name)
        try:
            options = replace(
                self.inventory_options, root=job.source, output_dir=job.inventory_dir
            )
            result.inventory = InventoryWalker(options).run()
            log.info(
                "Inventory finished",
                folders=result.inventory.total_folders,
                files=result.inventory.total_files,
            )
            if upload:
                target = self.target_for(job, target_path)
                wrapper = AzCopyWrapper(self.config.azcopy, self.summary_store, self.runner)
                result.transfer = wrapper.run(
                    job.source,
                    target,
                    job.upload_dir,
                    subfolder=job.name,
                    options=self.options,
                )
                result.exit_code = result.transfer.exit_code
        except (ShareMigratorError, OSError, ValueError) as e:
            result.error = str(e)
            result.exit_code = result.exit_code or 1
            log.error("Folder failed", error=str(e))
        except Exception as e:
            # Any other failure is recorded against this folder only
            result.error = f"Unexpected error: {type(e).__name__}: {e}"
            result.exit_code = result.exit_code or 1
            log.exception("Folder failed unexpectedly", error=str(e))
        return result

    def run_parallel(self, jobs: List[FolderJob], upload: bool = True) -> List[FolderJobResult]:
        """Run folders in a thread pool of ``max_parallel`` workers."""
        max_workers = self.config.orchestrator.max_parallel
        self._logger.info("Running folders in threads", jobs=len(jobs), workers=max_workers)
        results: Dict[str, FolderJobResult] = {}
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(self.run_folder, job, upload): job for job in jobs}
            for future in as_completed(futures):
                job = futures[future]
                results[job.name] = future.result()
        return [results[job.name] for job in jobs]

    def wait_for_memory(self) -> None:
        """Block while system RAM usage is at or above the configured limit."""
        limit = self.config.orchestrator.max_ram_percent
        while True:
            percent = psutil.virtual_memory().percent
            if percent < limit:
                return
            self._logger.info("Waiting for memory", ram_percent=percent, limit=limit)
            time.sleep(self.config.orchestrator.ram_poll_interval)

    def run_folder_command(self, job: FolderJob, upload: bool = True) -> List[str]:
        """Command line of the child process handling one folder."""
        inv = self.inventory_options
        cmd = [
            sys.executable,
            "-m",
            "share_migrator",
            "run-folder",
            str(job.source),
            "--runs-dir",
            str(self.runs_dir),
            "--replacement-char",
            inv.replacement_char,
            "--sanitize-names" if inv.sanitize_names else "--no-sanitize-names",
            "--compute-sizes" if inv.compute_sizes else "--no-compute-sizes",
        ]
        if inv.follow_reparse_points:
            cmd.append("--follow-reparse-points")
        if inv.probe_file_read:
            cmd.append("--probe-read")
        if inv.max_depth is not None:
            cmd.extend(["--max-depth", str(inv.max_depth)])
        if not upload or self.target is None:
            cmd.append("--skip-upload")
            return cmd
        cmd.extend(["--target-path", self.target_for(job).path])
        cmd.extend(["--mode", self.options.mode])
        if self.options.mode == "copy":
            cmd.extend(["--overwrite", self.options.overwrite])
        if self.options.delete_destination:
            cmd.append("--delete-destination")
        if self.options.preserve_permissions:
            cmd.append("--preserve-permissions")
        if self.options.put_md5:
            cmd.append("--put-md5")
        return cmd

    def _child_env(self) -> Dict[str, str]:
        # The SAS token travels in the environment, never on the command line
        env = os.environ.copy()
        if self.target is not None:
            env.update(
                {
                    "STORAGE_ACCOUNT_NAME": self.target.account_name,
                    "STORAGE_SHARE_NAME": self.target.share,
                    "STORAGE_SAS_TOKEN": self.target.sas_token,
                    "STORAGE_SERVICE": self.target.service,
                }
            )
        env["AZCOPY_PATH"] = self.config.azcopy.executable
        return env

    def _spawn(self, job: FolderJob, upload: bool) -> subprocess.Popen:
        job.run_dir.mkdir(parents=True, exist_ok=True)
        cmd = self.run_folder_command(job, upload)
        if os.name == "nt":
            # One visible console window per folder
            return subprocess.Popen(
                cmd,
                env=self._child_env(),
                creationflags=getattr(subprocess, "CREATE_NEW_CONSOLE", 0),
            )
        with open(job.run_dir / "run-folder.log", "w", encoding="utf-8") as log_handle:
            return subprocess.Popen(
                cmd,
                stdout=log_handle,
                stderr=subprocess.STDOUT,
                env=self._child_env(),
            )

    def run_processes(self, jobs: List[FolderJob], upload: bool = True) -> List[FolderJobResult]:
        """Run one child process per folder, throttled by count and RAM usage."""
        settings = self.config.orchestrator
        self._logger.info(
            "Running folders in processes", jobs=len(jobs), max_parallel=settings.max_parallel
        )
        running: List[Tuple[FolderJob, subprocess.Popen]] = []
        exit_codes: Dict[str, int] = {}

        def reap() -> None:
            for item in list(running):
                code = item[1].poll()
                if code is not None:
                    exit_codes[item[0].name] = code
                    running.remove(item)

        for index, job in enumerate(jobs):
            while True:
                reap()
                if len(running) < settings.max_parallel:
                    break
                time.sleep(PROCESS_POLL_INTERVAL)
            self.wait_for_memory()
            if index > 0 and settings.launch_delay:
                time.sleep(settings.launch_delay)
            try:
                process = self._spawn(job, upload)
            except OSError as e:
                self._logger.error("Could not start folder process", subfolder=job.name, error=str(e))
                exit_codes[job.name] = -1
                continue
            self._logger.info("Started folder process", subfolder=job.name, pid=process.pid)
            running.append((job, process))

        for job, process in running:
            exit_codes[job.name] = process.wait()

        results = []
        for job in jobs:
            code = exit_codes.get(job.name, -1)
            if code != 0:
                self._logger.warning("Folder process failed", subfolder=job.name, exit_code=code)
            results.append(load_folder_result(job, code))
        return results

    def _run_dirs(self) -> List[FolderJob]:
        if not self.runs_dir.is_dir():
            return []
        jobs = []
        for path in sorted(self.runs_dir.iterdir(), key=lambda p: p.name.lower()):
            if not path.is_dir() or path.name == self.config.summary.queue_dir_name:
                continue
            jobs.append(FolderJob(name=path.name, source=self.root / path.name, run_dir=path))
        return jobs

    def consolidate(self) -> List[ReconciliationRow]:
        """Append one reconciliation row per run folder and keep the newest per folder."""
        rows = []
        timestamp = datetime.now().strftime(TIMESTAMP_FORMAT)
        for job in self._run_dirs():
            result = load_folder_result(job)
            if result.inventory is None and result.transfer is None:
                continue
            row = reconcile(job.name, result.inventory, result.transfer, timestamp)
            self.reconciliation_store.append(row.to_csv_row())
            rows.append(row)
        if rows:
            self.reconciliation_store.deduplicate(["Subcarpeta"])
        self._logger.info(
            "Consolidated runs",
            folders=len(rows),
            reconciled=sum(1 for r in rows if r.reconciled == "SI"),
        )
        return rows

    def run(
        self,
        mode: str = "threads",
        include_root_files: bool = False,
        skip_upload: bool = False,
    ) -> List[FolderJobResult]:
        """Run every subfolder, then consolidate.

        Raises:
            OrchestrationError: For an unknown mode, a missing transfer target
                or a root that is not a directory
        """
        if mode not in ("threads", "processes"):
            raise OrchestrationError(f"Unknown mode: {mode}")
        if not skip_upload and self.target is None:
            raise OrchestrationError("A transfer target is required unless uploads are skipped")
        if not self.root.is_dir():
            raise OrchestrationError(f"Root is not a directory: {self.root}")

        self.runs_dir.mkdir(parents=True, exist_ok=True)
        if include_root_files:
            stage_root_files(self.root, self.config.orchestrator.root_files_folder)
        jobs = self.build_jobs()
        if not jobs:
            self._logger.warning("No subfolders to migrate")
            return []

        upload = not skip_upload
        if mode == "threads":
            results = self.run_parallel(jobs, upload)
        else:
            results = self.run_processes(jobs, upload)

        self.summary_store.drain_queue()
        self.consolidate()
        failed = [r.name for r in results if not r.succeeded]
        self._logger.info("Migration run finished", folders=len(results), failed=len(failed))
        return results
