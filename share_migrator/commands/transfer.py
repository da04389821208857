"""Transfer commands wrapping ``azcopy copy``, ``azcopy sync`` and ``azcopy jobs show``.

``upload`` and ``sync`` exit with azcopy's exit code.
"""

import sys
from pathlib import Path
from typing import Optional

import click
from rich.table import Table

from ..exceptions import ExternalToolError
from ..summary.models import TRANSFER_SUMMARY_COLUMNS, TRANSFER_SUMMARY_FILE
from ..summary.summary_csv import SummaryCsvStore
from ..transfer.azcopy_output import AzCopyJobSummary
from ..transfer.azcopy_wrapper import AzCopyWrapper, TransferResult
from .base import (
    build_target,
    build_transfer_options,
    command_context,
    console,
    exit_with_error,
    target_options,
)


def print_job_summary(summary: AzCopyJobSummary, status: str, title: str) -> None:
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Job ID", summary.job_id or "-")
    table.add_row("Status", status or "-")
    table.add_row("Total transfers", str(summary.total_transfers))
    table.add_row("Completed", str(summary.completed))
    table.add_row("Failed", str(summary.failed))
    table.add_row("Skipped", str(summary.skipped))
    table.add_row("Bytes transferred", f"{summary.bytes_transferred:,}")
    if summary.log_file:
        table.add_row("azcopy log", summary.log_file)
    console.print(table)
    for error in summary.errors[:10]:
        console.print(f"[red]{error}[/red]")


def _run_transfer(
    ctx: click.Context,
    mode: str,
    source: Path,
    runs_dir: Path,
    target_path: Optional[str],
    account_name: Optional[str],
    share: Optional[str],
    sas_token: Optional[str],
    service: Optional[str],
    azcopy_path: Optional[str],
    overwrite: str,
    preserve_permissions: bool,
    put_md5: bool,
    cap_mbps: Optional[int],
    delete_destination: bool = False,
    copy_contents: bool = True,
) -> TransferResult:
    config = command_context(ctx).get_config(
        account_name=account_name,
        share=share,
        sas_token=sas_token,
        service=service,
        azcopy_path=azcopy_path,
    )
    if cap_mbps is not None:
        config.azcopy.cap_mbps = cap_mbps
    subfolder = source.name
    target = build_target(config, subfolder if target_path is None else target_path)
    options = build_transfer_options(
        mode,
        overwrite=overwrite,
        preserve_permissions=preserve_permissions,
        put_md5=put_md5,
        delete_destination=delete_destination,
        copy_contents=copy_contents,
    )
    store = SummaryCsvStore(
        runs_dir / TRANSFER_SUMMARY_FILE, TRANSFER_SUMMARY_COLUMNS, config.summary
    )
    wrapper = AzCopyWrapper(config.azcopy, store)
    if not wrapper.check_installed():
        exit_with_error(f"azcopy not found: {config.azcopy.executable}")
    try:
        return wrapper.run(
            source, target, runs_dir / subfolder / "upload", subfolder=subfolder, options=options
        )
    except ExternalToolError as e:
        exit_with_error(str(e))


_source_argument = click.argument(
    "source", type=click.Path(exists=True, file_okay=False, path_type=Path)
)
_runs_dir_option = click.option(
    "--runs-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("runs"),
    show_default=True,
    help="Directory for upload logs and the shared summary CSV",
)
_target_path_option = click.option(
    "--target-path",
    help="Path inside the share (default: the source folder name, '' for the share root)",
)
_cap_option = click.option("--cap-mbps", type=click.IntRange(min=1), help="Bandwidth cap")


@click.command("upload")
@_source_argument
@_runs_dir_option
@_target_path_option
@target_options
@_cap_option
@click.option(
    "--as-folder",
    is_flag=True,
    help="Upload SOURCE itself rather than its contents",
)
@click.pass_context
def upload(
    ctx: click.Context,
    source: Path,
    runs_dir: Path,
    target_path: Optional[str],
    account_name: Optional[str],
    share: Optional[str],
    sas_token: Optional[str],
    service: Optional[str],
    azcopy_path: Optional[str],
    overwrite: str,
    preserve_permissions: bool,
    put_md5: bool,
    cap_mbps: Optional[int],
    as_folder: bool,
) -> None:
    """Upload SOURCE with azcopy copy.

    Examples:
        share-migrator upload D:\\Shares\\Finance --account-name stmig --share finance
    """
    result = _run_transfer(
        ctx, "copy", source, runs_dir, target_path, account_name, share, sas_token,
        service, azcopy_path, overwrite, preserve_permissions, put_md5, cap_mbps,
        copy_contents=not as_folder,
    )
    print_job_summary(result.summary, result.status, f"Upload of {result.subfolder}")
    console.print(f"Wrapper log: {result.wrapper_log}")
    sys.exit(result.exit_code)


@click.command("sync")
@_source_argument
@_runs_dir_option
@_target_path_option
@target_options
@_cap_option
@click.option(
    "--delete-destination",
    is_flag=True,
    help="Delete destination files that no longer exist in SOURCE",
)
@click.pass_context
def sync(
    ctx: click.Context,
    source: Path,
    runs_dir: Path,
    target_path: Optional[str],
    account_name: Optional[str],
    share: Optional[str],
    sas_token: Optional[str],
    service: Optional[str],
    azcopy_path: Optional[str],
    overwrite: str,
    preserve_permissions: bool,
    put_md5: bool,
    cap_mbps: Optional[int],
    delete_destination: bool,
) -> None:
    """Synchronize SOURCE to the destination with azcopy sync.

    Examples:
        share-migrator sync D:\\Shares\\Finance --account-name stmig --share finance
    """
    result = _run_transfer(
        ctx, "sync", source, runs_dir, target_path, account_name, share, sas_token,
        service, azcopy_path, overwrite, preserve_permissions, put_md5, cap_mbps,
        delete_destination=delete_destination,
    )
    print_job_summary(result.summary, result.status, f"Sync of {result.subfolder}")
    console.print(f"Wrapper log: {result.wrapper_log}")
    sys.exit(result.exit_code)


@click.command("job-show")
@click.argument("job_id")
@click.option("--azcopy-path", help="azcopy executable (AZCOPY_PATH)")
@click.pass_context
def job_show(ctx: click.Context, job_id: str, azcopy_path: Optional[str]) -> None:
    """Show the status of an azcopy job.

    Examples:
        share-migrator job-show 1b7a4c52-0e2f-4a4d-9c53-9a3f6f5e1d20
    """
    config = command_context(ctx).get_config(azcopy_path=azcopy_path)
    wrapper = AzCopyWrapper(config.azcopy)
    if not wrapper.check_installed():
        exit_with_error(f"azcopy not found: {config.azcopy.executable}")
    try:
        summary = wrapper.show_job(job_id)
    except ExternalToolError as e:
        exit_with_error(str(e))
    print_job_summary(summary, summary.job_status, f"azcopy job {job_id}")
