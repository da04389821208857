"""Orchestration commands.

``orchestrate`` runs inventory and upload for every subfolder of a root;
``run-folder`` is the per-folder worker it spawns in process mode;
``consolidate`` and ``dedupe-summary`` maintain the summary CSV files.
"""

import csv
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.table import Table

from ..exceptions import OrchestrationError
from ..orchestrator import FolderJobResult, MigrationOrchestrator
from ..summary.summary_csv import SummaryCsvStore
from ..transfer.azcopy_wrapper import AzCopyWrapper
from .base import (
    build_inventory_options,
    build_target,
    build_transfer_options,
    command_context,
    console,
    exit_with_error,
    inventory_options,
    target_options,
)

_runs_dir_option = click.option(
    "--runs-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("runs"),
    show_default=True,
    help="Directory for per-folder artifacts and summary CSVs",
)


def print_results(results) -> None:
    table = Table(title="Migration Results")
    table.add_column("Subfolder", style="cyan")
    table.add_column("Files")
    table.add_column("Inaccessible")
    table.add_column("Status")
    table.add_column("Completed")
    table.add_column("Failed")
    table.add_column("Error", style="red")
    for r in results:
        inv = r.inventory
        transfer = r.transfer
        status = transfer.status if transfer else "-"
        if r.succeeded:
            status = f"[green]{status}[/green]"
        else:
            status = f"[red]{status}[/red]"
        table.add_row(
            r.name,
            str(inv.total_files) if inv else "-",
            str(inv.inaccessible_files + inv.inaccessible_folders) if inv else "-",
            status,
            str(transfer.summary.completed) if transfer else "-",
            str(transfer.summary.failed) if transfer else "-",
            r.error,
        )
    console.print(table)


@click.command("orchestrate")
@click.argument("root", type=click.Path(exists=True, file_okay=False, path_type=Path))
@_runs_dir_option
@click.option(
    "--mode",
    type=click.Choice(["threads", "processes"]),
    default="threads",
    show_default=True,
    help="Thread pool in this process, or one process per subfolder",
)
@click.option("--max-parallel", type=click.IntRange(min=1), help="Concurrent subfolders")
@click.option(
    "--include-root-files",
    is_flag=True,
    help="Copy loose files of ROOT into a synthetic subfolder and migrate it too",
)
@click.option("--skip-upload", is_flag=True, help="Only run the inventories")
@click.option("--target-path", default="", help="Path inside the share for ROOT")
@click.option(
    "--sync", "use_sync", is_flag=True, help="Use azcopy sync instead of azcopy copy"
)
@target_options
@inventory_options
@click.pass_context
def orchestrate(
    ctx: click.Context,
    root: Path,
    runs_dir: Path,
    mode: str,
    max_parallel: Optional[int],
    include_root_files: bool,
    skip_upload: bool,
    target_path: str,
    use_sync: bool,
    account_name: Optional[str],
    share: Optional[str],
    sas_token: Optional[str],
    service: Optional[str],
    azcopy_path: Optional[str],
    overwrite: str,
    preserve_permissions: bool,
    put_md5: bool,
    sanitize_names: Optional[bool],
    replacement_char: Optional[str],
    compute_sizes: Optional[bool],
    max_depth: Optional[int],
    follow_reparse_points: Optional[bool],
    probe_read: bool,
) -> None:
    """Inventory and upload every immediate subfolder of ROOT.

    Examples:
        share-migrator orchestrate D:\\Shares --account-name stmig --share shares
        share-migrator orchestrate D:\\Shares --mode processes --max-parallel 3
        share-migrator orchestrate D:\\Shares --skip-upload
    """
    config = command_context(ctx).get_config(
        account_name=account_name,
        share=share,
        sas_token=sas_token,
        service=service,
        max_parallel=max_parallel,
        azcopy_path=azcopy_path,
    )
    target = None if skip_upload else build_target(config, target_path)
    if target is not None and not AzCopyWrapper(config.azcopy).check_installed():
        exit_with_error(f"azcopy not found: {config.azcopy.executable}")
    orchestrator = MigrationOrchestrator(
        config,
        root,
        runs_dir,
        target=target,
        options=build_transfer_options(
            "sync" if use_sync else "copy",
            overwrite=overwrite,
            preserve_permissions=preserve_permissions,
            put_md5=put_md5,
        ),
        inventory_options=build_inventory_options(
            config, root, runs_dir, sanitize_names, replacement_char, compute_sizes,
            max_depth, follow_reparse_points, probe_read,
        ),
    )
    try:
        results = orchestrator.run(
            mode=mode, include_root_files=include_root_files, skip_upload=skip_upload
        )
    except OrchestrationError as e:
        exit_with_error(e.message)

    if not results:
        click.echo("No subfolders found.")
        return
    print_results(results)
    if not all(r.succeeded for r in results):
        sys.exit(1)


@click.command("run-folder")
@click.argument("source", type=click.Path(exists=True, file_okay=False, path_type=Path))
@_runs_dir_option
@click.option("--skip-upload", is_flag=True, help="Only run the inventory")
@click.option("--target-path", help="Path inside the share (default: the folder name)")
@click.option("--mode", type=click.Choice(["copy", "sync"]), default="copy", show_default=True)
@click.option("--delete-destination", is_flag=True, help="sync only")
@target_options
@inventory_options
@click.pass_context
def run_folder(
    ctx: click.Context,
    source: Path,
    runs_dir: Path,
    skip_upload: bool,
    target_path: Optional[str],
    mode: str,
    delete_destination: bool,
    account_name: Optional[str],
    share: Optional[str],
    sas_token: Optional[str],
    service: Optional[str],
    azcopy_path: Optional[str],
    overwrite: str,
    preserve_permissions: bool,
    put_md5: bool,
    sanitize_names: Optional[bool],
    replacement_char: Optional[str],
    compute_sizes: Optional[bool],
    max_depth: Optional[int],
    follow_reparse_points: Optional[bool],
    probe_read: bool,
) -> None:
    """Inventory and upload one folder (worker of ``orchestrate --mode processes``).

    Exits with azcopy's exit code, or 1 when the folder failed before upload.
    """
    config = command_context(ctx).get_config(
        plain_logging=True,
        account_name=account_name,
        share=share,
        sas_token=sas_token,
        service=service,
        azcopy_path=azcopy_path,
    )
    target = None
    if not skip_upload:
        # The orchestrator passes the full child path; the root target stays empty
        target = build_target(config, "")
    orchestrator = MigrationOrchestrator(
        config,
        source.parent,
        runs_dir,
        target=target,
        options=build_transfer_options(
            mode,
            overwrite=overwrite,
            preserve_permissions=preserve_permissions,
            put_md5=put_md5,
            delete_destination=delete_destination,
        ),
        inventory_options=build_inventory_options(
            config, source, runs_dir, sanitize_names, replacement_char, compute_sizes,
            max_depth, follow_reparse_points, probe_read,
        ),
    )
    job = orchestrator.job_for(source)
    result: FolderJobResult = orchestrator.run_folder(
        job, upload=not skip_upload, target_path=target_path
    )
    print_results([result])
    sys.exit(result.exit_code)


@click.command("consolidate")
@click.option(
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    help="Migrated root (only used to label folders)",
)
@_runs_dir_option
@click.pass_context
def consolidate(ctx: click.Context, root: Path, runs_dir: Path) -> None:
    """Rebuild the reconciliation CSV from the artifacts in RUNS_DIR."""
    config = command_context(ctx).get_config()
    if not runs_dir.is_dir():
        exit_with_error(f"Runs directory not found: {runs_dir}")
    orchestrator = MigrationOrchestrator(config, root, runs_dir)
    orchestrator.summary_store.drain_queue()
    rows = orchestrator.consolidate()

    table = Table(title="Reconciliation")
    table.add_column("Subfolder", style="cyan")
    table.add_column("Files")
    table.add_column("Completed")
    table.add_column("Skipped")
    table.add_column("Failed")
    table.add_column("Reconciled")
    for row in rows:
        reconciled = "[green]SI[/green]" if row.reconciled == "SI" else "[red]NO[/red]"
        table.add_row(
            row.subfolder,
            str(row.total_files),
            str(row.completed),
            str(row.skipped),
            str(row.failed),
            reconciled,
        )
    console.print(table)
    console.print(f"Written to [bold]{orchestrator.reconciliation_store.path}[/bold]")


@click.command("dedupe-summary")
@click.argument("csv_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--key",
    "keys",
    multiple=True,
    default=("Subcarpeta",),
    show_default=True,
    help="Column(s) identifying a row; repeat for several",
)
@click.option("--timestamp-field", default="FechaHora", show_default=True)
@click.pass_context
def dedupe_summary(
    ctx: click.Context, csv_path: Path, keys: Tuple[str, ...], timestamp_field: str
) -> None:
    """Keep only the newest row per key in a summary CSV."""
    config = command_context(ctx).get_config()
    with open(csv_path, newline="", encoding="utf-8") as f:
        header = next(csv.reader(f), [])
    missing = [k for k in (*keys, timestamp_field) if k not in header]
    if missing:
        exit_with_error(f"Columns not found in {csv_path}: {', '.join(missing)}")
    store = SummaryCsvStore(csv_path, header, config.summary)
    removed = store.deduplicate(list(keys), timestamp_field=timestamp_field)
    click.echo(f"Removed {removed} duplicate rows from {csv_path}")
