"""Duplicate-folder command for merging ``X\\X`` folders into ``X``."""

from pathlib import Path
from typing import Optional

import click
from rich.table import Table

from ..duplicate_folder_fixer import DuplicateFolderFixer, write_fix_report
from .base import command_context, console


@click.command("fix-duplicates")
@click.argument("root", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option(
    "--apply",
    is_flag=True,
    help="Perform the moves (default is a dry run that only reports them)",
)
@click.option("--overwrite", is_flag=True, help="Replace existing names in X instead of skipping")
@click.option(
    "--report",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write planned/performed actions to this CSV",
)
@click.pass_context
def fix_duplicates(
    ctx: click.Context,
    root: Path,
    apply: bool,
    overwrite: bool,
    report: Optional[Path],
) -> None:
    """Move the contents of ROOT\\X\\X up into ROOT\\X for every subfolder X.

    Examples:
        share-migrator fix-duplicates D:\\Shares
        share-migrator fix-duplicates D:\\Shares --apply --report fixes.csv
    """
    command_context(ctx).get_config()
    fixer = DuplicateFolderFixer(root, dry_run=not apply, overwrite=overwrite)
    results = fixer.run()

    if not results:
        click.echo("No duplicated folders found.")
        return

    title = "Duplicate Folders" + ("" if apply else " (dry run)")
    table = Table(title=title)
    table.add_column("Folder", style="cyan")
    table.add_column("Moved", style="green")
    table.add_column("Skipped", style="yellow")
    table.add_column("Errors", style="red")
    table.add_column("Inner removed")
    for r in results:
        table.add_row(
            r.folder,
            str(len(r.moved)),
            str(len(r.skipped)),
            str(len(r.errors)),
            "yes" if r.inner_removed else "no",
        )
    console.print(table)

    if report:
        write_fix_report(results, report)
        console.print(f"Report written to [bold]{report}[/bold]")
    if not apply:
        console.print("\nRe-run with --apply to perform these moves.")
