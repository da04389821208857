"""Inventory command.

This module provides the CLI command for walking a tree and writing the
inventory CSV files, log and folder summary.
"""

from pathlib import Path
from typing import Optional

import click

from ..exceptions import InventoryError
from ..inventory.walker import InventoryWalker
from .base import (
    build_inventory_options,
    command_context,
    console,
    exit_with_error,
    inventory_options,
    print_folder_summary,
)


@click.command("inventory")
@click.argument("root", type=click.Path(path_type=Path))
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    help="Where the CSV files and logs are written (default: ./inventory-<root name>)",
)
@inventory_options
@click.pass_context
def inventory(
    ctx: click.Context,
    root: Path,
    output_dir: Optional[Path],
    sanitize_names: Optional[bool],
    replacement_char: Optional[str],
    compute_sizes: Optional[bool],
    max_depth: Optional[int],
    follow_reparse_points: Optional[bool],
    probe_read: bool,
) -> None:
    """Inventory ROOT with per-entry access probing.

    Examples:
        share-migrator inventory D:\\Shares\\Finance
        share-migrator inventory D:\\Shares\\Finance --sanitize-names --compute-sizes
    """
    config = command_context(ctx).get_config()
    output_dir = output_dir or Path.cwd() / f"inventory-{root.name or 'root'}"
    options = build_inventory_options(
        config,
        root,
        output_dir,
        sanitize_names,
        replacement_char,
        compute_sizes,
        max_depth,
        follow_reparse_points,
        probe_read,
    )
    try:
        summary = InventoryWalker(options).run()
    except InventoryError as e:
        exit_with_error(str(e))
    except OSError as e:
        exit_with_error(f"Cannot write inventory output to {output_dir}: {e}")

    print_folder_summary(summary)
    console.print(f"\nOutputs written to [bold]{output_dir}[/bold]")
