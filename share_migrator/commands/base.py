"""Base command infrastructure and shared utilities.

This module provides common utilities used across command modules:
- LevelStyledRichHandler for interactive console logging
- CommandContext for shared command execution context
- Shared option groups for transfer destinations and inventory runs
"""

import logging
import sys
from pathlib import Path
from typing import Any, Callable, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.style import Style
from rich.table import Table

from ..config_manager import MigrationConfig, create_config_from_env, setup_logging
from ..exceptions import ConfigurationError, MissingConfigurationError
from ..inventory.models import FolderSummary
from ..inventory.walker import InventoryOptions
from ..transfer.azcopy_command import VALID_OVERWRITE, TransferOptions, TransferTarget

console = Console()

# Quieten chatty third-party loggers
for name in ["urllib3", "urllib3.connectionpool", "psutil"]:
    logging.getLogger(name).setLevel(logging.WARNING)


class LevelStyledRichHandler(RichHandler):
    def get_level_style(self, level_name: str) -> Style:
        """Override log level colors for better readability."""
        if level_name == "INFO":
            return Style(color="blue", bold=True)
        if level_name == "DEBUG":
            return Style(color="white", dim=True)
        if level_name == "WARNING":
            return Style(color="yellow", bold=True)
        if level_name == "ERROR":
            return Style(color="red", bold=True)
        if level_name == "CRITICAL":
            return Style(color="red", bold=True, reverse=True)
        return Style(color="cyan")


def configure_cli_logging(log_level: str) -> None:
    """Route all logging through a rich console handler on stderr."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[LevelStyledRichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


class CommandContext:
    """Shared context for command execution."""

    def __init__(
        self,
        ctx: click.Context,
        debug: bool = False,
        log_level: str = "INFO",
    ):
        self.click_ctx = ctx
        self.debug = debug
        self.log_level = log_level

    def get_config(self, plain_logging: bool = False, **kwargs: Any) -> MigrationConfig:
        """Build the validated configuration, exiting on invalid settings.

        Args:
            plain_logging: Use the colorlog console handler instead of rich
                (child processes); also used whenever ``LOG_FILE`` is set
            **kwargs: Overrides passed to ``create_config_from_env``
        """
        try:
            config = create_config_from_env(**kwargs)
        except ConfigurationError as e:
            exit_with_error(f"Invalid configuration: {e.message}")
        config.logging.level = self.log_level
        if plain_logging or config.logging.file_output:
            setup_logging(config.logging)
        if self.debug:
            config.log_configuration_summary()
        return config


def command_context(ctx: click.Context) -> CommandContext:
    """Create CommandContext from click context."""
    obj = ctx.obj or {}
    return CommandContext(
        ctx=ctx,
        debug=obj.get("debug", False),
        log_level=obj.get("log_level", "INFO"),
    )


def exit_with_error(message: str, code: int = 1) -> None:
    """Exit with error message."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(code)


def target_options(func: Callable) -> Callable:
    """Destination account, share and azcopy settings."""
    options = [
        click.option("--account-name", help="Storage account name (STORAGE_ACCOUNT_NAME)"),
        click.option("--share", help="File share or container (STORAGE_SHARE_NAME)"),
        click.option("--sas-token", help="SAS token (STORAGE_SAS_TOKEN)"),
        click.option(
            "--service",
            type=click.Choice(["file", "blob"]),
            help="Storage service (STORAGE_SERVICE, default: file)",
        ),
        click.option("--azcopy-path", help="azcopy executable (AZCOPY_PATH)"),
        click.option(
            "--overwrite",
            type=click.Choice(list(VALID_OVERWRITE)),
            default="ifSourceNewer",
            show_default=True,
            help="Overwrite policy of copy uploads",
        ),
        click.option(
            "--preserve-permissions",
            is_flag=True,
            help="Preserve SMB permissions and attributes (file shares only)",
        ),
        click.option("--put-md5", is_flag=True, help="Store MD5 hashes of uploaded files"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def inventory_options(func: Callable) -> Callable:
    """Inventory walk settings; unset values come from the environment."""
    options = [
        click.option(
            "--sanitize-names/--no-sanitize-names",
            default=None,
            help="Rename entries with invalid names (INVENTORY_SANITIZE_NAMES)",
        ),
        click.option(
            "--replacement-char",
            help="Replacement for invalid characters (INVENTORY_REPLACEMENT_CHAR, default: _)",
        ),
        click.option(
            "--compute-sizes/--no-compute-sizes",
            default=None,
            help="Sum file sizes (INVENTORY_COMPUTE_SIZES)",
        ),
        click.option("--max-depth", type=click.IntRange(min=0), help="Maximum depth (root = 0)"),
        click.option(
            "--follow-reparse-points/--no-follow-reparse-points",
            default=None,
            help="Traverse symlinks and junctions",
        ),
        click.option("--probe-read", is_flag=True, help="Open every file to check read access"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def build_inventory_options(
    config: MigrationConfig,
    root: Path,
    output_dir: Path,
    sanitize_names: Optional[bool],
    replacement_char: Optional[str],
    compute_sizes: Optional[bool],
    max_depth: Optional[int],
    follow_reparse_points: Optional[bool],
    probe_read: bool,
) -> InventoryOptions:
    """Merge command line flags over the inventory configuration."""
    inv = config.inventory
    try:
        return InventoryOptions(
            root=root,
            output_dir=output_dir,
            sanitize_names=inv.sanitize_names if sanitize_names is None else sanitize_names,
            replacement_char=replacement_char or inv.replacement_char,
            compute_sizes=inv.compute_sizes if compute_sizes is None else compute_sizes,
            max_depth=inv.max_depth if max_depth is None else max_depth,
            follow_reparse_points=(
                inv.follow_reparse_points if follow_reparse_points is None else follow_reparse_points
            ),
            probe_file_read=probe_read,
        )
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def build_target(config: MigrationConfig, path: str = "") -> TransferTarget:
    """Transfer target from the storage configuration, exiting if incomplete."""
    try:
        config.storage.require_destination()
    except MissingConfigurationError as e:
        exit_with_error(f"{e.message}. {e.recovery_suggestion}")
    return TransferTarget.from_config(config.storage, path)


def build_transfer_options(
    mode: str,
    overwrite: str = "ifSourceNewer",
    preserve_permissions: bool = False,
    put_md5: bool = False,
    delete_destination: bool = False,
    copy_contents: bool = True,
) -> TransferOptions:
    try:
        return TransferOptions(
            mode=mode,
            overwrite=overwrite,
            preserve_permissions=preserve_permissions,
            put_md5=put_md5,
            delete_destination=delete_destination,
            copy_contents=copy_contents,
        )
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def print_folder_summary(summary: FolderSummary, title: str = "Inventory Summary") -> None:
    """Render a FolderSummary as a two-column rich table."""
    table = Table(title=title)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Root", summary.root)
    table.add_row("Folders", f"{summary.total_folders} ({summary.inaccessible_folders} inaccessible)")
    table.add_row("Files", f"{summary.total_files} ({summary.inaccessible_files} inaccessible)")
    table.add_row("Skipped reparse points", str(summary.skipped_reparse))
    table.add_row("Renamed / invalid names", f"{summary.renamed_items} / {summary.invalid_names}")
    if summary.size_computed:
        table.add_row("Total bytes", f"{summary.total_bytes:,}")
    table.add_row("Started", summary.started_at)
    table.add_row("Finished", summary.finished_at)
    console.print(table)
