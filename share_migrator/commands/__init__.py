"""CLI commands of the share migrator."""

import click

from .base import CommandContext, command_context, exit_with_error
from .duplicates import fix_duplicates
from .inventory import inventory
from .orchestrate import consolidate, dedupe_summary, orchestrate, run_folder
from .permissions import audit_permissions, grant_permissions
from .transfer import job_show, sync, upload

ALL_COMMANDS = [
    inventory,
    grant_permissions,
    audit_permissions,
    fix_duplicates,
    upload,
    sync,
    job_show,
    orchestrate,
    run_folder,
    consolidate,
    dedupe_summary,
]


def register_commands(cli: click.Group) -> None:
    """Register all commands with the CLI group."""
    for command in ALL_COMMANDS:
        cli.add_command(command)


__all__ = [
    "ALL_COMMANDS",
    "CommandContext",
    "command_context",
    "exit_with_error",
    "register_commands",
]
