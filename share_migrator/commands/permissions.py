"""Permission commands: grant access with icacls/takeown and audit ACLs."""

import os
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.table import Table

from ..exceptions import ExternalToolError
from ..permissions.auditor import PermissionAuditor
from ..permissions.granter import PermissionGranter
from .base import command_context, console, exit_with_error


@click.command("grant-permissions")
@click.argument("paths", nargs=-1, required=True, type=click.Path(path_type=Path))
@click.option(
    "--account",
    envvar="MIGRATION_ACCOUNT",
    required=True,
    help="Account to grant Full Control to, e.g. CONTOSO\\svc-migration (MIGRATION_ACCOUNT)",
)
@click.option("--recursive/--no-recursive", default=True, show_default=True)
@click.option("--take-ownership", is_flag=True, help="Run takeown before granting")
@click.option(
    "--stop-on-error",
    is_flag=True,
    help="Let icacls stop at the first error inside a tree (omit /C)",
)
@click.pass_context
def grant_permissions(
    ctx: click.Context,
    paths: Tuple[Path, ...],
    account: str,
    recursive: bool,
    take_ownership: bool,
    stop_on_error: bool,
) -> None:
    """Grant ACCOUNT Full Control on PATHS.

    Entries are added with icacls /grant; existing entries are kept.

    Examples:
        share-migrator grant-permissions D:\\Shares\\Finance --account CONTOSO\\svc-mig
        share-migrator grant-permissions D:\\A D:\\B --account svc-mig --take-ownership
    """
    command_context(ctx).get_config()
    try:
        granter = PermissionGranter(
            account,
            recursive=recursive,
            take_ownership=take_ownership,
            continue_on_error=not stop_on_error,
        )
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--account") from e
    try:
        results = granter.grant_many([str(p) for p in paths])
    except ExternalToolError as e:
        exit_with_error(str(e))

    table = Table(title=f"Grant Full Control to {account}")
    table.add_column("Path", style="cyan")
    table.add_column("takeown")
    table.add_column("icacls")
    table.add_column("Result")
    for r in results:
        takeown = "-" if r.takeown_exit_code is None else str(r.takeown_exit_code)
        icacls = "-" if r.icacls_exit_code is None else str(r.icacls_exit_code)
        outcome = "[green]OK[/green]" if r.succeeded else "[red]FAILED[/red]"
        table.add_row(r.path, takeown, icacls, outcome)
    console.print(table)

    if not all(r.succeeded for r in results):
        sys.exit(1)


@click.command("audit-permissions")
@click.argument("root", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Audit CSV (default: ./permissions-audit-<root name>.csv)",
)
@click.option("--account", envvar="MIGRATION_ACCOUNT", help="Account to check for Full Control")
@click.option(
    "--max-depth",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Directory levels below ROOT to audit",
)
@click.pass_context
def audit_permissions(
    ctx: click.Context,
    root: Path,
    output: Optional[Path],
    account: Optional[str],
    max_depth: int,
) -> None:
    """Write the ACL entries of ROOT (and subdirectories) to a CSV.

    Examples:
        share-migrator audit-permissions D:\\Shares\\Finance --max-depth 2
    """
    command_context(ctx).get_config()
    output = output or Path.cwd() / f"permissions-audit-{root.name or 'root'}.csv"
    auditor = PermissionAuditor(account=account, max_depth=max_depth)
    try:
        counters = auditor.audit(root, output)
    except ExternalToolError as e:
        exit_with_error(str(e))

    table = Table(title="Permission Audit")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Paths audited", str(counters["paths"]))
    table.add_row("ACL entries", str(counters["entries"]))
    table.add_row("Errors", str(counters["errors"]))
    if account:
        table.add_row(f"Paths with Full Control for {account}", str(counters["full_control"]))
    table.add_row("Report", os.fspath(output))
    console.print(table)
