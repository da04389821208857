"""
Command line interface of the Azure share migrator.

    share-migrator [--log-level LEVEL] [--debug] COMMAND [ARGS]...
"""

import os

import click
from dotenv import load_dotenv

from . import __version__
from .commands import register_commands
from .commands.base import configure_cli_logging

# Always load .env if present
load_dotenv()


def _should_redact_env_var(key: str) -> bool:
    """Check if an environment variable key should have its value redacted."""
    sensitive_patterns = ("PASS", "SECRET", "KEY", "TOKEN", "SAS")
    return any(pattern in key.upper() for pattern in sensitive_patterns)


def print_cli_env_block(debug: bool = False) -> None:
    if not debug:
        return
    for key in (
        "STORAGE_ACCOUNT_NAME",
        "STORAGE_SHARE_NAME",
        "STORAGE_SERVICE",
        "STORAGE_SAS_TOKEN",
        "AZCOPY_PATH",
        "LOG_LEVEL",
    ):
        value = os.environ.get(key)
        if _should_redact_env_var(key) and value:
            value = "***REDACTED***"
        click.echo(f"[CLI ENV] {key}={value}", err=True)


@click.group()
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug output including environment variables",
)
@click.version_option(__version__, prog_name="share-migrator")
@click.pass_context
def cli(ctx: click.Context, log_level: str, debug: bool) -> None:
    """Azure Share Migrator - inventory, permissions and azcopy uploads of file shares."""
    ctx.ensure_object(dict)
    log_level = "DEBUG" if debug else log_level.upper()
    ctx.obj["log_level"] = log_level
    ctx.obj["debug"] = debug
    configure_cli_logging(log_level)
    print_cli_env_block(debug)


register_commands(cli)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
