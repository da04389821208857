"""
Utility modules for Azure Share Migrator.

This package contains helpers shared across components: external process
execution and external tool detection.
"""

from .process_runner import CommandResult, CommandRunner, run_command

__all__ = [
    "CommandResult",
    "CommandRunner",
    "run_command",
]
