"""azcopy copy/sync wrapping."""

from .azcopy_command import TransferOptions, TransferTarget, build_azcopy_command
from .azcopy_output import AzCopyJobSummary, AzCopyMessage, parse_json_lines, summarize_output
from .azcopy_wrapper import (
    TRANSFER_SUMMARY_JSON,
    AzCopyWrapper,
    TransferResult,
    format_duration,
    load_transfer_summary,
)
from .log_rotation import next_log_path, prune_logs

__all__ = [
    "TRANSFER_SUMMARY_JSON",
    "AzCopyJobSummary",
    "AzCopyMessage",
    "AzCopyWrapper",
    "TransferOptions",
    "TransferResult",
    "TransferTarget",
    "build_azcopy_command",
    "format_duration",
    "load_transfer_summary",
    "next_log_path",
    "parse_json_lines",
    "prune_logs",
    "summarize_output",
]
