"""Centralized summary CSV files shared by parallel uploads."""

from .models import (
    RECONCILIATION_COLUMNS,
    RECONCILIATION_FILE,
    TIMESTAMP_FORMAT,
    TRANSFER_SUMMARY_COLUMNS,
    TRANSFER_SUMMARY_FILE,
    ReconciliationRow,
    TransferSummaryRow,
)
from .summary_csv import SummaryCsvStore
from .summary_lock import SummaryFileLock

__all__ = [
    "RECONCILIATION_COLUMNS",
    "RECONCILIATION_FILE",
    "TIMESTAMP_FORMAT",
    "TRANSFER_SUMMARY_COLUMNS",
    "TRANSFER_SUMMARY_FILE",
    "ReconciliationRow",
    "SummaryCsvStore",
    "SummaryFileLock",
    "TransferSummaryRow",
]
