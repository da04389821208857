"""Row types of the centralized summary CSV files.

Column names are kept as they appear in the shared spreadsheets
(``resumen-subidas.csv`` / ``resumen-conciliaciones.csv``).
"""

from dataclasses import asdict, dataclass
from typing import Dict, List

TRANSFER_SUMMARY_FILE = "resumen-subidas.csv"
RECONCILIATION_FILE = "resumen-conciliaciones.csv"

TRANSFER_SUMMARY_COLUMNS: List[str] = [
    "Subcarpeta",
    "JobID",
    "Estado",
    "TotalTransfers",
    "Completados",
    "Fallidos",
    "Saltados",
    "BytesTransferidos",
    "Duracion",
    "FechaHora",
    "LogWrapper",
]

RECONCILIATION_COLUMNS: List[str] = [
    "Subcarpeta",
    "TotalFolders",
    "TotalFiles",
    "InaccessibleFolders",
    "InaccessibleFiles",
    "TotalBytes",
    "JobID",
    "Estado",
    "Completados",
    "Fallidos",
    "Saltados",
    "BytesTransferidos",
    "Conciliado",
    "FechaHora",
]

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class TransferSummaryRow:
    """One upload/sync invocation."""

    subfolder: str
    job_id: str
    status: str
    total_transfers: int
    completed: int
    failed: int
    skipped: int
    bytes_transferred: int
    duration: str
    timestamp: str
    wrapper_log: str

    def to_csv_row(self) -> Dict[str, str]:
        values = [str(v) for v in asdict(self).values()]
        return dict(zip(TRANSFER_SUMMARY_COLUMNS, values))


@dataclass
class ReconciliationRow:
    """Inventory counters of one subfolder next to its transfer outcome."""

    subfolder: str
    total_folders: int
    total_files: int
    inaccessible_folders: int
    inaccessible_files: int
    total_bytes: int
    job_id: str
    status: str
    completed: int
    failed: int
    skipped: int
    bytes_transferred: int
    reconciled: str
    timestamp: str

    def to_csv_row(self) -> Dict[str, str]:
        values = [str(v) for v in asdict(self).values()]
        return dict(zip(RECONCILIATION_COLUMNS, values))
