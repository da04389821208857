"""Recursive inventory of file shares with access probing."""

from .models import AccessStatus, EntryType, FolderSummary, InventoryRow
from .walker import InventoryOptions, InventoryWalker, run_inventory

__all__ = [
    "AccessStatus",
    "EntryType",
    "FolderSummary",
    "InventoryOptions",
    "InventoryRow",
    "InventoryWalker",
    "run_inventory",
]
