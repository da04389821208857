"""
Tests for SummaryCsvStore, the centralized summary CSV.
"""

import csv
import multiprocessing
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from share_migrator.config_manager import SummaryConfig
from share_migrator.exceptions import LockTimeout, SummaryWriteError
from share_migrator.summary.models import (
    TRANSFER_SUMMARY_COLUMNS,
    TRANSFER_SUMMARY_FILE,
    ReconciliationRow,
    TransferSummaryRow,
)
from share_migrator.summary.summary_csv import SummaryCsvStore
from share_migrator.summary.summary_lock import SummaryFileLock


def make_row(subfolder: str = "Finance", timestamp: str = "2024-05-02 10:00:00", **overrides):
    row = TransferSummaryRow(
        subfolder=subfolder,
        job_id="job-1",
        status="Completed",
        total_transfers=2,
        completed=2,
        failed=0,
        skipped=0,
        bytes_transferred=15,
        duration="00:00:03",
        timestamp=timestamp,
        wrapper_log="upload-logs-1.txt",
    ).to_csv_row()
    row.update(overrides)
    return row


def append_rows(path: str, worker_id: int, count: int) -> None:
    """Append ``count`` rows from a separate process."""
    config = SummaryConfig(write_retries=3, retry_delay=0.0, lock_timeout=30, queue_dir_name=".resumen-queue")
    store = SummaryCsvStore(path, TRANSFER_SUMMARY_COLUMNS, config)
    for i in range(count):
        store.append(make_row(f"proc-{worker_id}-{i}", wrapper_log="x" * 200))


@pytest.fixture
def store(tmp_path: Path, fast_summary_config: SummaryConfig) -> SummaryCsvStore:
    return SummaryCsvStore(
        tmp_path / "runs" / TRANSFER_SUMMARY_FILE, TRANSFER_SUMMARY_COLUMNS, fast_summary_config
    )


class TestSummaryRows:
    """Test cases for the summary row models."""

    def test_transfer_row_columns(self):
        row = make_row()
        assert list(row) == TRANSFER_SUMMARY_COLUMNS
        assert row["Completados"] == "2"
        assert row["LogWrapper"] == "upload-logs-1.txt"

    def test_reconciliation_row_columns(self):
        row = ReconciliationRow(
            subfolder="Finance",
            total_folders=2,
            total_files=2,
            inaccessible_folders=0,
            inaccessible_files=0,
            total_bytes=15,
            job_id="job-1",
            status="Completed",
            completed=2,
            failed=0,
            skipped=0,
            bytes_transferred=15,
            reconciled="SI",
            timestamp="2024-05-02 10:00:00",
        ).to_csv_row()
        assert row["Conciliado"] == "SI"
        assert row["TotalBytes"] == "15"


class TestAppend:
    """Test cases for appending rows."""

    def test_header_written_once(self, store: SummaryCsvStore):
        assert store.append(make_row("A"))
        assert store.append(make_row("B"))

        lines = store.path.read_text(encoding="utf-8").splitlines()
        assert lines[0] == ",".join(TRANSFER_SUMMARY_COLUMNS)
        assert len(lines) == 3
        assert [r["Subcarpeta"] for r in store.read_rows()] == ["A", "B"]

    def test_crlf_line_endings(self, store: SummaryCsvStore):
        store.append(make_row())
        assert store.path.read_bytes().count(b"\r\n") == 2

    def test_unknown_column_rejected(self, store: SummaryCsvStore):
        with pytest.raises(ValueError):
            store.append({"Subcarpeta": "A", "Color": "blue"})

    def test_missing_columns_blank(self, store: SummaryCsvStore):
        store.append({"Subcarpeta": "A", "Estado": "Failed"})
        row = store.read_rows()[0]
        assert row["Estado"] == "Failed"
        assert row["JobID"] == ""

    def test_lock_released_after_append(self, store: SummaryCsvStore):
        store.append(make_row())
        assert not SummaryFileLock(store.path).lock_file.exists()

    def test_concurrent_appends_never_interleave(self, store: SummaryCsvStore):
        """Every line of the file is a complete row after parallel appends."""
        threads_count, per_thread = 8, 10

        def worker(n: int) -> None:
            for i in range(per_thread):
                store.append(make_row(f"folder-{n}-{i}", wrapper_log="x" * 200))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(threads_count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        with open(store.path, newline="", encoding="utf-8") as f:
            lines = list(csv.reader(f))
        assert lines[0] == TRANSFER_SUMMARY_COLUMNS
        assert len(lines) == 1 + threads_count * per_thread
        assert all(len(line) == len(TRANSFER_SUMMARY_COLUMNS) for line in lines)
        names = {line[0] for line in lines[1:]}
        assert len(names) == threads_count * per_thread

    def test_concurrent_process_appends_never_interleave(self, store: SummaryCsvStore):
        """Separate processes writing the same file only append complete rows."""
        processes_count, per_process = 4, 15
        store.path.parent.mkdir(parents=True)

        ctx = multiprocessing.get_context()
        processes = [
            ctx.Process(target=append_rows, args=(str(store.path), n, per_process))
            for n in range(processes_count)
        ]
        for p in processes:
            p.start()
        for p in processes:
            p.join(timeout=120)
        assert [p.exitcode for p in processes] == [0] * processes_count
        store.drain_queue()

        with open(store.path, newline="", encoding="utf-8") as f:
            lines = list(csv.reader(f))
        assert lines[0] == TRANSFER_SUMMARY_COLUMNS
        assert len(lines) == 1 + processes_count * per_process
        assert all(len(line) == len(TRANSFER_SUMMARY_COLUMNS) for line in lines)
        expected = {f"proc-{n}-{i}" for n in range(processes_count) for i in range(per_process)}
        assert {line[0] for line in lines[1:]} == expected

    def test_legacy_header_archived(self, store: SummaryCsvStore):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("Folder,Status\r\nold,Done\r\n", encoding="utf-8")

        store.append(make_row())

        archived = list(store.path.parent.glob("resumen-subidas.legacy-*.csv"))
        assert len(archived) == 1
        assert "old,Done" in archived[0].read_text(encoding="utf-8")
        assert [r["Subcarpeta"] for r in store.read_rows()] == ["Finance"]


class TestQueueFallback:
    """Test cases for the pending-row queue."""

    def test_row_queued_when_lock_unavailable(self, store: SummaryCsvStore):
        with patch.object(SummaryFileLock, "acquire", side_effect=LockTimeout("busy")):
            assert store.append(make_row("queued")) is False

        pending = store.pending_queue_files()
        assert len(pending) == 1
        assert pending[0].parent.name == ".resumen-queue"
        assert pending[0].name.startswith("resumen-subidas__")
        assert store.read_rows() == []

    def test_queued_rows_drained_on_next_append(self, store: SummaryCsvStore):
        with patch.object(SummaryFileLock, "acquire", side_effect=LockTimeout("busy")):
            store.append(make_row("queued"))

        assert store.append(make_row("fresh"))

        assert [r["Subcarpeta"] for r in store.read_rows()] == ["queued", "fresh"]
        assert store.pending_queue_files() == []

    def test_drain_queue(self, store: SummaryCsvStore):
        with patch.object(SummaryFileLock, "acquire", side_effect=LockTimeout("busy")):
            store.append(make_row("one"))
            store.append(make_row("two"))

        assert store.drain_queue() == 2
        assert store.drain_queue() == 0
        assert [r["Subcarpeta"] for r in store.read_rows()] == ["one", "two"]

    def test_unreadable_queue_file_set_aside(self, store: SummaryCsvStore):
        store.queue_dir.mkdir(parents=True)
        bad = store.queue_dir / "resumen-subidas__broken.json"
        bad.write_text("not json", encoding="utf-8")

        assert store.drain_queue() == 0
        assert not bad.exists()
        assert (store.queue_dir / "resumen-subidas__broken.bad").exists()

    def test_row_lost_raises(self, store: SummaryCsvStore):
        store.path.parent.mkdir(parents=True)
        # A file where the queue directory should be
        store.queue_dir.write_text("")

        with patch.object(SummaryFileLock, "acquire", side_effect=LockTimeout("busy")):
            with pytest.raises(SummaryWriteError):
                store.append(make_row())

    def test_retries_before_queueing(self, store: SummaryCsvStore):
        with patch.object(SummaryFileLock, "acquire", side_effect=LockTimeout("busy")) as acquire:
            store.append(make_row())
        assert acquire.call_count == 3


class TestDeduplicate:
    """Test cases for deduplicate."""

    def test_keeps_newest_per_key(self, store: SummaryCsvStore):
        store.append(make_row("A", "2024-05-02 10:00:00", Estado="Failed"))
        store.append(make_row("B", "2024-05-02 10:30:00"))
        store.append(make_row("A", "2024-05-02 11:00:00", Estado="Completed"))

        removed = store.deduplicate(["Subcarpeta"])

        rows = store.read_rows()
        assert removed == 1
        assert [(r["Subcarpeta"], r["Estado"]) for r in rows] == [("B", "Completed"), ("A", "Completed")]

    def test_equal_timestamps_last_wins(self, store: SummaryCsvStore):
        store.append(make_row("A", JobID="first"))
        store.append(make_row("A", JobID="second"))

        store.deduplicate(["Subcarpeta"])

        assert [r["JobID"] for r in store.read_rows()] == ["second"]

    def test_older_row_later_in_file_loses(self, store: SummaryCsvStore):
        store.append(make_row("A", "2024-05-02 12:00:00", JobID="new"))
        store.append(make_row("A", "2024-05-02 09:00:00", JobID="old"))

        store.deduplicate(["Subcarpeta"])

        assert [r["JobID"] for r in store.read_rows()] == ["new"]

    def test_no_duplicates_leaves_file(self, store: SummaryCsvStore):
        store.append(make_row("A"))
        before = store.path.read_bytes()
        assert store.deduplicate(["Subcarpeta"]) == 0
        assert store.path.read_bytes() == before

    def test_missing_file(self, store: SummaryCsvStore):
        assert store.deduplicate(["Subcarpeta"]) == 0
