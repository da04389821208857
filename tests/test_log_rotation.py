"""
Tests for numbered wrapper log rotation.
"""

from pathlib import Path

import pytest

from share_migrator.transfer.log_rotation import next_log_path, prune_logs


class TestLogRotation:
    """Test cases for next_log_path and prune_logs."""

    def test_first_log(self, tmp_path: Path):
        assert next_log_path(tmp_path) == tmp_path / "upload-logs-1.txt"

    def test_missing_directory(self, tmp_path: Path):
        assert next_log_path(tmp_path / "missing").name == "upload-logs-1.txt"

    def test_next_after_highest(self, tmp_path: Path):
        for n in (1, 2, 10):
            (tmp_path / f"upload-logs-{n}.txt").write_text("")
        (tmp_path / "upload-logs-x.txt").write_text("")
        assert next_log_path(tmp_path).name == "upload-logs-11.txt"

    def test_prune_keeps_newest(self, tmp_path: Path):
        for n in range(1, 13):
            (tmp_path / f"upload-logs-{n}.txt").write_text("")
        (tmp_path / "other.txt").write_text("")

        removed = prune_logs(tmp_path, keep=10)

        assert [p.name for p in removed] == ["upload-logs-1.txt", "upload-logs-2.txt"]
        assert (tmp_path / "upload-logs-3.txt").exists()
        assert (tmp_path / "other.txt").exists()

    def test_prune_nothing_to_do(self, tmp_path: Path):
        (tmp_path / "upload-logs-1.txt").write_text("")
        assert prune_logs(tmp_path, keep=3) == []

    def test_keep_must_be_positive(self, tmp_path: Path):
        with pytest.raises(ValueError):
            prune_logs(tmp_path, keep=0)
