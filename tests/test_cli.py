"""
Tests for the share-migrator command line interface.
"""

import csv
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from share_migrator.cli import _should_redact_env_var, cli
from share_migrator.permissions.granter import GrantResult
from share_migrator.summary.models import TRANSFER_SUMMARY_COLUMNS
from share_migrator.summary.summary_csv import SummaryCsvStore
from share_migrator.transfer.azcopy_output import AzCopyJobSummary
from share_migrator.transfer.azcopy_wrapper import TransferResult

CONFIG_ENV_VARS = [
    "STORAGE_ACCOUNT_NAME",
    "STORAGE_SHARE_NAME",
    "STORAGE_SAS_TOKEN",
    "STORAGE_SERVICE",
    "AZCOPY_PATH",
    "AZCOPY_CAP_MBPS",
    "INVENTORY_SANITIZE_NAMES",
    "INVENTORY_MAX_DEPTH",
    "INVENTORY_REPLACEMENT_CHAR",
    "MIGRATION_ACCOUNT",
    "LOG_LEVEL",
    "LOG_FILE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def transfer_result(tmp_path: Path, exit_code: int = 0, status: str = "Completed") -> TransferResult:
    return TransferResult(
        subfolder="share",
        exit_code=exit_code,
        status=status,
        summary=AzCopyJobSummary(job_id="job-1", job_status=status, completed=2, total_transfers=2),
        wrapper_log=tmp_path / "upload-logs-1.txt",
        summary_file=tmp_path / "transfer-summary.json",
        duration_seconds=1.0,
    )


class TestCliGroup:
    """Test the command group itself."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_help_lists_commands(self):
        result = self.runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        for name in (
            "inventory",
            "grant-permissions",
            "audit-permissions",
            "fix-duplicates",
            "upload",
            "sync",
            "job-show",
            "orchestrate",
            "run-folder",
            "consolidate",
            "dedupe-summary",
        ):
            assert name in result.output

    def test_version(self):
        result = self.runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "share-migrator" in result.output

    def test_redaction(self):
        assert _should_redact_env_var("STORAGE_SAS_TOKEN")
        assert not _should_redact_env_var("STORAGE_SHARE_NAME")


class TestInventoryCommand:
    """Test the inventory command."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_inventory(self, sample_tree: Path, tmp_path: Path):
        output_dir = tmp_path / "out"
        result = self.runner.invoke(
            cli, ["inventory", str(sample_tree), "-o", str(output_dir), "--compute-sizes"]
        )

        assert result.exit_code == 0, result.output
        assert (output_dir / "inventory.csv").is_file()
        assert "TotalBytes: 15" in (output_dir / "folder-info.txt").read_text()

    def test_inventory_missing_root(self, tmp_path: Path):
        result = self.runner.invoke(cli, ["inventory", str(tmp_path / "missing"), "-o", str(tmp_path / "out")])
        assert result.exit_code == 1
        assert "does not exist" in result.output

    def test_invalid_replacement_char(self, sample_tree: Path, tmp_path: Path):
        result = self.runner.invoke(
            cli, ["inventory", str(sample_tree), "-o", str(tmp_path / "out"), "--replacement-char", "*"]
        )
        assert result.exit_code == 2

    def test_unwritable_output_dir(self, sample_tree: Path, tmp_path: Path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")

        result = self.runner.invoke(cli, ["inventory", str(sample_tree), "-o", str(blocker / "out")])

        assert result.exit_code == 1
        assert "Cannot write inventory output" in result.output
        assert result.exception is None or isinstance(result.exception, SystemExit)


class TestDuplicatesCommand:
    """Test the fix-duplicates command."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_dry_run(self, tmp_path: Path):
        (tmp_path / "Finance" / "Finance").mkdir(parents=True)
        (tmp_path / "Finance" / "Finance" / "a.txt").write_text("a")

        result = self.runner.invoke(cli, ["fix-duplicates", str(tmp_path)])

        assert result.exit_code == 0
        assert "Re-run with --apply" in result.output
        assert (tmp_path / "Finance" / "Finance" / "a.txt").exists()

    def test_apply_with_report(self, tmp_path: Path):
        root = tmp_path / "root"
        (root / "Finance" / "Finance").mkdir(parents=True)
        (root / "Finance" / "Finance" / "a.txt").write_text("a")
        report = tmp_path / "fixes.csv"

        result = self.runner.invoke(cli, ["fix-duplicates", str(root), "--apply", "--report", str(report)])

        assert result.exit_code == 0
        assert (root / "Finance" / "a.txt").exists()
        assert report.is_file()

    def test_nothing_to_fix(self, sample_tree: Path):
        result = self.runner.invoke(cli, ["fix-duplicates", str(sample_tree)])
        assert result.exit_code == 0
        assert "No duplicated folders found." in result.output


class TestPermissionCommands:
    """Test grant-permissions and audit-permissions."""

    def setup_method(self):
        self.runner = CliRunner()

    @patch("share_migrator.commands.permissions.PermissionGranter")
    def test_grant_success(self, mock_granter, tmp_path: Path):
        mock_granter.return_value.grant_many.return_value = [
            GrantResult(path=str(tmp_path), icacls_exit_code=0)
        ]

        result = self.runner.invoke(
            cli, ["grant-permissions", str(tmp_path), "--account", "CONTOSO\\svc", "--take-ownership"]
        )

        assert result.exit_code == 0, result.output
        mock_granter.assert_called_once_with(
            "CONTOSO\\svc", recursive=True, take_ownership=True, continue_on_error=True
        )
        mock_granter.return_value.grant_many.assert_called_once_with([str(tmp_path)])

    @patch("share_migrator.commands.permissions.PermissionGranter")
    def test_grant_failure_exit_code(self, mock_granter, tmp_path: Path):
        mock_granter.return_value.grant_many.return_value = [
            GrantResult(path=str(tmp_path), icacls_exit_code=5)
        ]

        result = self.runner.invoke(cli, ["grant-permissions", str(tmp_path)], env={"MIGRATION_ACCOUNT": "svc"})

        assert result.exit_code == 1

    def test_grant_requires_account(self, tmp_path: Path):
        result = self.runner.invoke(cli, ["grant-permissions", str(tmp_path)])
        assert result.exit_code == 2

    @patch("share_migrator.commands.permissions.PermissionAuditor")
    def test_audit(self, mock_auditor, sample_tree: Path, tmp_path: Path):
        mock_auditor.return_value.audit.return_value = {
            "paths": 2,
            "entries": 5,
            "errors": 0,
            "full_control": 2,
        }
        output = tmp_path / "acl.csv"

        result = self.runner.invoke(
            cli, ["audit-permissions", str(sample_tree), "-o", str(output), "--account", "svc", "--max-depth", "1"]
        )

        assert result.exit_code == 0, result.output
        mock_auditor.assert_called_once_with(account="svc", max_depth=1)
        mock_auditor.return_value.audit.assert_called_once_with(sample_tree, output)


class TestTransferCommands:
    """Test upload, sync and job-show."""

    def setup_method(self):
        self.runner = CliRunner()

    @patch("share_migrator.commands.transfer.AzCopyWrapper")
    def test_upload(self, mock_wrapper, sample_tree: Path, tmp_path: Path):
        mock_wrapper.return_value.run.return_value = transfer_result(tmp_path)
        runs_dir = tmp_path / "runs"

        result = self.runner.invoke(
            cli,
            [
                "upload",
                str(sample_tree),
                "--runs-dir",
                str(runs_dir),
                "--account-name",
                "stmig",
                "--share",
                "finance",
                "--sas-token",
                "sv=1&sig=secret",
            ],
        )

        assert result.exit_code == 0, result.output
        args, kwargs = mock_wrapper.return_value.run.call_args
        source, target, output_dir = args
        assert source == sample_tree
        assert target.path == "share"
        assert target.sas_token == "sv=1&sig=secret"
        assert output_dir == runs_dir / "share" / "upload"
        assert kwargs["options"].mode == "copy"
        assert kwargs["options"].copy_contents is True

    @patch("share_migrator.commands.transfer.AzCopyWrapper")
    def test_upload_exit_code_passthrough(self, mock_wrapper, sample_tree: Path, tmp_path: Path):
        mock_wrapper.return_value.run.return_value = transfer_result(tmp_path, exit_code=3, status="Failed")

        result = self.runner.invoke(
            cli,
            ["upload", str(sample_tree), "--runs-dir", str(tmp_path / "runs")],
            env={"STORAGE_ACCOUNT_NAME": "stmig", "STORAGE_SHARE_NAME": "finance"},
        )

        assert result.exit_code == 3

    def test_upload_requires_storage(self, sample_tree: Path, tmp_path: Path):
        result = self.runner.invoke(cli, ["upload", str(sample_tree), "--runs-dir", str(tmp_path / "runs")])
        assert result.exit_code == 1
        assert "Storage account and share are required" in result.output

    @patch("share_migrator.commands.transfer.AzCopyWrapper")
    def test_sync_delete_destination(self, mock_wrapper, sample_tree: Path, tmp_path: Path):
        mock_wrapper.return_value.run.return_value = transfer_result(tmp_path)

        result = self.runner.invoke(
            cli,
            [
                "sync",
                str(sample_tree),
                "--runs-dir",
                str(tmp_path / "runs"),
                "--target-path",
                "archive/2024",
                "--delete-destination",
                "--account-name",
                "stmig",
                "--share",
                "finance",
            ],
        )

        assert result.exit_code == 0, result.output
        args, kwargs = mock_wrapper.return_value.run.call_args
        assert args[1].path == "archive/2024"
        assert kwargs["options"].mode == "sync"
        assert kwargs["options"].delete_destination is True

    @patch("share_migrator.commands.transfer.AzCopyWrapper")
    def test_job_show(self, mock_wrapper):
        mock_wrapper.return_value.show_job.return_value = AzCopyJobSummary(
            job_id="job-1", job_status="Completed", completed=4
        )
        result = self.runner.invoke(cli, ["job-show", "job-1"])
        assert result.exit_code == 0, result.output
        mock_wrapper.return_value.show_job.assert_called_once_with("job-1")


class TestOrchestrationCommands:
    """Test orchestrate, run-folder, consolidate and dedupe-summary."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_orchestrate_inventory_only(self, sample_tree: Path, tmp_path: Path):
        runs_dir = tmp_path / "runs"

        result = self.runner.invoke(
            cli, ["orchestrate", str(sample_tree), "--runs-dir", str(runs_dir), "--skip-upload"]
        )

        assert result.exit_code == 0, result.output
        assert (runs_dir / "b" / "inventory" / "inventory.csv").is_file()
        assert (runs_dir / "resumen-conciliaciones.csv").is_file()

    def test_orchestrate_requires_storage(self, sample_tree: Path, tmp_path: Path):
        result = self.runner.invoke(cli, ["orchestrate", str(sample_tree), "--runs-dir", str(tmp_path / "runs")])
        assert result.exit_code == 1
        assert "STORAGE_ACCOUNT_NAME" in result.output

    def test_orchestrate_no_subfolders(self, tmp_path: Path):
        root = tmp_path / "empty"
        root.mkdir()
        result = self.runner.invoke(
            cli, ["orchestrate", str(root), "--runs-dir", str(tmp_path / "runs"), "--skip-upload"]
        )
        assert result.exit_code == 0
        assert "No subfolders found." in result.output

    def test_run_folder_inventory_only(self, sample_tree: Path, tmp_path: Path):
        runs_dir = tmp_path / "runs"
        result = self.runner.invoke(
            cli, ["run-folder", str(sample_tree / "b"), "--runs-dir", str(runs_dir), "--skip-upload"]
        )

        assert result.exit_code == 0, result.output
        assert (runs_dir / "b" / "inventory" / "folder-info.txt").is_file()

    def test_consolidate_missing_runs_dir(self, tmp_path: Path):
        result = self.runner.invoke(cli, ["consolidate", "--runs-dir", str(tmp_path / "missing")])
        assert result.exit_code == 1
        assert "Runs directory not found" in result.output

    def test_dedupe_summary(self, tmp_path: Path, fast_summary_config):
        path = tmp_path / "resumen-subidas.csv"
        store = SummaryCsvStore(path, TRANSFER_SUMMARY_COLUMNS, fast_summary_config)
        store.append({"Subcarpeta": "A", "Estado": "Failed", "FechaHora": "2024-05-02 10:00:00"})
        store.append({"Subcarpeta": "A", "Estado": "Completed", "FechaHora": "2024-05-02 11:00:00"})

        result = self.runner.invoke(cli, ["dedupe-summary", str(path)])

        assert result.exit_code == 0, result.output
        assert "Removed 1 duplicate rows" in result.output
        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert [r["Estado"] for r in rows] == ["Completed"]

    def test_dedupe_summary_unknown_key(self, tmp_path: Path, fast_summary_config):
        path = tmp_path / "resumen-subidas.csv"
        SummaryCsvStore(path, TRANSFER_SUMMARY_COLUMNS, fast_summary_config).append({"Subcarpeta": "A"})

        result = self.runner.invoke(cli, ["dedupe-summary", str(path), "--key", "Folder"])

        assert result.exit_code == 1
        assert "Folder" in result.output
