"""
Tests for icacls parsing and PermissionAuditor.
"""

import csv
from pathlib import Path

import pytest

from conftest import FakeRunner
from share_migrator.permissions.auditor import PermissionAuditor, parse_icacls_output
from share_migrator.utils.process_runner import CommandResult

SAMPLE_OUTPUT = (
    "D:\\Shares\\Finance NT AUTHORITY\\SYSTEM:(OI)(CI)(F)\n"
    "                   CONTOSO\\migration:(I)(OI)(CI)(M)\n"
    "                   BUILTIN\\Users:(DENY)(F)\n"
    "\n"
    "Successfully processed 1 files; Failed processing 0 files\n"
)


class TestParseIcaclsOutput:
    """Test cases for parse_icacls_output."""

    def test_with_known_path(self):
        entries = parse_icacls_output(SAMPLE_OUTPUT, "D:\\Shares\\Finance")

        assert [e.identity for e in entries] == [
            "NT AUTHORITY\\SYSTEM",
            "CONTOSO\\migration",
            "BUILTIN\\Users",
        ]
        assert all(e.path == "D:\\Shares\\Finance" for e in entries)
        system, migration, users = entries
        assert system.has_full_control
        assert system.flags == ["OI", "CI"]
        assert migration.inherited
        assert migration.rights == ["M"]
        assert users.is_deny
        assert not users.has_full_control

    def test_path_inferred(self):
        entries = parse_icacls_output(SAMPLE_OUTPUT)
        assert entries[0].path == "D:\\Shares\\Finance"
        assert entries[0].identity == "NT AUTHORITY\\SYSTEM"

    def test_path_with_space_inferred(self):
        entries = parse_icacls_output("D:\\My Share CONTOSO\\bob:(F)\n")
        assert entries[0].path == "D:\\My Share"
        assert entries[0].identity == "CONTOSO\\bob"

    def test_special_rights_split(self):
        entries = parse_icacls_output("C:\\data CONTOSO\\bob:(S,RD)\n", "C:\\data")
        assert entries[0].rights == ["S", "RD"]

    def test_matches_account(self):
        entry = parse_icacls_output(SAMPLE_OUTPUT, "D:\\Shares\\Finance")[1]
        assert entry.matches_account("contoso\\MIGRATION")
        assert entry.matches_account("migration")
        assert not entry.matches_account("grat")


class TestPermissionAuditor:
    """Test cases for PermissionAuditor."""

    @staticmethod
    def icacls_handler(args):
        path = args[1]
        if path.endswith("b"):
            return CommandResult(args=args, exit_code=5, stderr="Access is denied.")
        return CommandResult(
            args=args,
            exit_code=0,
            stdout=f"{path} CONTOSO\\migration:(OI)(CI)(F)\n   BUILTIN\\Users:(I)(RX)\n",
        )

    def test_negative_depth_rejected(self):
        with pytest.raises(ValueError):
            PermissionAuditor(max_depth=-1)

    def test_targets_respect_depth(self, sample_tree: Path):
        assert PermissionAuditor(max_depth=0).iter_targets(sample_tree) == [sample_tree]
        assert PermissionAuditor(max_depth=1).iter_targets(sample_tree) == [
            sample_tree,
            sample_tree / "b",
        ]

    def test_audit_writes_csv(self, sample_tree: Path, tmp_path: Path):
        runner = FakeRunner(handler=self.icacls_handler)
        auditor = PermissionAuditor(account="migration", max_depth=1, runner=runner)
        output = tmp_path / "audit" / "acl.csv"

        counters = auditor.audit(sample_tree, output)

        assert counters == {"paths": 2, "entries": 2, "errors": 1, "full_control": 1}
        with open(output, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert rows[0]["Identity"] == "CONTOSO\\migration"
        assert rows[0]["AccountMatch"] == "True"
        assert rows[0]["HasFullControl"] == "True"
        assert rows[1]["Inherited"] == "True"
        assert rows[2]["Identity"] == "ERROR"
        assert rows[2]["Error"] == "Access is denied."
