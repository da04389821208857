"""
Tests for azcopy command construction and transfer targets.
"""

import os

import pytest

from share_migrator.config_manager import StorageConfig
from share_migrator.transfer.azcopy_command import (
    SAS_MASK,
    TransferOptions,
    TransferTarget,
    build_azcopy_command,
)

SAS = "sv=2022-11-02&ss=f&sig=abc%2Bdef"


@pytest.fixture
def target() -> TransferTarget:
    return TransferTarget(account_name="acct", share="migrated", path="Finance", sas_token=SAS)


class TestTransferTarget:
    """Test cases for TransferTarget."""

    def test_url_with_sas(self, target: TransferTarget):
        assert target.url() == f"https://acct.file.core.windows.net/migrated/Finance?{SAS}"

    def test_safe_url_masks_sas(self, target: TransferTarget):
        assert target.safe_url() == f"https://acct.file.core.windows.net/migrated/Finance?{SAS_MASK}"
        assert "sig=" not in target.safe_url()

    def test_mask(self, target: TransferTarget):
        assert target.mask(f"copy to {target.url()}") == f"copy to {target.safe_url()}"

    def test_leading_question_mark_stripped(self):
        t = TransferTarget(account_name="acct", share="s", sas_token="?sv=1")
        assert t.sas_token == "sv=1"

    def test_path_normalized_and_quoted(self):
        t = TransferTarget(account_name="acct", share="s", path="\\Team Docs\\2024\\")
        assert t.path == "Team Docs/2024"
        assert t.url() == "https://acct.file.core.windows.net/s/Team%20Docs/2024"

    def test_blob_service(self):
        t = TransferTarget(account_name="acct", share="container", service="blob")
        assert t.url() == "https://acct.blob.core.windows.net/container"

    def test_child(self, target: TransferTarget):
        child = target.child("Q1")
        assert child.path == "Finance/Q1"
        assert child.sas_token == SAS
        assert TransferTarget(account_name="a", share="s").child("X").path == "X"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"account_name": "", "share": "s"},
            {"account_name": "a", "share": ""},
            {"account_name": "a", "share": "s", "service": "queue"},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            TransferTarget(**kwargs)

    def test_from_config(self):
        storage = StorageConfig(account_name="acct", share="s", sas_token="?sv=1", service="blob")
        t = TransferTarget.from_config(storage, "sub")
        assert t.url() == "https://acct.blob.core.windows.net/s/sub?sv=1"


class TestTransferOptions:
    """Test cases for TransferOptions validation."""

    def test_invalid_mode(self):
        with pytest.raises(ValueError):
            TransferOptions(mode="move")

    def test_invalid_overwrite(self):
        with pytest.raises(ValueError):
            TransferOptions(overwrite="always")

    def test_delete_destination_requires_sync(self):
        with pytest.raises(ValueError):
            TransferOptions(mode="copy", delete_destination=True)
        TransferOptions(mode="sync", delete_destination=True)


class TestBuildAzcopyCommand:
    """Test cases for build_azcopy_command."""

    def test_copy_defaults(self, target: TransferTarget):
        args = build_azcopy_command("azcopy", "/data/Finance", target)

        assert args == [
            "azcopy",
            "copy",
            os.path.join("/data/Finance", "*"),
            target.url(),
            "--recursive=true",
            "--overwrite=ifSourceNewer",
            "--log-level=INFO",
            "--output-type",
            "json",
        ]

    def test_copy_folder_itself(self, target: TransferTarget):
        args = build_azcopy_command(
            "azcopy", "/data/Finance", target, TransferOptions(copy_contents=False)
        )
        assert args[2] == "/data/Finance"

    def test_sync(self, target: TransferTarget):
        args = build_azcopy_command(
            "azcopy",
            "/data/Finance",
            target,
            TransferOptions(mode="sync", delete_destination=True),
        )
        assert args[1] == "sync"
        assert args[2] == "/data/Finance"
        assert "--delete-destination=true" in args
        assert not any(a.startswith("--overwrite") for a in args)

    def test_optional_flags(self, target: TransferTarget):
        options = TransferOptions(
            overwrite="false", preserve_permissions=True, put_md5=True, extra_args=["--dry-run"]
        )
        args = build_azcopy_command(
            "/opt/azcopy", "/data", target, options, log_level="ERROR", cap_mbps=200
        )
        assert "--overwrite=false" in args
        assert "--preserve-smb-permissions=true" in args
        assert "--preserve-smb-info=true" in args
        assert "--put-md5" in args
        assert "--cap-mbps=200" in args
        assert "--log-level=ERROR" in args
        assert args[-1] == "--dry-run"

    def test_preserve_permissions_ignored_for_blob(self):
        target = TransferTarget(account_name="acct", share="c", service="blob")
        args = build_azcopy_command(
            "azcopy", "/data", target, TransferOptions(preserve_permissions=True)
        )
        assert not any("preserve-smb" in a for a in args)
