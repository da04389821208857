"""Construction of ``azcopy copy`` / ``azcopy sync`` command lines."""

import os
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import quote

from ..config_manager import StorageConfig

VALID_MODES = ("copy", "sync")
VALID_OVERWRITE = ("true", "false", "prompt", "ifSourceNewer")
VALID_SERVICES = ("file", "blob")

SAS_MASK = "<SAS redacted>"


@dataclass
class TransferTarget:
    """Destination of a transfer: a share (or container) and a path inside it."""

    account_name: str
    share: str
    path: str = ""
    sas_token: str = ""
    service: str = "file"

    def __post_init__(self) -> None:
        if not self.account_name:
            raise ValueError("Storage account name is required")
        if not self.share:
            raise ValueError("Share or container name is required")
        if self.service not in VALID_SERVICES:
            raise ValueError(f"Storage service must be one of: {VALID_SERVICES}")
        self.sas_token = self.sas_token.lstrip("?")
        self.path = self.path.replace("\\", "/").strip("/")

    @classmethod
    def from_config(cls, storage: StorageConfig, path: str = "") -> "TransferTarget":
        return cls(
            account_name=storage.account_name,
            share=storage.share,
            path=path,
            sas_token=storage.sas_token,
            service=storage.service,
        )

    def child(self, name: str) -> "TransferTarget":
        """Target for a subfolder below this target."""
        path = f"{self.path}/{name}" if self.path else name
        return TransferTarget(
            account_name=self.account_name,
            share=self.share,
            path=path,
            sas_token=self.sas_token,
            service=self.service,
        )

    def _base_url(self) -> str:
        url = f"https://{self.account_name}.{self.service}.core.windows.net/{self.share}"
        if self.path:
            url += "/" + quote(self.path)
        return url

    def url(self) -> str:
        if self.sas_token:
            return f"{self._base_url()}?{self.sas_token}"
        return self._base_url()

    def safe_url(self) -> str:
        """URL for logs and reports."""
        if self.sas_token:
            return f"{self._base_url()}?{SAS_MASK}"
        return self._base_url()

    def mask(self, text: str) -> str:
        """Replace every occurrence of the SAS token in ``text``."""
        if not self.sas_token:
            return text
        return text.replace(self.sas_token, SAS_MASK)


@dataclass
class TransferOptions:
    """Behaviour of one azcopy invocation."""

    mode: str = "copy"
    recursive: bool = True
    overwrite: str = "ifSourceNewer"
    preserve_permissions: bool = False
    copy_contents: bool = True
    delete_destination: bool = False
    put_md5: bool = False
    extra_args: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.mode not in VALID_MODES:
            raise ValueError(f"Transfer mode must be one of: {VALID_MODES}")
        if self.overwrite not in VALID_OVERWRITE:
            raise ValueError(f"Overwrite must be one of: {VALID_OVERWRITE}")
        if self.delete_destination and self.mode != "sync":
            raise ValueError("delete_destination is only supported by sync")


def _flag(value: bool) -> str:
    return "true" if value else "false"


def build_azcopy_command(
    executable: str,
    source: str,
    target: TransferTarget,
    options: Optional[TransferOptions] = None,
    log_level: str = "INFO",
    cap_mbps: Optional[int] = None,
) -> List[str]:
    """Build the argument list of an azcopy copy/sync run.

    Output is always requested as JSON lines so the run can be summarized
    from stdout alone.
    """
    options = options or TransferOptions()
    source = str(source)
    if options.mode == "copy" and options.copy_contents:
        # "<dir>/*" uploads the contents of <dir> rather than <dir> itself
        source = os.path.join(source, "*")

    args = [
        executable,
        options.mode,
        source,
        target.url(),
        f"--recursive={_flag(options.recursive)}",
    ]
    if options.mode == "copy":
        args.append(f"--overwrite={options.overwrite}")
    else:
        args.append(f"--delete-destination={_flag(options.delete_destination)}")
    if options.preserve_permissions and target.service == "file":
        args.extend(["--preserve-smb-permissions=true", "--preserve-smb-info=true"])
    if options.put_md5:
        args.append("--put-md5")
    if cap_mbps:
        args.append(f"--cap-mbps={cap_mbps}")
    args.append(f"--log-level={log_level}")
    args.extend(["--output-type", "json"])
    args.extend(options.extra_args)
    return args
