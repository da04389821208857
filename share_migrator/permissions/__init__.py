"""NTFS permission grants and audits through icacls/takeown."""

from .auditor import AclEntry, PermissionAuditor, parse_icacls_output
from .granter import GrantResult, PermissionGranter

__all__ = [
    "AclEntry",
    "GrantResult",
    "PermissionAuditor",
    "PermissionGranter",
    "parse_icacls_output",
]
