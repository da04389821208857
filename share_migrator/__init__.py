"""
Azure Share Migrator

A toolkit supporting the migration of on-premises file shares to Azure
Storage: inventory walks with access probing, NTFS permission grants and
audits, duplicate-folder cleanup, azcopy copy/sync wrapping and per-subfolder
orchestration with centralized summary files.
"""

__version__ = "1.0.0"
