"""
Custom Exception Hierarchy for Azure Share Migrator

This module provides the exception hierarchy used across the toolkit. Errors
carry structured context (paths, commands, exit codes) and an optional
recovery suggestion so the CLI can report them consistently.

Per-entry filesystem errors met during an inventory walk are *not* raised;
they are recorded as inventory rows. These exceptions cover invalid
parameters, missing external tools and failures of the shared summary files.
"""

import os
from typing import Any, Dict, List, Optional


class ShareMigratorError(Exception):
    """
    Base exception class for all Azure Share Migrator errors.

    Provides structured error information including context, error codes,
    and optional recovery suggestions.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recovery_suggestion: Optional[str] = None,
    ) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error message
            error_code: Optional error code for programmatic handling
            context: Optional dictionary with error context
            cause: Optional underlying exception that caused this error
            recovery_suggestion: Optional suggestion for error recovery
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        self.cause = cause
        self.recovery_suggestion = recovery_suggestion

    def __str__(self) -> str:
        """Return a formatted error message with context."""
        result = self.message
        if self.error_code:
            result = f"[{self.error_code}] {result}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            result += f" (context: {context_str})"
        if self.cause:
            result += f" (caused by: {self.cause})"
        if self.recovery_suggestion:
            result += f" (suggestion: {self.recovery_suggestion})"
        return result

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
            "recovery_suggestion": self.recovery_suggestion,
        }


# Configuration-related exceptions
class ConfigurationError(ShareMigratorError):
    """Raised when configuration or command parameters are invalid."""

    def __init__(
        self, message: str, config_section: Optional[str] = None, **kwargs: Any
    ) -> None:
        context = kwargs.get("context") or {}
        if config_section:
            context["config_section"] = config_section
        kwargs["context"] = context
        kwargs.setdefault("error_code", "INVALID_CONFIG")
        kwargs.setdefault(
            "recovery_suggestion", "Check command options and environment variables"
        )
        super().__init__(message, **kwargs)


class MissingConfigurationError(ConfigurationError):
    """Raised when required configuration is missing."""

    def __init__(
        self, message: str, missing_keys: Optional[List[str]] = None, **kwargs: Any
    ) -> None:
        context = kwargs.get("context") or {}
        if missing_keys:
            context["missing_keys"] = missing_keys
        kwargs["context"] = context
        kwargs.setdefault("error_code", "MISSING_CONFIG")
        kwargs.setdefault(
            "recovery_suggestion",
            f"Set required configuration: {', '.join(missing_keys)}"
            if missing_keys
            else "Set required configuration",
        )
        super().__init__(message, **kwargs)


# External tool exceptions (azcopy, icacls, takeown)
class ExternalToolError(ShareMigratorError):
    """Base class for failures of external command line tools."""

    def __init__(
        self,
        message: str,
        tool: Optional[str] = None,
        exit_code: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context") or {}
        if tool:
            context["tool"] = tool
        if exit_code is not None:
            context["exit_code"] = exit_code
        kwargs["context"] = context
        kwargs.setdefault("error_code", "EXTERNAL_TOOL_FAILED")
        super().__init__(message, **kwargs)


class ToolNotFoundError(ExternalToolError):
    """Raised when an external executable cannot be found."""

    def __init__(self, message: str, tool: Optional[str] = None, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "TOOL_NOT_FOUND")
        kwargs.setdefault(
            "recovery_suggestion",
            f"Install '{tool}' and make sure it is on PATH" if tool else None,
        )
        super().__init__(message, tool=tool, **kwargs)


class AzCopyError(ExternalToolError):
    """Raised when azcopy cannot be invoked or its output cannot be used."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "AZCOPY_FAILED")
        kwargs.setdefault("tool", "azcopy")
        super().__init__(message, **kwargs)


class PermissionToolError(ExternalToolError):
    """Raised when icacls/takeown cannot be invoked."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "PERMISSION_TOOL_FAILED")
        super().__init__(message, **kwargs)


# Inventory exceptions
class InventoryError(ShareMigratorError):
    """Raised when an inventory run cannot start (bad root, unwritable output)."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.get("context") or {}
        if path:
            context["path"] = path
        kwargs["context"] = context
        kwargs.setdefault("error_code", "INVENTORY_FAILED")
        super().__init__(message, **kwargs)


# Shared summary file exceptions
class SummaryWriteError(ShareMigratorError):
    """Raised when a centralized summary CSV cannot be written or rewritten."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.get("context") or {}
        if path:
            context["path"] = path
        kwargs["context"] = context
        kwargs.setdefault("error_code", "SUMMARY_WRITE_FAILED")
        kwargs.setdefault(
            "recovery_suggestion",
            "Queued rows are appended automatically on the next run",
        )
        super().__init__(message, **kwargs)


class LockError(ShareMigratorError):
    """Raised when a summary lock cannot be acquired."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "LOCK_FAILED")
        super().__init__(message, **kwargs)


class LockTimeout(LockError):
    """Raised when lock acquisition times out."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "LOCK_TIMEOUT")
        super().__init__(message, **kwargs)


# Orchestration exceptions
class OrchestrationError(ShareMigratorError):
    """Raised when a batch of subfolders cannot be orchestrated."""

    def __init__(
        self, message: str, subfolder: Optional[str] = None, **kwargs: Any
    ) -> None:
        context = kwargs.get("context") or {}
        if subfolder:
            context["subfolder"] = subfolder
        kwargs["context"] = context
        kwargs.setdefault("error_code", "ORCHESTRATION_FAILED")
        super().__init__(message, **kwargs)


def wrap_tool_exception(
    exc: Exception, tool: str, context: Optional[Dict[str, Any]] = None
) -> ExternalToolError:
    """
    Wrap an exception raised while starting an external tool.

    Args:
        exc: The original exception
        tool: Executable name
        context: Optional context information

    Returns:
        ExternalToolError: Wrapped exception with enhanced context
    """
    if isinstance(exc, FileNotFoundError):
        return ToolNotFoundError(
            f"Executable not found: {tool}", tool=tool, context=context, cause=exc
        )
    name = os.path.basename(tool).lower()
    if name.startswith("azcopy"):
        return AzCopyError(
            f"azcopy could not be started: {exc}", context=context, cause=exc
        )
    if name in ("icacls", "takeown", "icacls.exe", "takeown.exe"):
        return PermissionToolError(
            f"{tool} could not be started: {exc}", tool=tool, context=context, cause=exc
        )
    return ExternalToolError(
        f"{tool} could not be started: {exc}", tool=tool, context=context, cause=exc
    )
