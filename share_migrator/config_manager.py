import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import colorlog
from dotenv import load_dotenv

from .exceptions import ConfigurationError, MissingConfigurationError

# Load environment variables
load_dotenv(override=False)

"""
Configuration Management for Azure Share Migrator

This module provides centralized configuration management with validation
and environment variable handling. Command line options override the values
read from the environment.
"""

logger = logging.getLogger(__name__)

_VALID_SERVICES = ("file", "blob")
_VALID_AZCOPY_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "PANIC", "NONE")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return int(value)


@dataclass
class AzCopyConfig:
    """Configuration for the azcopy executable."""

    executable: str = field(default_factory=lambda: os.getenv("AZCOPY_PATH", "azcopy"))
    log_level: str = field(
        default_factory=lambda: os.getenv("AZCOPY_LOG_LEVEL", "INFO")
    )
    cap_mbps: Optional[int] = field(
        default_factory=lambda: _env_optional_int("AZCOPY_CAP_MBPS")
    )
    keep_wrapper_logs: int = field(
        default_factory=lambda: int(os.getenv("AZCOPY_KEEP_WRAPPER_LOGS", "10"))
    )

    def __post_init__(self) -> None:
        """Validate azcopy configuration."""
        if not self.executable:
            raise ValueError("azcopy executable path is required")
        self.log_level = self.log_level.upper()
        if self.log_level not in _VALID_AZCOPY_LOG_LEVELS:
            raise ValueError(f"azcopy log level must be one of: {_VALID_AZCOPY_LOG_LEVELS}")
        if self.cap_mbps is not None and self.cap_mbps < 1:
            raise ValueError("azcopy bandwidth cap must be at least 1 Mbps")
        if self.keep_wrapper_logs < 1:
            raise ValueError("At least one wrapper log must be kept")


@dataclass
class StorageConfig:
    """Destination storage account settings."""

    account_name: str = field(
        default_factory=lambda: os.getenv("STORAGE_ACCOUNT_NAME", "")
    )
    share: str = field(default_factory=lambda: os.getenv("STORAGE_SHARE_NAME", ""))
    sas_token: str = field(default_factory=lambda: os.getenv("STORAGE_SAS_TOKEN", ""))
    service: str = field(default_factory=lambda: os.getenv("STORAGE_SERVICE", "file"))

    def __post_init__(self) -> None:
        """Validate storage configuration."""
        self.service = self.service.lower()
        if self.service not in _VALID_SERVICES:
            raise ValueError(f"Storage service must be one of: {_VALID_SERVICES}")
        self.sas_token = self.sas_token.lstrip("?")

    def is_configured(self) -> bool:
        """Check if a destination is fully configured."""
        return bool(self.account_name and self.share)

    def require_destination(self) -> None:
        """
        Ensure an upload destination is configured.

        Raises:
            MissingConfigurationError: Naming the unset environment variables
        """
        if self.is_configured():
            return
        missing = []
        if not self.account_name:
            missing.append("STORAGE_ACCOUNT_NAME")
        if not self.share:
            missing.append("STORAGE_SHARE_NAME")
        raise MissingConfigurationError(
            "Storage account and share are required (--account-name/--share)",
            missing_keys=missing,
        )

    def get_safe_sas(self) -> str:
        """Get SAS token for logging (masked for security)."""
        if not self.sas_token:
            return "Not configured"
        return f"{self.sas_token[:6]}...<redacted>"


@dataclass
class InventoryConfig:
    """Configuration for inventory walks."""

    replacement_char: str = field(
        default_factory=lambda: os.getenv("INVENTORY_REPLACEMENT_CHAR", "_")
    )
    sanitize_names: bool = field(
        default_factory=lambda: _env_bool("INVENTORY_SANITIZE_NAMES")
    )
    compute_sizes: bool = field(
        default_factory=lambda: _env_bool("INVENTORY_COMPUTE_SIZES", "true")
    )
    follow_reparse_points: bool = field(
        default_factory=lambda: _env_bool("INVENTORY_FOLLOW_REPARSE_POINTS")
    )
    max_depth: Optional[int] = field(
        default_factory=lambda: _env_optional_int("INVENTORY_MAX_DEPTH")
    )

    def __post_init__(self) -> None:
        """Validate inventory configuration."""
        # Imported here to keep config loading free of inventory imports
        from .inventory.sanitizer import validate_replacement_char

        validate_replacement_char(self.replacement_char)
        if self.max_depth is not None and self.max_depth < 0:
            raise ValueError("Max depth must be non-negative")


@dataclass
class OrchestratorConfig:
    """Configuration for per-subfolder orchestration."""

    max_parallel: int = field(
        default_factory=lambda: int(os.getenv("ORCHESTRATOR_MAX_PARALLEL", "4"))
    )
    launch_delay: float = field(
        default_factory=lambda: float(os.getenv("ORCHESTRATOR_LAUNCH_DELAY", "2.0"))
    )
    max_ram_percent: float = field(
        default_factory=lambda: float(os.getenv("ORCHESTRATOR_MAX_RAM_PERCENT", "85"))
    )
    ram_poll_interval: float = field(
        default_factory=lambda: float(
            os.getenv("ORCHESTRATOR_RAM_POLL_INTERVAL", "5.0")
        )
    )
    root_files_folder: str = field(
        default_factory=lambda: os.getenv("ORCHESTRATOR_ROOT_FILES_FOLDER", "_root_files")
    )

    def __post_init__(self) -> None:
        """Validate orchestrator configuration."""
        if self.max_parallel < 1:
            raise ValueError("Max parallel workers must be at least 1")
        if self.launch_delay < 0:
            raise ValueError("Launch delay must be non-negative")
        if not 1 <= self.max_ram_percent <= 100:
            raise ValueError("Max RAM percent must be between 1 and 100")
        if self.ram_poll_interval <= 0:
            raise ValueError("RAM poll interval must be positive")
        if not self.root_files_folder or any(
            sep in self.root_files_folder for sep in ("/", "\\")
        ):
            raise ValueError("Root files folder must be a plain folder name")


@dataclass
class SummaryConfig:
    """Configuration for the centralized summary CSV files."""

    write_retries: int = field(
        default_factory=lambda: int(os.getenv("SUMMARY_WRITE_RETRIES", "5"))
    )
    retry_delay: float = field(
        default_factory=lambda: float(os.getenv("SUMMARY_RETRY_DELAY", "0.5"))
    )
    lock_timeout: float = field(
        default_factory=lambda: float(os.getenv("SUMMARY_LOCK_TIMEOUT", "60"))
    )
    queue_dir_name: str = field(
        default_factory=lambda: os.getenv("SUMMARY_QUEUE_DIR", ".resumen-queue")
    )

    def __post_init__(self) -> None:
        """Validate summary configuration."""
        if self.write_retries < 1:
            raise ValueError("Write retries must be at least 1")
        if self.retry_delay < 0:
            raise ValueError("Retry delay must be non-negative")
        if self.lock_timeout <= 0:
            raise ValueError("Lock timeout must be positive")


@dataclass
class LoggingConfig:
    """Configuration for logging behavior."""

    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    format: str = field(
        default_factory=lambda: os.getenv(
            "LOG_FORMAT", "%(log_color)s%(levelname)s:%(name)s:%(message)s"
        )
    )
    file_output: Optional[str] = field(default_factory=lambda: os.getenv("LOG_FILE"))

    def __post_init__(self) -> None:
        """Validate logging configuration."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.level.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        self.level = self.level.upper()

    def get_log_level(self) -> int:
        """Convert string log level to logging constant."""
        level_attr = getattr(logging, self.level, None)
        if level_attr is None:
            raise ValueError(f"Invalid log level: {self.level}")
        return int(level_attr)


@dataclass
class MigrationConfig:
    """Main configuration class that aggregates all configuration sections."""

    azcopy: AzCopyConfig = field(default_factory=AzCopyConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    inventory: InventoryConfig = field(default_factory=InventoryConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    summary: SummaryConfig = field(default_factory=SummaryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_environment(
        cls,
        account_name: Optional[str] = None,
        share: Optional[str] = None,
        sas_token: Optional[str] = None,
        service: Optional[str] = None,
        max_parallel: Optional[int] = None,
        azcopy_path: Optional[str] = None,
    ) -> "MigrationConfig":
        """
        Create configuration from environment variables.

        Args:
            account_name: Optional storage account name override
            share: Optional share/container name override
            sas_token: Optional SAS token override
            service: Optional storage service override ("file" or "blob")
            max_parallel: Optional max concurrent subfolder workers
            azcopy_path: Optional azcopy executable override

        Returns:
            MigrationConfig: Configured instance
        """
        config = cls()
        if account_name is not None:
            config.storage.account_name = account_name
        if share is not None:
            config.storage.share = share
        if sas_token is not None:
            config.storage.sas_token = sas_token.lstrip("?")
        if service is not None:
            config.storage.service = service.lower()
        if max_parallel is not None:
            config.orchestrator.max_parallel = max_parallel
        if azcopy_path is not None:
            config.azcopy.executable = azcopy_path
        return config

    def validate_all(self) -> None:
        """Validate all configuration sections."""
        try:
            self.azcopy.__post_init__()
            self.storage.__post_init__()
            self.inventory.__post_init__()
            self.orchestrator.__post_init__()
            self.summary.__post_init__()
            self.logging.__post_init__()
            logger.debug("Configuration validation successful")
        except Exception as e:
            logger.exception(f"Configuration validation failed: {e}")
            raise

    def log_configuration_summary(self) -> None:
        """Log a summary of the current configuration (without sensitive data)."""
        logger.info("=" * 60)
        logger.info("AZURE SHARE MIGRATOR CONFIGURATION")
        logger.info("=" * 60)
        logger.info(f"azcopy: {self.azcopy.executable} (log level {self.azcopy.log_level})")
        if self.azcopy.cap_mbps:
            logger.info(f"   - Bandwidth cap: {self.azcopy.cap_mbps} Mbps")
        logger.info(
            f"Storage: {self.storage.account_name or 'Not configured'}"
            f"/{self.storage.share or '-'} ({self.storage.service})"
        )
        logger.info(f"   - SAS: {self.storage.get_safe_sas()}")
        logger.info("Inventory:")
        logger.info(f"   - Sanitize names: {self.inventory.sanitize_names}")
        logger.info(f"   - Replacement char: {self.inventory.replacement_char!r}")
        logger.info(f"   - Compute sizes: {self.inventory.compute_sizes}")
        logger.info(f"   - Max depth: {self.inventory.max_depth or 'Unlimited'}")
        logger.info("Orchestrator:")
        logger.info(f"   - Max parallel: {self.orchestrator.max_parallel}")
        logger.info(f"   - Launch delay: {self.orchestrator.launch_delay}s")
        logger.info(f"   - Max RAM: {self.orchestrator.max_ram_percent}%")
        logger.info(f"Logging Level: {self.logging.level}")
        if self.logging.file_output:
            logger.info(f"Log File: {self.logging.file_output}")
        logger.info("=" * 60)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for serialization."""
        return {
            "azcopy": {
                "executable": self.azcopy.executable,
                "log_level": self.azcopy.log_level,
                "cap_mbps": self.azcopy.cap_mbps,
                "keep_wrapper_logs": self.azcopy.keep_wrapper_logs,
            },
            "storage": {
                "account_name": self.storage.account_name,
                "share": self.storage.share,
                "service": self.storage.service,
                "sas_configured": bool(self.storage.sas_token),
                # Don't include the SAS token in serialization
            },
            "inventory": {
                "replacement_char": self.inventory.replacement_char,
                "sanitize_names": self.inventory.sanitize_names,
                "compute_sizes": self.inventory.compute_sizes,
                "follow_reparse_points": self.inventory.follow_reparse_points,
                "max_depth": self.inventory.max_depth,
            },
            "orchestrator": {
                "max_parallel": self.orchestrator.max_parallel,
                "launch_delay": self.orchestrator.launch_delay,
                "max_ram_percent": self.orchestrator.max_ram_percent,
                "ram_poll_interval": self.orchestrator.ram_poll_interval,
                "root_files_folder": self.orchestrator.root_files_folder,
            },
            "summary": {
                "write_retries": self.summary.write_retries,
                "retry_delay": self.summary.retry_delay,
                "lock_timeout": self.summary.lock_timeout,
                "queue_dir_name": self.summary.queue_dir_name,
            },
            "logging": {
                "level": self.logging.level,
                "file_output": self.logging.file_output,
            },
        }


def setup_logging(config: LoggingConfig) -> None:
    """
    Setup logging configuration based on config.
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(config.get_log_level())

    console_handler = colorlog.StreamHandler()
    console_handler.setFormatter(colorlog.ColoredFormatter(config.format))
    root_logger.addHandler(console_handler)

    if config.file_output:
        file_handler = logging.FileHandler(config.file_output, encoding="utf-8")
        file_formatter = logging.Formatter(
            "%(asctime)s - %(levelname)s:%(name)s:%(message)s"
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    logger.debug(
        f"Logging configured: level={config.level}, file={config.file_output or 'console'}"
    )


def create_config_from_env(
    account_name: Optional[str] = None,
    share: Optional[str] = None,
    sas_token: Optional[str] = None,
    service: Optional[str] = None,
    max_parallel: Optional[int] = None,
    azcopy_path: Optional[str] = None,
) -> MigrationConfig:
    """
    Factory function to create and validate configuration from environment.

    Returns:
        MigrationConfig: Validated configuration instance

    Raises:
        ConfigurationError: If configuration is invalid
    """
    try:
        config = MigrationConfig.from_environment(
            account_name, share, sas_token, service, max_parallel, azcopy_path
        )
        config.validate_all()
    except ValueError as e:
        raise ConfigurationError(str(e), cause=e) from e
    return config
