"""
Summary File Lock

Provides a named, cross-process lock around the read-modify-write of the
centralized summary CSV files shared by parallel uploads. Supports automatic
stale lock detection and cleanup.
"""

import hashlib
import json
import os
import socket
import threading
import time
from pathlib import Path
from typing import Any, Optional, Union

import structlog

from ..exceptions import LockError, LockTimeout
from ..logging_config import configure_logging

configure_logging()
logger = structlog.get_logger(__name__)


class SummaryFileLock:
    """
    Named lock guarding one summary file.

    The lock is a sidecar file created atomically with ``O_CREAT | O_EXCL``
    next to the target, named after a hash of the target's absolute path, so
    every process and thread writing the same summary file contends on the
    same name.

    Lock files contain metadata in JSON format:
    {
        "owner": "host:pid:thread",
        "pid": 12345,
        "timestamp": 1234567890.0,
        "hostname": "machine-name",
        "target": "D:/runs/resumen-subidas.csv"
    }

    Stale locks are detected by checking if the PID is still alive (same host)
    or if the lock is older than ``stale_threshold``. Breaking a stale lock is
    serialized through a ``.break`` sidecar so that only one contender removes
    it.
    """

    POLL_INTERVAL = 0.05
    STALE_LOCK_THRESHOLD = 600  # 10 minutes in seconds
    ABANDONED_BREAK_THRESHOLD = 30

    def __init__(
        self,
        target: Union[str, Path],
        timeout: Optional[float] = 60.0,
        stale_threshold: float = STALE_LOCK_THRESHOLD,
    ) -> None:
        """
        Initialize the summary file lock.

        Args:
            target: Path of the summary file to guard
            timeout: Maximum seconds to wait in ``acquire`` (None = forever)
            stale_threshold: Age in seconds after which a lock is considered stale
        """
        self.target = Path(target).resolve()
        self.timeout = timeout
        self.stale_threshold = stale_threshold
        self.lock_file = self._get_lock_file_path()
        self.break_file = self.lock_file.with_name(self.lock_file.name + ".break")
        self._lock_fd: Optional[int] = None
        self._lock_acquired = False
        self._logger = logger.bind(
            component="SummaryFileLock",
            target=str(self.target),
        )

    @property
    def name(self) -> str:
        return self.lock_file.name

    def _get_lock_file_path(self) -> Path:
        path_hash = hashlib.sha256(str(self.target).lower().encode()).hexdigest()[:16]
        return self.target.parent / f".{self.target.name}.{path_hash}.lock"

    def _owner_id(self) -> str:
        return f"{socket.gethostname()}:{os.getpid()}:{threading.get_ident()}"

    def _write_lock_metadata(self, fd: int) -> None:
        metadata = {
            "owner": self._owner_id(),
            "pid": os.getpid(),
            "timestamp": time.time(),
            "hostname": socket.gethostname(),
            "target": str(self.target),
        }
        try:
            os.write(fd, json.dumps(metadata).encode("utf-8"))
        except OSError as e:
            self._logger.warning("Failed to write lock metadata", error=str(e))

    def _read_lock_metadata(self, path: Optional[Path] = None) -> Optional[dict[str, Any]]:
        try:
            with open(path or self.lock_file, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError):
            return None

    @staticmethod
    def _is_process_alive(pid: int) -> bool:
        try:
            # Signal 0 only checks for existence
            os.kill(pid, 0)
            return True
        except PermissionError:
            return True
        except OSError:
            return False

    def _is_stale_lock(self, metadata: Optional[dict[str, Any]]) -> bool:
        """
        Determine if a lock is stale.

        A lock is considered stale if:
        1. It was created on this host by a process that is no longer running, OR
        2. The lock is older than ``stale_threshold``

        A lock file without readable metadata is judged by its modification time.
        """
        if metadata is None:
            try:
                age = time.time() - self.lock_file.stat().st_mtime
            except OSError:
                return False
            return age > self.stale_threshold

        pid = metadata.get("pid")
        if (
            pid is not None
            and metadata.get("hostname") == socket.gethostname()
            and not self._is_process_alive(int(pid))
        ):
            self._logger.info("Lock is stale (process not running)", pid=pid)
            return True

        timestamp = metadata.get("timestamp")
        if timestamp is not None and time.time() - float(timestamp) > self.stale_threshold:
            self._logger.info("Lock is stale (too old)", owner=metadata.get("owner"))
            return True
        return False

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Acquire the lock, waiting up to ``timeout`` seconds.

        Returns:
            bool: True when acquired

        Raises:
            LockTimeout: If the lock is still held when the timeout expires
            LockError: If the lock file cannot be created for another reason
        """
        if self._lock_acquired:
            return True
        timeout = self.timeout if timeout is None else timeout
        start_time = time.monotonic()

        while True:
            try:
                fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if self._is_stale_lock(self._read_lock_metadata()) and self._break_stale_lock():
                    continue
                if timeout is not None and time.monotonic() - start_time >= timeout:
                    self._logger.warning("Lock acquisition timed out", timeout=timeout)
                    raise LockTimeout(
                        f"Failed to acquire lock for {self.target} within {timeout}s",
                        context={"lock_file": str(self.lock_file)},
                    )
                time.sleep(self.POLL_INTERVAL)
                continue
            except PermissionError:
                # Windows reports a lock file pending deletion as access denied
                if timeout is not None and time.monotonic() - start_time >= timeout:
                    raise LockTimeout(
                        f"Failed to acquire lock for {self.target} within {timeout}s",
                        context={"lock_file": str(self.lock_file)},
                    )
                time.sleep(self.POLL_INTERVAL)
                continue
            except OSError as e:
                raise LockError(
                    f"Failed to create lock file: {e}",
                    context={"lock_file": str(self.lock_file)},
                    cause=e,
                ) from e

            self._lock_fd = fd
            self._write_lock_metadata(fd)
            self._lock_acquired = True
            self._logger.debug("Acquired lock", lock_file=str(self.lock_file))
            return True

    def _break_stale_lock(self) -> bool:
        """
        Remove a stale lock file, one contender at a time.

        Contenders that judged the same lock stale serialize on a second
        ``O_EXCL`` file. The winner re-reads the lock under it, moves the lock
        file aside with an atomic rename and deletes it only if it is still the
        lock that was judged stale. Everyone else goes back to ``O_EXCL``.

        Returns:
            bool: False when the lock could not be broken now (another contender
            is breaking it, or the file could not be moved)
        """
        try:
            fd = os.open(self.break_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            self._clear_abandoned_break_file()
            return False
        except OSError as e:
            self._logger.warning("Failed to create lock break file", error=str(e))
            return False

        try:
            metadata = self._read_lock_metadata()
            if not self._is_stale_lock(metadata):
                return True
            aside = self.lock_file.with_name(
                f"{self.lock_file.name}.stale-{os.getpid()}-{threading.get_ident()}"
            )
            try:
                os.replace(self.lock_file, aside)
            except FileNotFoundError:
                return True
            except OSError as e:
                self._logger.warning("Failed to move stale lock aside", error=str(e))
                return False
            if self._read_lock_metadata(aside) != metadata:
                # Released and taken again since the check: hand it back
                self._logger.warning("Lock changed while breaking it, restoring")
                try:
                    os.link(aside, self.lock_file)
                except OSError as e:
                    self._logger.warning("Failed to restore lock", error=str(e))
            else:
                self._logger.info("Removed stale lock", lock_file=str(self.lock_file))
            try:
                aside.unlink()
            except OSError as e:
                self._logger.warning("Failed to remove stale lock file", error=str(e))
            return True
        finally:
            os.close(fd)
            try:
                self.break_file.unlink()
            except OSError as e:
                self._logger.warning("Failed to remove lock break file", error=str(e))

    def _clear_abandoned_break_file(self) -> None:
        """Delete a break file left behind by a contender that died mid-break."""
        try:
            age = time.time() - self.break_file.stat().st_mtime
        except OSError:
            return
        if age > self.ABANDONED_BREAK_THRESHOLD:
            self._logger.info("Removing abandoned lock break file")
            try:
                self.break_file.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                self._logger.warning("Failed to remove lock break file", error=str(e))

    def release(self) -> None:
        """Release the lock. Safe to call multiple times."""
        if not self._lock_acquired:
            return
        if self._lock_fd is not None:
            try:
                os.close(self._lock_fd)
            except OSError as e:
                self._logger.warning("Error closing lock file", error=str(e))
            finally:
                self._lock_fd = None
        try:
            self.lock_file.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            self._logger.warning("Error removing lock file", error=str(e))
        self._lock_acquired = False
        self._logger.debug("Released lock", lock_file=str(self.lock_file))

    def is_locked(self) -> bool:
        """True if any live holder currently owns the lock."""
        if not self.lock_file.exists():
            return False
        return not self._is_stale_lock(self._read_lock_metadata())

    def __enter__(self) -> "SummaryFileLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False
