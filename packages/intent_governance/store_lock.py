"""
Sidecar Lock - short critical sections around read-modify-write

Guards registry, intent map and knowledge log rewrites so two sessions do
not interleave a read and a replace. Ledger appends do not take it: each
append is a single write of one complete line.

Uses atomic file creation (O_CREAT | O_EXCL) for cross-process locking.
A lock older than stale_seconds is assumed abandoned and taken over.
"""

import json
import logging
import os
import threading
import time
import uuid
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class LockAcquisitionError(Exception):
    """Raised when the sidecar lock cannot be acquired in time."""
    pass


class StoreLock:
    """File-based mutex for one sidecar directory."""

    def __init__(
        self,
        sidecar_dir: Path,
        timeout_seconds: float = 10,
        stale_seconds: float = 60,
        poll_interval: float = 0.05
    ):
        """
        Args:
            sidecar_dir: Directory holding the sidecar files
            timeout_seconds: Max time to wait for the lock
            stale_seconds: Consider a held lock abandoned after this time
            poll_interval: Sleep between attempts
        """
        self.lock_file = Path(sidecar_dir) / ".lock"
        self.timeout_seconds = timeout_seconds
        self.stale_seconds = stale_seconds
        self.poll_interval = poll_interval
        self._token: Optional[str] = None
        self._thread_lock = threading.Lock()

    def acquire(self) -> None:
        """
        Block until the lock is held.

        Raises:
            LockAcquisitionError: If not acquired within timeout_seconds
        """
        self._thread_lock.acquire()
        deadline = time.time() + self.timeout_seconds
        try:
            while True:
                if self._try_acquire():
                    return

                if self._is_stale():
                    logger.warning(f"Detected stale sidecar lock {self.lock_file}, taking over")
                    self._force_release()
                    continue

                if time.time() >= deadline:
                    holder = self._read_lock() or {}
                    raise LockAcquisitionError(
                        f"Could not acquire {self.lock_file} after {self.timeout_seconds}s. "
                        f"Lock held by pid {holder.get('pid', 'unknown')}"
                    )

                time.sleep(self.poll_interval)
        except BaseException:
            self._thread_lock.release()
            raise

    def release(self) -> None:
        try:
            holder = self._read_lock()
            if holder and holder.get("token") != self._token:
                logger.error(f"Sidecar lock ownership mismatch on {self.lock_file}; not releasing")
                return
            self.lock_file.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to release sidecar lock: {e}")
        finally:
            self._token = None
            self._thread_lock.release()

    def __enter__(self) -> "StoreLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def _try_acquire(self) -> bool:
        token = uuid.uuid4().hex
        try:
            fd = os.open(str(self.lock_file), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False

        metadata = {
            "token": token,
            "acquired_at": time.time(),
            "pid": os.getpid(),
            "hostname": os.environ.get("COMPUTERNAME", os.environ.get("HOSTNAME", "unknown")),
        }
        try:
            os.write(fd, json.dumps(metadata).encode("utf-8"))
        finally:
            os.close(fd)

        self._token = token
        return True

    def _read_lock(self) -> Optional[dict]:
        try:
            return json.loads(self.lock_file.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.debug(f"Unreadable sidecar lock {self.lock_file}: {e}")
            return {}

    def _is_stale(self) -> bool:
        holder = self._read_lock()
        if holder is None:
            return False
        acquired_at = holder.get("acquired_at")
        if not isinstance(acquired_at, (int, float)):
            # Half-written or foreign lock file: fall back to its mtime
            try:
                acquired_at = self.lock_file.stat().st_mtime
            except FileNotFoundError:
                return False
        return time.time() - acquired_at > self.stale_seconds

    def _force_release(self) -> None:
        try:
            self.lock_file.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to force release sidecar lock: {e}")
