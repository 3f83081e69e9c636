"""Single-instance lock for the monitoring service.

Two services polling into the same data directory would double every
sample and race on alert creation, so the service takes an exclusive
``fcntl`` lock on a file inside the data directory. The lock is released
automatically when the process exits, even on crash.

Usage:
    from config.singleton import InstanceLock

    lock = InstanceLock(data_dir)
    if not lock.acquire():
        print(f"Already running as PID {lock.get_running_pid()}")
"""
import fcntl
import os
from pathlib import Path
from typing import Optional

from config import get_logger

logger = get_logger(__name__)


class InstanceLock:
    """Exclusive per-data-directory lock.

    Attributes:
        lock_file: Path of the lock file; it also holds the owner's PID.
    """

    def __init__(self, data_dir: Path, lock_name: str = "router-monitor"):
        self.lock_file = Path(data_dir) / f"{lock_name}.lock"
        self._lock_fd = None

    @property
    def held(self) -> bool:
        return self._lock_fd is not None

    def get_running_pid(self) -> Optional[int]:
        """PID written by the current holder, if it is still alive."""
        try:
            pid = int(self.lock_file.read_text().strip())
            os.kill(pid, 0)  # Signal 0 = existence check
            return pid
        except (ValueError, OSError):
            return None

    def acquire(self) -> bool:
        """Try to take the lock without blocking.

        Returns:
            True if acquired, False if another process holds it.
        """
        if self.held:
            return True
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        fd = open(self.lock_file, 'a+')
        try:
            fcntl.flock(fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            fd.close()
            return False

        fd.seek(0)
        fd.truncate()
        fd.write(str(os.getpid()))
        fd.flush()
        self._lock_fd = fd
        logger.debug(f"Instance lock acquired: {self.lock_file}")
        return True

    def release(self) -> None:
        if self._lock_fd is None:
            return
        try:
            fcntl.flock(self._lock_fd.fileno(), fcntl.LOCK_UN)
        finally:
            self._lock_fd.close()
            self._lock_fd = None
        logger.debug("Instance lock released")
