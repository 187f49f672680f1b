from __future__ import annotations

import fcntl
import logging
import os
from pathlib import Path
from typing import Optional

from ..errors import WorkDirLockedError

logger = logging.getLogger(__name__)


class WorkDirLock:
    """Exclusive, non-blocking lock guarding one work directory.

    The lock file sits next to the work directory (`<work_dir>.lock`) so the
    directory itself can be wiped and recreated while the lock is held.
    """

    def __init__(self, work_dir: str | Path):
        wd = Path(work_dir)
        self.work_dir = wd
        self.lock_path = wd.parent / f"{wd.name}.lock"
        self._fd: Optional[int] = None

    def acquire(self) -> None:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.lock_path), os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            os.close(fd)
            raise WorkDirLockedError(str(self.work_dir)) from e
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode("ascii"))
        self._fd = fd
        logger.debug("Locked %s", str(self.lock_path))

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def __enter__(self) -> "WorkDirLock":
        self.acquire()
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()
