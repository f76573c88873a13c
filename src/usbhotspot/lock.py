"""Advisory lock serialising start/stop/restart across processes."""

from __future__ import annotations

import fcntl
import logging
import os
from pathlib import Path
from typing import Optional

from usbhotspot.errors import AlreadyInProgress

logger = logging.getLogger(__name__)


class HotspotLock:
    """Non-blocking exclusive flock on the hotspot's lock file.

    Contention fails fast with AlreadyInProgress instead of queuing.
    The file is left in place; only the flock matters.
    """

    def __init__(self, path: Path):
        self.path = path
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.path), os.O_CREAT | os.O_RDWR, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise AlreadyInProgress(
                f"another hotspot operation holds {self.path}; try again when it finishes"
            ) from None
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        logger.debug("Acquired lock %s", self.path)

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug("Released lock %s", self.path)

    def __enter__(self) -> "HotspotLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
