"""
Global lock preventing concurrent MIG/CDI operations on this host.

Uses POSIX flock(LOCK_EX | LOCK_NB) on a well-known file. The kernel drops
the lock when the holding process exits, including on SIGKILL, so a crashed
run never leaves a stale lock behind.

Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""

import fcntl
import logging
import os
from typing import Optional

from .errors import LockContentionError

logger = logging.getLogger(__name__)


class LockHandle:
    """Exclusive, non-blocking claim on a lock file."""

    def __init__(self, lock_path: str):
        self.lock_path = lock_path
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> 'LockHandle':
        """
        Take the lock or fail immediately; concurrent runs are never queued.

        Raises:
            LockContentionError: If another process holds the lock
        """
        fd = os.open(self.lock_path, os.O_CREAT | os.O_RDWR, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            logger.error(f"Another MIG/CDI operation is already running (lock: {self.lock_path})")
            raise LockContentionError(self.lock_path)

        # The fd must stay open; closing it releases the flock.
        os.ftruncate(fd, 0)
        os.lseek(fd, 0, os.SEEK_SET)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        logger.info(f"Acquired global lock {self.lock_path} (PID {os.getpid()})")
        return self

    def release(self) -> None:
        if self._fd is None:
            return
        os.close(self._fd)
        self._fd = None
        logger.debug(f"Released global lock {self.lock_path}")

    def __enter__(self) -> 'LockHandle':
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def read_lock_owner(lock_path: str) -> Optional[int]:
    """Return the PID recorded in the lock file, if any."""
    try:
        with open(lock_path, 'r') as f:
            content = f.read().strip()
    except FileNotFoundError:
        return None
    return int(content) if content.isdigit() else None
