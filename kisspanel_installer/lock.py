"""Advisory lock preventing two installer runs against one target root."""

import fcntl
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from kisspanel_installer.errors import ConcurrentRunError

_logging = logging.getLogger(__name__)


@contextmanager
def run_lock(path: Path) -> Iterator[None]:
    """Hold an exclusive flock on `path` for the duration of the block.

    The lock is released on every exit path, including exceptions. The file
    itself is left behind and only records the pid of the last holder.

    Raises:
        ConcurrentRunError: If another process already holds the lock
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            holder = _read_holder(path)
            raise ConcurrentRunError(
                f"Another installer run holds {path}"
                + (f" (pid {holder})" if holder else "")
            ) from None

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        _logging.debug(f"Acquired install lock {path}")
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            _logging.debug(f"Released install lock {path}")
    finally:
        os.close(fd)


def _read_holder(path: Path) -> str | None:
    try:
        return path.read_text().strip() or None
    except OSError:
        return None


__all__ = ["run_lock"]
