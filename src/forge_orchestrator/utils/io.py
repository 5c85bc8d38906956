"""File helpers used by the JSON store.

atomic_write_text() writes through a temporary file in the destination
directory and swaps it into place, so readers never observe a partially
written store. shared_file_lock() takes an advisory read lock while a
store file is parsed.
"""
from __future__ import annotations

import logging
import os
import sys
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TextIO

logger = logging.getLogger(__name__)


def _lock(file_handle: TextIO) -> bool:
    if sys.platform == "win32":
        import msvcrt

        msvcrt.locking(file_handle.fileno(), msvcrt.LK_NBLCK, 1)
    else:
        import fcntl

        fcntl.flock(file_handle, fcntl.LOCK_SH)
    return True


def _unlock(file_handle: TextIO) -> None:
    if sys.platform == "win32":
        import msvcrt

        msvcrt.locking(file_handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        import fcntl

        fcntl.flock(file_handle, fcntl.LOCK_UN)


@contextmanager
def shared_file_lock(file_handle: TextIO) -> Iterator[None]:
    """Hold an advisory shared lock on an open store file.

    Platforms or filesystems without lock support read unlocked; the
    failure is logged at debug level.
    """
    locked = False
    try:
        locked = _lock(file_handle)
    except OSError as e:
        logger.debug(f"Reading {getattr(file_handle, 'name', '?')} without a lock: {e}")

    try:
        yield
    finally:
        if locked:
            try:
                _unlock(file_handle)
            except OSError as e:
                logger.debug(f"Failed to release lock: {e}")


def atomic_write_text(path: str | Path, data: str, perms: int = 0o600) -> None:
    """Replace ``path`` with ``data`` in one rename and restrict its mode."""
    dest = Path(path)
    dest.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=str(dest.parent), prefix=f".{dest.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_name, dest)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise

    try:
        os.chmod(dest, perms)
    except PermissionError:
        logger.warning(f"Could not set permissions {oct(perms)} on {dest}")
