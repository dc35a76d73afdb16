# stoneledger/storage/locking.py
"""
File primitives for concurrent appenders.

Locks are portalocker exclusive locks on a sibling ``<name>.lock`` file.
Each acquisition opens its own file object, so the lock serializes threads
of one process as well as separate processes.
"""

from __future__ import annotations

import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator

import portalocker

logger = logging.getLogger(__name__)


def lock_path_for(path: Path) -> Path:
    return path.with_name(path.name + ".lock")


@contextmanager
def exclusive_lock(path: Path) -> Iterator[IO[bytes]]:
    """Hold an exclusive lock guarding `path` for the duration of the block."""
    lock_path = lock_path_for(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+b") as lock_fp:
        portalocker.lock(lock_fp, portalocker.LOCK_EX)
        try:
            yield lock_fp
        finally:
            portalocker.unlock(lock_fp)


def fsync_directory(path: Path) -> None:
    """Durably flush directory metadata when supported by the platform."""
    if os.name == "nt":  # pragma: no cover - Windows does not need dir fsync
        return
    flags = getattr(os, "O_DIRECTORY", None)
    if flags is None:  # pragma: no cover
        return
    fd = os.open(str(path), flags)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _write_temp(directory: Path, data: bytes) -> Path:
    fd, name = tempfile.mkstemp(dir=str(directory), prefix=".tmp-")
    temp_path = Path(name)
    try:
        with os.fdopen(fd, "wb") as tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise
    return temp_path


def atomic_replace(path: Path, data: bytes) -> None:
    """Write `data` to `path` so readers see either the old or the new file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = _write_temp(path.parent, data)
    try:
        os.replace(temp_path, path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise
    fsync_directory(path.parent)


def create_exclusive(path: Path, data: bytes) -> None:
    """
    Create `path` with `data`, failing with FileExistsError if it exists.

    The complete file is hard-linked into place, so the existence check and
    the write are one atomic step and no reader ever sees a partial file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = _write_temp(path.parent, data)
    try:
        os.link(temp_path, path)
    finally:
        temp_path.unlink(missing_ok=True)
    fsync_directory(path.parent)


def append_line(path: Path, line: bytes) -> None:
    """Append one newline-terminated line under the file's lock."""
    if b"\n" in line:
        raise ValueError("Log lines must not contain newlines")
    path.parent.mkdir(parents=True, exist_ok=True)
    with exclusive_lock(path):
        with path.open("a+b") as fp:
            fp.seek(0, os.SEEK_END)
            if fp.tell() > 0:
                fp.seek(-1, os.SEEK_END)
                if fp.read(1) != b"\n":
                    # torn line from an interrupted writer; keep ours intact
                    logger.warning("Ledger log %s did not end with a newline", path)
                    line = b"\n" + line
            fp.write(line + b"\n")
            fp.flush()
            try:
                os.fsync(fp.fileno())
            except OSError as exc:
                logger.warning("Failed to fsync ledger log", extra={"path": str(path), "error": str(exc)})
