# avorepo/fsutil.py
"""
Filesystem helpers: atomic writes/copies, an exclusive lock file, and
package-file detection.
"""

from __future__ import annotations

import contextlib
import fcntl
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Iterator, Union

PathLike = Union[str, Path]


def atomic_write_text(path: PathLike, text: str) -> Path:
    """Write text to a temp file beside ``path`` and rename it into place."""
    dst = Path(path)
    dst.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{dst.name}.", suffix=".tmp", dir=str(dst.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, dst)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise
    return dst


def atomic_copy(src: PathLike, dst: PathLike) -> Path:
    dst = Path(dst)
    dst.parent.mkdir(parents=True, exist_ok=True)
    tmp = dst.with_name(f".{dst.name}.tmp")
    shutil.copy2(src, tmp)
    os.replace(tmp, dst)
    return dst


@contextlib.contextmanager
def exclusive_lock(lock_file: PathLike, timeout: float = 30.0, poll: float = 0.1) -> Iterator[Path]:
    """Hold an exclusive flock on ``lock_file``; TimeoutError after ``timeout`` seconds."""
    lock_path = Path(lock_file)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    start = time.monotonic()
    with open(lock_path, "w") as fh:
        while True:
            try:
                fcntl.flock(fh, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() - start > timeout:
                    raise TimeoutError(f"timeout acquiring lock {lock_path}")
                time.sleep(poll)
        try:
            yield lock_path
        finally:
            fcntl.flock(fh, fcntl.LOCK_UN)


def is_package_file(path: Path, suffix: str = ".rpm") -> bool:
    return path.name.endswith(suffix) and path.is_file()


def has_packages(directory: PathLike, suffix: str = ".rpm") -> bool:
    """True when ``directory`` directly contains at least one package file."""
    d = Path(directory)
    if not d.is_dir():
        return False
    try:
        with os.scandir(d) as it:
            for entry in it:
                if entry.name.endswith(suffix) and entry.is_file():
                    return True
    except PermissionError:
        return False
    return False
