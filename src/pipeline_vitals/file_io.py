"""Atomic writes and bounded-wait file locks for shared progress documents."""

from __future__ import annotations

import json
import os
import tempfile
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import IO, Any

from pipeline_vitals.errors import LockTimeout

_ATOMIC_REPLACE_MAX_RETRIES = 8
_ATOMIC_REPLACE_RETRY_SECONDS = 0.01
_LOCK_POLL_SECONDS = 0.02

_PATH_LOCKS_GUARD = threading.Lock()
_PATH_LOCKS: dict[str, threading.RLock] = {}


def _path_lock_key(path: Path) -> str:
    return str(path.resolve())


def _path_lock(path: Path) -> threading.RLock:
    key = _path_lock_key(path)
    with _PATH_LOCKS_GUARD:
        lock = _PATH_LOCKS.get(key)
        if lock is None:
            lock = threading.RLock()
            _PATH_LOCKS[key] = lock
    return lock


@contextmanager
def locked_path(path: Path) -> Iterator[None]:
    """Serialize file access within this process using a per-path lock."""
    lock = _path_lock(path)
    with lock:
        yield


def _try_os_lock(handle: IO[str]) -> bool:
    try:
        if os.name == "nt":
            import msvcrt

            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            import fcntl

            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        return False
    return True


def _release_os_lock(handle: IO[str]) -> None:
    with suppress(OSError):
        if os.name == "nt":
            import msvcrt

            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
        else:
            import fcntl

            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def lock_path_for(path: Path) -> Path:
    """Return the sidecar lock file guarding *path*."""
    return path.with_name(f"{path.name}.lock")


@contextmanager
def exclusive_file_lock(path: Path, *, timeout: float = 5.0) -> Iterator[None]:
    """Hold an exclusive lock on *path* across threads and processes.

    The lock lives on a ``<name>.lock`` sidecar so the guarded document can be
    replaced atomically while held.  Raises :class:`LockTimeout` when the lock
    is not acquired within *timeout* seconds.
    """
    wait = max(0.0, float(timeout))
    deadline = time.monotonic() + wait
    sidecar = lock_path_for(path)
    sidecar.parent.mkdir(parents=True, exist_ok=True)

    thread_lock = _path_lock(sidecar)
    if not thread_lock.acquire(timeout=wait):
        raise LockTimeout(f"Timed out after {wait:.1f}s waiting for {sidecar}")
    try:
        handle = sidecar.open("a+", encoding="utf-8")
        try:
            while not _try_os_lock(handle):
                if time.monotonic() >= deadline:
                    raise LockTimeout(f"Timed out after {wait:.1f}s waiting for {sidecar}")
                time.sleep(_LOCK_POLL_SECONDS)
            try:
                yield
            finally:
                _release_os_lock(handle)
        finally:
            handle.close()
    finally:
        thread_lock.release()


def _replace_file_with_retry(src: Path, dst: Path) -> None:
    last_error: OSError | None = None
    for attempt in range(_ATOMIC_REPLACE_MAX_RETRIES):
        try:
            src.replace(dst)
            return
        except PermissionError as exc:
            last_error = exc
        except OSError as exc:
            if exc.errno != 13:
                raise
            last_error = exc
        if attempt < _ATOMIC_REPLACE_MAX_RETRIES - 1:
            time.sleep(_ATOMIC_REPLACE_RETRY_SECONDS * (attempt + 1))
    if last_error is not None:
        raise last_error


def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Write text via temp file + rename so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f"{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        with locked_path(path):
            _replace_file_with_retry(tmp_path, path)
    finally:
        with suppress(OSError):
            tmp_path.unlink(missing_ok=True)


def atomic_write_json(path: Path, payload: Any) -> None:
    """Serialize *payload* as indented JSON and write it atomically."""
    atomic_write_text(path, json.dumps(payload, indent=2, ensure_ascii=False) + "\n")


def append_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Append text under a per-path lock."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with locked_path(path), path.open("a", encoding=encoding) as handle:
        handle.write(content)


def read_text_lenient(path: Path) -> str | None:
    """Read a text file owned by another process, or ``None`` when absent.

    Undecodable bytes are tried against common legacy encodings before
    falling back to replacement characters.  The file is never rewritten.
    """
    try:
        raw = path.read_bytes()
    except (FileNotFoundError, IsADirectoryError):
        return None
    for decoder in ("utf-8-sig", "cp1252"):
        try:
            return raw.decode(decoder)
        except UnicodeDecodeError:
            continue
    return raw.decode("utf-8", errors="replace")
