from __future__ import annotations

import errno
import json
import os
from pathlib import Path
import tempfile
import time
from typing import Any, Callable, TypeVar

T = TypeVar("T")

_RETRYABLE_ERRNOS = {errno.EACCES, errno.EPERM, errno.EBUSY}


def is_retryable_replace_error(exc: OSError) -> bool:
    return getattr(exc, "errno", None) in _RETRYABLE_ERRNOS


def bounded_retry(fn: Callable[[], T], attempts: int = 5, backoff_ms: int = 50) -> T:
    for attempt in range(attempts):
        try:
            return fn()
        except OSError as exc:
            if attempt == attempts - 1 or not is_retryable_replace_error(exc):
                raise
            time.sleep(backoff_ms / 1000.0)
    raise RuntimeError("bounded_retry called with attempts < 1")


def _fsync_parent(path: Path) -> None:
    try:
        fd = os.open(str(path.parent), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        # Directory fsync is unsupported on some platforms.
        pass
    finally:
        os.close(fd)


def atomic_write_bytes(path: Path, payload: bytes, *, attempts: int = 5, backoff_ms: int = 50) -> None:
    """Write `payload` to `path` through a sibling temp file and `os.replace`."""

    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=str(path.parent),
            prefix=path.name + ".",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            temp_path = Path(tmp.name)
            tmp.write(payload)
            tmp.flush()
            os.fsync(tmp.fileno())

        def _replace() -> None:
            os.replace(str(temp_path), str(path))

        bounded_retry(_replace, attempts=attempts, backoff_ms=backoff_ms)
        _fsync_parent(path)
    finally:
        if temp_path is not None and temp_path.exists():
            temp_path.unlink(missing_ok=True)


def atomic_write_text(path: Path, text: str, *, newline_lf: bool = True) -> None:
    payload = text.replace("\r\n", "\n") if newline_lf else text
    atomic_write_bytes(path, payload.encode("utf-8"))


def atomic_write_json(path: Path, obj: Any, *, ensure_ascii: bool = False, indent: int = 2) -> None:
    atomic_write_text(path, json.dumps(obj, indent=indent, ensure_ascii=ensure_ascii) + "\n")
