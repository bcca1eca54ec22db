from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterable

_CHUNK = 1024 * 1024


def sha256_bytes(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


def sha256_text(text: str) -> str:
    return sha256_bytes(text.encode("utf-8"))


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            h.update(chunk)
    return h.hexdigest()


def sha256_file_or_none(path: Path) -> str | None:
    if not path.is_file():
        return None
    return sha256_file(path)


def iter_tree_files(root: Path, *, skip_hidden_dirs: bool = True) -> Iterable[Path]:
    """Yield files below `root` in sorted order, skipping dot-directories."""

    for p in sorted(root.rglob("*")):
        if not p.is_file():
            continue
        rel_parts = p.relative_to(root).parts
        if skip_hidden_dirs and any(part.startswith(".") for part in rel_parts[:-1]):
            continue
        yield p


def sha256_tree(root: Path) -> str:
    """Hash a file or directory; for directories each file contributes `relpath|content`."""

    if root.is_file():
        return sha256_file(root)
    h = hashlib.sha256()
    for p in iter_tree_files(root):
        h.update((p.relative_to(root).as_posix() + "|").encode("utf-8"))
        with p.open("rb") as f:
            for chunk in iter(lambda: f.read(_CHUNK), b""):
                h.update(chunk)
    return h.hexdigest()
