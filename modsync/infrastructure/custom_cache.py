"""Project-local cache of custom module sources under `_config/custom/`.

Keeping a copy next to the install means a custom module can still be updated
after the directory it was originally installed from is gone, and the cache can
be checked into source control with the rest of the project.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
import shutil
from typing import Any, Callable

from modsync.infrastructure.fs_atomic import atomic_write_text
from modsync.infrastructure.hashing import sha256_tree
from modsync.infrastructure.settings import CONFIG_DIR_NAME
from modsync.infrastructure.yaml_io import YamlDocumentError, dump_yaml, load_yaml_mapping

CACHE_MANIFEST_NAME = "cache-manifest.yaml"
_IGNORED_NAMES = {".git", "node_modules", ".DS_Store", "__pycache__"}


@dataclass(frozen=True)
class CachedModule:
    module_id: str
    cache_path: Path
    original_hash: str
    cache_hash: str
    cached_at: str
    intact: bool


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _ignore(_dir: str, names: list[str]) -> set[str]:
    return {n for n in names if n in _IGNORED_NAMES}


class CustomModuleCache:
    def __init__(self, install_dir: Path, *, now: Callable[[], str] = _utc_now):
        self.cache_dir = install_dir / CONFIG_DIR_NAME / "custom"
        self.manifest_path = self.cache_dir / CACHE_MANIFEST_NAME
        self.now = now

    def _read_manifest(self) -> dict[str, Any]:
        if not self.manifest_path.is_file():
            return {}
        try:
            return load_yaml_mapping(self.manifest_path)
        except YamlDocumentError:
            return {}

    def _write_manifest(self, manifest: dict[str, Any]) -> None:
        atomic_write_text(self.manifest_path, dump_yaml(dict(sorted(manifest.items()))))

    def cache_module(self, module_id: str, source: Path, *, dry_run: bool = False) -> Path:
        """Copy `source` into the cache unless an identical copy is already there."""

        target = self.cache_dir / module_id
        manifest = self._read_manifest()
        source_hash = sha256_tree(source)
        entry = manifest.get(module_id)
        if isinstance(entry, dict) and entry.get("originalHash") == source_hash and target.is_dir():
            return target
        if dry_run:
            return target
        if target.exists():
            shutil.rmtree(target)
        shutil.copytree(source, target, ignore=_ignore)
        manifest[module_id] = {
            "originalHash": source_hash,
            "cacheHash": sha256_tree(target),
            "cachedAt": self.now(),
        }
        self._write_manifest(manifest)
        return target

    def get(self, module_id: str) -> CachedModule | None:
        manifest = self._read_manifest()
        entry = manifest.get(module_id)
        if not isinstance(entry, dict):
            return None
        target = self.cache_dir / module_id
        if not target.is_dir():
            return None
        cache_hash = str(entry.get("cacheHash") or "")
        return CachedModule(
            module_id=module_id,
            cache_path=target,
            original_hash=str(entry.get("originalHash") or ""),
            cache_hash=cache_hash,
            cached_at=str(entry.get("cachedAt") or ""),
            intact=sha256_tree(target) == cache_hash,
        )
