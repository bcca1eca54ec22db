"""Persistent installation manifest.

The manifest records installed module versions and sources, plus the sha256 of
every file the installer last wrote (`trackedFiles`) and of every customization
overlay it scaffolded (`customizationFiles`). Paths are relative to the install
directory so the record survives moving the project.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from modsync.infrastructure.fs_atomic import atomic_write_text
from modsync.infrastructure.settings import CONFIG_DIR_NAME
from modsync.infrastructure.yaml_io import YamlDocumentError, dump_yaml, load_yaml

MANIFEST_NAME = "manifest.yaml"


@dataclass
class ModuleRecord:
    id: str
    version: str
    source: str
    install_date: str
    last_updated: str
    schema_hash: str | None = None
    repo_url: str | None = None
    source_path: str | None = None

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "id": self.id,
            "version": self.version,
            "source": self.source,
            "installDate": self.install_date,
            "lastUpdated": self.last_updated,
        }
        if self.schema_hash:
            doc["schemaHash"] = self.schema_hash
        if self.repo_url:
            doc["repoUrl"] = self.repo_url
        if self.source_path:
            doc["sourcePath"] = self.source_path
        return doc

    @classmethod
    def from_document(cls, doc: Any) -> "ModuleRecord":
        if isinstance(doc, str):
            # Older manifests listed bare module ids.
            return cls(id=doc, version="unknown", source="unknown", install_date="", last_updated="")
        if not isinstance(doc, dict):
            raise ValueError("module record must be a mapping or an id string")
        module_id = doc.get("id") or doc.get("name")
        if not isinstance(module_id, str) or not module_id.strip():
            raise ValueError("module record id is required")
        return cls(
            id=module_id.strip(),
            version=str(doc.get("version") or "unknown"),
            source=str(doc.get("source") or "unknown"),
            install_date=str(doc.get("installDate") or ""),
            last_updated=str(doc.get("lastUpdated") or ""),
            schema_hash=doc.get("schemaHash"),
            repo_url=doc.get("repoUrl"),
            source_path=doc.get("sourcePath"),
        )


def _string_map(value: Any, field_name: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"manifest field {field_name!r} must be a mapping")
    out: dict[str, str] = {}
    for key, digest in value.items():
        if not isinstance(key, str) or not isinstance(digest, str):
            raise ValueError(f"manifest field {field_name!r} contains invalid entry")
        out[key] = digest
    return out


@dataclass
class Manifest:
    version: str
    install_date: str
    last_modified: str
    modules: list[ModuleRecord] = field(default_factory=list)
    tracked_files: dict[str, str] = field(default_factory=dict)
    customization_files: dict[str, str] = field(default_factory=dict)

    def module_record(self, module_id: str) -> ModuleRecord | None:
        for record in self.modules:
            if record.id == module_id:
                return record
        return None

    def module_ids(self) -> list[str]:
        return [record.id for record in self.modules]

    def tracked_hash(self, path: str) -> str | None:
        return self.tracked_files.get(path)

    def customization_hash(self, path: str) -> str | None:
        return self.customization_files.get(path)

    def upsert_module(self, record: ModuleRecord) -> None:
        for index, existing in enumerate(self.modules):
            if existing.id == record.id:
                self.modules[index] = record
                return
        self.modules.append(record)

    def replace_tracked(self, prefixes: Iterable[str], hashes: dict[str, str]) -> None:
        """Drop tracked entries under `prefixes`, then merge `hashes` in."""

        roots = tuple(p.rstrip("/") + "/" for p in prefixes)
        kept = {k: v for k, v in self.tracked_files.items() if not (roots and k.startswith(roots))}
        kept.update(hashes)
        self.tracked_files = dict(sorted(kept.items()))

    def replace_module_files(self, module_id: str, hashes: dict[str, str]) -> None:
        self.replace_tracked([module_id], hashes)

    def merge_customizations(self, hashes: dict[str, str]) -> None:
        merged = dict(self.customization_files)
        merged.update(hashes)
        self.customization_files = dict(sorted(merged.items()))

    def to_document(self) -> dict[str, Any]:
        return {
            "installation": {
                "version": self.version,
                "installDate": self.install_date,
                "lastModified": self.last_modified,
            },
            "modules": [record.to_document() for record in self.modules],
            "trackedFiles": dict(sorted(self.tracked_files.items())),
            "customizationFiles": dict(sorted(self.customization_files.items())),
        }

    @classmethod
    def from_document(cls, doc: Any) -> "Manifest":
        if not isinstance(doc, dict):
            raise ValueError("manifest root must be a mapping")
        installation = doc.get("installation") or {}
        if not isinstance(installation, dict):
            raise ValueError("manifest field 'installation' must be a mapping")
        modules_raw = doc.get("modules") or []
        if not isinstance(modules_raw, list):
            raise ValueError("manifest field 'modules' must be a list")
        return cls(
            version=str(installation.get("version") or "unknown"),
            install_date=str(installation.get("installDate") or ""),
            last_modified=str(installation.get("lastModified") or installation.get("lastUpdated") or ""),
            modules=[ModuleRecord.from_document(m) for m in modules_raw],
            tracked_files=_string_map(doc.get("trackedFiles"), "trackedFiles"),
            customization_files=_string_map(
                doc.get("customizationFiles", doc.get("agentCustomizations")), "customizationFiles"
            ),
        )


@dataclass(frozen=True)
class ManifestLoadResult:
    manifest: Manifest | None
    degraded: bool
    detail: str


class ManifestStore:
    """Read/write access to `<install>/_config/manifest.yaml`."""

    def __init__(self, install_dir: Path):
        self.install_dir = install_dir
        self.path = install_dir / CONFIG_DIR_NAME / MANIFEST_NAME

    def _has_installed_modules(self) -> bool:
        if not self.install_dir.is_dir():
            return False
        for entry in self.install_dir.iterdir():
            if entry.is_dir() and not entry.name.startswith("_") and (entry / "config.yaml").is_file():
                return True
        return False

    def load(self) -> ManifestLoadResult:
        if not self.path.exists():
            if self._has_installed_modules():
                return ManifestLoadResult(
                    manifest=None,
                    degraded=True,
                    detail=f"manifest missing for existing installation: {self.path}",
                )
            return ManifestLoadResult(manifest=None, degraded=False, detail="")
        try:
            manifest = Manifest.from_document(load_yaml(self.path))
        except (YamlDocumentError, ValueError, OSError) as exc:
            return ManifestLoadResult(manifest=None, degraded=True, detail=f"manifest unreadable: {exc}")
        return ManifestLoadResult(manifest=manifest, degraded=False, detail="")

    def render(self, manifest: Manifest) -> str:
        return dump_yaml(manifest.to_document())

    def save(self, manifest: Manifest) -> bool:
        """Persist the manifest; returns False when the on-disk document is already identical."""

        text = self.render(manifest)
        if self.path.is_file() and self.path.read_text(encoding="utf-8") == text:
            return False
        atomic_write_text(self.path, text)
        return True
