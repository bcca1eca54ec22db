"""Installation status: versions and drift of tracked files.

Status never fetches: remote modules are read from whatever the local clone
cache holds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from modsync.domain.errors import SourceUnavailable
from modsync.domain.versions import is_newer
from modsync.infrastructure.console import Console
from modsync.infrastructure.custom_cache import CustomModuleCache
from modsync.infrastructure.hashing import sha256_file_or_none
from modsync.infrastructure.manifest_store import ManifestStore
from modsync.infrastructure.settings import InstallerSettings
from modsync.modules.registry import load_registry
from modsync.modules.resolver import ModuleSourceResolver

DriftKind = Literal["user-modified", "missing"]


@dataclass(frozen=True)
class ModuleStatusLine:
    module_id: str
    installed_version: str
    latest_version: str | None
    source: str

    @property
    def update_available(self) -> bool:
        return is_newer(self.latest_version, self.installed_version)


@dataclass(frozen=True)
class FileDrift:
    path: str
    kind: DriftKind


@dataclass
class StatusReport:
    install_dir: str
    installed: bool
    degraded: bool = False
    detail: str = ""
    version: str = ""
    last_modified: str = ""
    modules: list[ModuleStatusLine] = field(default_factory=list)
    modified_files: list[FileDrift] = field(default_factory=list)
    customized_overlays: list[str] = field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        return {
            "install_dir": self.install_dir,
            "installed": self.installed,
            "degraded": self.degraded,
            "detail": self.detail,
            "version": self.version,
            "last_modified": self.last_modified,
            "modules": [
                {
                    "id": m.module_id,
                    "installed": m.installed_version,
                    "latest": m.latest_version,
                    "source": m.source,
                    "update_available": m.update_available,
                }
                for m in self.modules
            ],
            "modified_files": [{"path": d.path, "kind": d.kind} for d in self.modified_files],
            "customized_overlays": list(self.customized_overlays),
        }


def _offline_resolver(settings: InstallerSettings) -> ModuleSourceResolver:
    registry = load_registry(settings.registry_path)
    return ModuleSourceResolver(
        builtin_dir=settings.builtin_dir,
        cache_dir=settings.cache_dir,
        registry=registry,
        custom_paths=settings.custom_paths,
        custom_cache=CustomModuleCache(settings.install_dir),
        # Marking every remote code as refreshed keeps status offline.
        refreshed=set(registry),
    )


def build_status(settings: InstallerSettings, *, resolver: ModuleSourceResolver | None = None) -> StatusReport:
    install_dir = settings.install_dir
    loaded = ManifestStore(install_dir).load()
    report = StatusReport(
        install_dir=str(install_dir),
        installed=loaded.manifest is not None,
        degraded=loaded.degraded,
        detail=loaded.detail,
    )
    manifest = loaded.manifest
    if manifest is None:
        return report

    report.version = manifest.version
    report.last_modified = manifest.last_modified
    resolver = resolver or _offline_resolver(settings)
    for record in manifest.modules:
        try:
            latest: str | None = resolver.resolve(record.id).version
        except SourceUnavailable:
            latest = None
        report.modules.append(
            ModuleStatusLine(
                module_id=record.id,
                installed_version=record.version,
                latest_version=latest,
                source=record.source,
            )
        )

    for rel, tracked in sorted(manifest.tracked_files.items()):
        disk = sha256_file_or_none(install_dir / rel)
        if disk is None:
            report.modified_files.append(FileDrift(rel, "missing"))
        elif disk != tracked:
            report.modified_files.append(FileDrift(rel, "user-modified"))
    for rel, tracked in sorted(manifest.customization_files.items()):
        disk = sha256_file_or_none(install_dir / rel)
        if disk is not None and disk != tracked:
            report.customized_overlays.append(rel)
    return report


def print_status(report: StatusReport, console: Console) -> None:
    console.rule()
    console.info(f"📁 Install dir: {report.install_dir}")
    if report.degraded:
        console.warn(f"MANIFEST-DEGRADED: {report.detail}")
    if not report.installed:
        console.info("ℹ️  No installation manifest found.")
        console.rule()
        return
    console.info(f"Installer version: {report.version} | last modified: {report.last_modified}")
    console.section("📋 Modules")
    for line in report.modules:
        latest = line.latest_version or "unavailable"
        marker = " ⬆️  update available" if line.update_available else ""
        console.info(f"  • {line.module_id} {line.installed_version} (latest {latest}, {line.source}){marker}")
    if report.modified_files:
        console.section("⚠️  Tracked files changed since install")
        for drift in report.modified_files:
            console.info(f"  - {drift.path} ({drift.kind})")
    else:
        console.section("✅ No tracked file changed since install")
    if report.customized_overlays:
        console.section("🧩 Customized agents")
        for rel in report.customized_overlays:
            console.info(f"  - {rel}")
    console.rule()
