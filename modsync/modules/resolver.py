"""Module source resolution across builtin, remote-cached and custom tiers.

Resolution order for one module id:
1) builtin modules shipped with the installer
2) remote modules from the registry (cached git clone, refreshed once per run)
3) custom modules: explicit `--custom` paths, then the project-local custom cache

The returned `ModuleSource` is the only object other components use to locate
schema, template and artifact files of a module.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import subprocess
from typing import Any, Callable, Literal

from modsync.domain.errors import ModuleNotFound, NetworkFetchFailure, SourceUnavailable
from modsync.domain.reason_codes import (
    CUSTOM_CACHE_INTEGRITY,
    DEPENDENCY_INSTALL_FAILED,
    NETWORK_FETCH_FAILURE,
)
from modsync.infrastructure.custom_cache import CustomModuleCache
from modsync.infrastructure.git_gateway import (
    GitGateway,
    Runner,
    install_dependencies,
    pending_dependency_installs,
)
from modsync.infrastructure.yaml_io import YamlDocumentError, load_yaml
from modsync.modules.registry import RegistryEntry

SourceKind = Literal["builtin", "remote-cached", "local-custom"]
Notify = Callable[[str, str, str | None], None]

SCHEMA_FILE_NAME = "module.yaml"
AGENTS_DIR_NAME = "agents"
CUSTOM_VALUES_FILE_NAME = "custom.yaml"
SIDECAR_SUFFIX = "-sidecar"
AGENT_SUFFIX = ".agent.yaml"


def read_module_metadata(module_root: Path) -> tuple[dict[str, Any], str | None]:
    """Return (schema mapping, parse error) for a module root; never raises on bad YAML."""

    schema = module_root / SCHEMA_FILE_NAME
    if not schema.is_file():
        return {}, None
    try:
        payload = load_yaml(schema)
    except YamlDocumentError as exc:
        return {}, exc.detail
    if payload is None:
        return {}, None
    if not isinstance(payload, dict):
        return {}, "document root must be a mapping"
    return payload, None


def _as_dependencies(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return ()
    return tuple(str(v).strip() for v in value if isinstance(v, str) and v.strip())


@dataclass(frozen=True)
class ModuleSource:
    code: str
    name: str
    version: str
    root: Path
    source_kind: SourceKind
    dependencies: tuple[str, ...] = ()
    header: str = ""
    subheader: str = ""
    description: str = ""
    repo_url: str | None = None
    source_path: str | None = None
    schema_error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def schema_path(self) -> Path:
        return self.root / SCHEMA_FILE_NAME

    def template_path(self) -> Path:
        return self.root / AGENTS_DIR_NAME

    def artifact_root(self) -> Path:
        return self.root

    def custom_values_path(self) -> Path:
        return self.root / CUSTOM_VALUES_FILE_NAME

    def agent_definitions(self) -> list[Path]:
        agents_dir = self.template_path()
        if not agents_dir.is_dir():
            return []
        out: list[Path] = []
        for p in sorted(agents_dir.rglob(f"*{AGENT_SUFFIX}")):
            rel_parts = p.relative_to(agents_dir).parts
            if any(part.endswith(SIDECAR_SUFFIX) for part in rel_parts[:-1]):
                continue
            out.append(p)
        return out

    def sidecar_dirs(self) -> list[Path]:
        agents_dir = self.template_path()
        if not agents_dir.is_dir():
            return []
        return sorted(p for p in agents_dir.rglob(f"*{SIDECAR_SUFFIX}") if p.is_dir())


def build_module_source(
    module_id: str,
    root: Path,
    kind: SourceKind,
    *,
    repo_url: str | None = None,
    source_path: str | None = None,
) -> ModuleSource:
    metadata, error = read_module_metadata(root)
    return ModuleSource(
        code=module_id,
        name=str(metadata.get("name") or module_id),
        version=str(metadata.get("version") or "unknown"),
        root=root,
        source_kind=kind,
        dependencies=_as_dependencies(metadata.get("dependencies")),
        header=str(metadata.get("header") or ""),
        subheader=str(metadata.get("subheader") or ""),
        description=str(metadata.get("description") or ""),
        repo_url=repo_url,
        source_path=source_path,
        schema_error=error,
        metadata=metadata,
    )


def custom_module_id(path: Path) -> str:
    metadata, _ = read_module_metadata(path)
    code = metadata.get("code")
    if isinstance(code, str) and code.strip():
        return code.strip()
    return path.name


def _silent(_code: str, _message: str, _module: str | None) -> None:
    return None


class ModuleSourceResolver:
    def __init__(
        self,
        *,
        builtin_dir: Path,
        cache_dir: Path,
        registry: dict[str, RegistryEntry] | None = None,
        custom_paths: tuple[tuple[str | None, Path], ...] = (),
        custom_cache: CustomModuleCache | None = None,
        git: GitGateway | None = None,
        refreshed: set[str] | None = None,
        notify: Notify = _silent,
        dependency_timeout_seconds: int = 120,
        runner: Runner = subprocess.run,
    ):
        self.builtin_dir = builtin_dir
        self.cache_dir = cache_dir
        self.registry = registry or {}
        self.custom_cache = custom_cache
        self.git = git or GitGateway(timeout_seconds=120, runner=runner)
        self.refreshed = refreshed if refreshed is not None else set()
        self.notify = notify
        self.dependency_timeout_seconds = dependency_timeout_seconds
        self.runner = runner
        self.custom_paths: dict[str, Path] = {}
        for module_id, path in custom_paths:
            resolved = path.expanduser().resolve()
            self.custom_paths[module_id or custom_module_id(resolved)] = resolved
        self._resolved: dict[str, ModuleSource] = {}

    def builtin_ids(self) -> list[str]:
        if not self.builtin_dir.is_dir():
            return []
        return sorted(p.name for p in self.builtin_dir.iterdir() if (p / SCHEMA_FILE_NAME).is_file())

    def known_ids(self) -> list[str]:
        return sorted(set(self.builtin_ids()) | set(self.registry) | set(self.custom_paths))

    def resolve(self, module_id: str) -> ModuleSource:
        cached = self._resolved.get(module_id)
        if cached is not None:
            return cached
        source = (
            self._resolve_builtin(module_id)
            or self._resolve_remote(module_id)
            or self._resolve_custom(module_id)
        )
        if source is None:
            raise ModuleNotFound(
                "module source not found in builtin, remote cache or custom tiers",
                module_id=module_id,
            )
        self._resolved[module_id] = source
        return source

    def _resolve_builtin(self, module_id: str) -> ModuleSource | None:
        root = self.builtin_dir / module_id
        if not (root / SCHEMA_FILE_NAME).is_file():
            return None
        return build_module_source(module_id, root, "builtin")

    def _resolve_remote(self, module_id: str) -> ModuleSource | None:
        entry = self.registry.get(module_id)
        if entry is None:
            return None
        clone_dir = self.cache_dir / "external-modules" / entry.code
        if module_id not in self.refreshed:
            self._refresh_clone(entry, clone_dir)
            self.refreshed.add(module_id)
        if not clone_dir.is_dir():
            raise SourceUnavailable("remote module cache is missing after fetch", module_id=module_id)
        root = clone_dir / entry.module_subdir
        if not (clone_dir / entry.module_definition).is_file():
            raise SourceUnavailable(
                f"module definition {entry.module_definition!r} not found in clone", module_id=module_id
            )
        return build_module_source(module_id, root, "remote-cached", repo_url=entry.url)

    def _refresh_clone(self, entry: RegistryEntry, clone_dir: Path) -> None:
        if (clone_dir / ".git").exists():
            try:
                self.git.update(clone_dir)
            except NetworkFetchFailure as exc:
                self.notify(
                    NETWORK_FETCH_FAILURE,
                    f"could not update cached clone ({exc.detail}); using existing cache",
                    entry.code,
                )
        else:
            try:
                self.git.clone(entry.url, clone_dir)
            except NetworkFetchFailure as exc:
                raise SourceUnavailable(f"remote fetch failed: {exc.detail}", module_id=entry.code) from exc
        self._install_dependencies(entry.code, clone_dir)

    def _install_dependencies(self, module_id: str, clone_dir: Path) -> None:
        for kind in pending_dependency_installs(clone_dir):
            result = install_dependencies(
                clone_dir,
                kind,
                timeout_seconds=self.dependency_timeout_seconds,
                runner=self.runner,
            )
            if not result.ok:
                self.notify(
                    DEPENDENCY_INSTALL_FAILED,
                    f"dependency install for {kind.manifest} failed ({result.describe()}); continuing",
                    module_id,
                )

    def _resolve_custom(self, module_id: str) -> ModuleSource | None:
        path = self.custom_paths.get(module_id)
        if path is not None and path.is_dir():
            return build_module_source(module_id, path, "local-custom", source_path=str(path))
        if self.custom_cache is not None:
            cached = self.custom_cache.get(module_id)
            if cached is not None:
                if not cached.intact:
                    self.notify(CUSTOM_CACHE_INTEGRITY, "custom module cache integrity check failed", module_id)
                return build_module_source(
                    module_id,
                    cached.cache_path,
                    "local-custom",
                    source_path=str(path) if path is not None else None,
                )
        return None
