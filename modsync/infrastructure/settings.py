"""Installer settings resolved from CLI arguments with environment fallbacks.

Precedence (highest first):
1) explicit CLI flag
2) environment variable
3) built-in default
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Mapping

DEFAULT_FOLDER_NAME = "_modsync"
CONFIG_DIR_NAME = "_config"
MEMORY_DIR_NAME = "_memory"

ENV_SOURCE_DIR = "MODSYNC_SOURCE_DIR"
ENV_CACHE_DIR = "MODSYNC_CACHE_DIR"
ENV_REGISTRY = "MODSYNC_REGISTRY"
ENV_FOLDER = "MODSYNC_FOLDER"

NETWORK_TIMEOUT_SECONDS = 120
DEPENDENCY_TIMEOUT_SECONDS = 120


def default_builtin_dir() -> Path:
    return Path(__file__).resolve().parents[1] / "builtin"


def default_cache_dir() -> Path:
    return Path.home() / ".modsync" / "cache"


@dataclass(frozen=True)
class InstallerSettings:
    project_dir: Path
    folder_name: str = DEFAULT_FOLDER_NAME
    builtin_dir: Path = field(default_factory=default_builtin_dir)
    cache_dir: Path = field(default_factory=default_cache_dir)
    registry_path: Path | None = None
    custom_paths: tuple[tuple[str | None, Path], ...] = ()
    selected_modules: tuple[str, ...] = ()
    assume_yes: bool = False
    dry_run: bool = False
    quiet: bool = False
    quick_update: bool = False
    network_timeout_seconds: int = NETWORK_TIMEOUT_SECONDS
    dependency_timeout_seconds: int = DEPENDENCY_TIMEOUT_SECONDS

    @property
    def install_dir(self) -> Path:
        return self.project_dir / self.folder_name

    @property
    def config_dir(self) -> Path:
        return self.install_dir / CONFIG_DIR_NAME


def parse_custom_path(raw: str) -> tuple[str | None, Path]:
    """Parse `id=path` or a bare `path` (id is then read from the module schema)."""

    token = raw.strip()
    if not token:
        raise ValueError("custom module path must not be empty")
    if "=" in token:
        module_id, _, path = token.partition("=")
        if not module_id.strip() or not path.strip():
            raise ValueError(f"invalid custom module spec: {raw!r} (expected id=path)")
        return module_id.strip(), Path(path.strip()).expanduser()
    return None, Path(token).expanduser()


def _env_path(env: Mapping[str, str], name: str) -> Path | None:
    raw = str(env.get(name, "")).strip()
    return Path(raw).expanduser() if raw else None


def resolve_settings(
    *,
    project_dir: Path,
    folder_name: str | None = None,
    builtin_dir: Path | None = None,
    cache_dir: Path | None = None,
    registry_path: Path | None = None,
    custom_paths: tuple[tuple[str | None, Path], ...] = (),
    selected_modules: tuple[str, ...] = (),
    assume_yes: bool = False,
    dry_run: bool = False,
    quiet: bool = False,
    quick_update: bool = False,
    env: Mapping[str, str] | None = None,
) -> InstallerSettings:
    environ = os.environ if env is None else env
    folder = folder_name or str(environ.get(ENV_FOLDER, "")).strip() or DEFAULT_FOLDER_NAME
    if "/" in folder or "\\" in folder or folder in {".", ".."}:
        raise ValueError(f"install folder name must be a single path segment: {folder!r}")
    return InstallerSettings(
        project_dir=project_dir.expanduser().resolve(),
        folder_name=folder,
        builtin_dir=builtin_dir or _env_path(environ, ENV_SOURCE_DIR) or default_builtin_dir(),
        cache_dir=cache_dir or _env_path(environ, ENV_CACHE_DIR) or default_cache_dir(),
        registry_path=registry_path or _env_path(environ, ENV_REGISTRY),
        custom_paths=custom_paths,
        selected_modules=selected_modules,
        assume_yes=assume_yes,
        dry_run=dry_run,
        quiet=quiet,
        quick_update=quick_update,
    )


def retarget_folder(text: str, folder: str) -> str:
    """Point `{project-root}/<default folder>/` references at the configured folder."""

    if folder == DEFAULT_FOLDER_NAME:
        return text
    return text.replace(f"{{project-root}}/{DEFAULT_FOLDER_NAME}/", f"{{project-root}}/{folder}/")
