"""Registry of remote modules that are fetched into a local clone cache."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from modsync.infrastructure.yaml_io import load_yaml_mapping


@dataclass(frozen=True)
class RegistryEntry:
    key: str
    code: str
    name: str
    url: str
    module_definition: str
    description: str = ""
    default_selected: bool = False
    module_type: str = "community"
    npm_package: str | None = None

    @property
    def module_subdir(self) -> Path:
        """Directory of the module inside the clone (parent of the definition file)."""
        return Path(self.module_definition).parent


def _entry_from_document(key: str, doc: Any) -> RegistryEntry:
    if not isinstance(doc, dict):
        raise ValueError(f"registry entry {key!r} must be a mapping")
    url = doc.get("url")
    if not isinstance(url, str) or not url.strip():
        raise ValueError(f"registry entry {key!r} requires a url")
    code = str(doc.get("code") or key).strip()
    definition = str(doc.get("module-definition") or "module.yaml").strip()
    return RegistryEntry(
        key=key,
        code=code,
        name=str(doc.get("name") or code),
        url=url.strip(),
        module_definition=definition,
        description=str(doc.get("description") or ""),
        default_selected=bool(doc.get("defaultSelected", False)),
        module_type=str(doc.get("type") or "community"),
        npm_package=doc.get("npmPackage"),
    )


def load_registry(path: Path | None) -> dict[str, RegistryEntry]:
    """Load `modules: {key: {...}}` from a registry YAML, keyed by module code."""

    if path is None or not path.is_file():
        return {}
    payload = load_yaml_mapping(path)
    modules = payload.get("modules") or {}
    if not isinstance(modules, dict):
        raise ValueError(f"registry {path}: 'modules' must be a mapping")
    entries: dict[str, RegistryEntry] = {}
    for key in modules:
        entry = _entry_from_document(str(key), modules[key])
        entries[entry.code] = entry
    return entries
