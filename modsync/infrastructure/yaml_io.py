"""YAML document IO shared by the manifest, config and overlay layers."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from modsync.infrastructure.fs_atomic import atomic_write_text


class YamlDocumentError(ValueError):
    """Raised when a YAML document cannot be parsed or has the wrong shape."""

    def __init__(self, path: Path, detail: str):
        super().__init__(f"{path}: {detail}")
        self.path = path
        self.detail = detail


def dump_yaml(obj: Any) -> str:
    return yaml.safe_dump(
        obj,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=4096,
    )


def parse_yaml_text(text: str, *, source: Path) -> Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise YamlDocumentError(source, f"invalid YAML ({exc.__class__.__name__}): {exc}") from exc


def load_yaml(path: Path) -> Any:
    return parse_yaml_text(path.read_text(encoding="utf-8"), source=path)


def load_yaml_mapping(path: Path, *, allow_empty: bool = True) -> dict[str, Any]:
    """Load a document whose root must be a mapping; an empty file yields {}."""

    payload = load_yaml(path)
    if payload is None and allow_empty:
        return {}
    if not isinstance(payload, dict):
        raise YamlDocumentError(path, "document root must be a mapping")
    return payload


def write_yaml(path: Path, obj: Any, *, header: str | None = None) -> str:
    text = dump_yaml(obj)
    if header:
        text = header.rstrip("\n") + "\n\n" + text
    atomic_write_text(path, text)
    return text
