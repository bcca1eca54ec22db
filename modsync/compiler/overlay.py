"""Customization overlays and their merge into a base agent definition.

An overlay lives at `<install>/_config/agents/<module>-<agent>.customize.yaml`
and survives every update. Merge rules:
- `agent.metadata`: shallow merge after dropping empty values
- `persona`: replaced wholesale when non-empty
- `critical_actions`, `memories`: appended
- `prompts` (by `id`) and `menu` (by `trigger`): same id replaces, else appended
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from modsync.infrastructure.settings import CONFIG_DIR_NAME
from modsync.infrastructure.yaml_io import load_yaml_mapping

OVERLAY_SUFFIX = ".customize.yaml"
OVERLAY_DIR_PARTS = (CONFIG_DIR_NAME, "agents")

APPENDED_FIELDS = ("critical_actions", "memories")
KEYED_FIELDS = {"prompts": "id", "menu": "trigger"}

_SCAFFOLD = """\
# Agent customization
# Values set here are merged into the compiled agent on every install and update.
# Empty values are ignored.

agent:
  metadata:
    name: ""

persona:
  role: ""
  identity: ""
  communication_style: ""
  principles: []

critical_actions: []

memories: []

menu: []

prompts: []

customized_fields: []
"""


def overlay_rel_path(module_id: str, agent_name: str) -> str:
    return "/".join((*OVERLAY_DIR_PARTS, f"{module_id}-{agent_name}{OVERLAY_SUFFIX}"))


def scaffold_overlay_text() -> str:
    return _SCAFFOLD


@dataclass
class Overlay:
    metadata: dict[str, Any] = field(default_factory=dict)
    persona: dict[str, Any] = field(default_factory=dict)
    critical_actions: list[Any] = field(default_factory=list)
    memories: list[Any] = field(default_factory=list)
    menu: list[Any] = field(default_factory=list)
    prompts: list[Any] = field(default_factory=list)
    customized_fields: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.metadata
            or self.persona
            or self.critical_actions
            or self.memories
            or self.menu
            or self.prompts
        )


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def filter_customization_data(data: Any) -> Any:
    """Recursively drop None, empty strings, empty lists and empty mappings."""

    if isinstance(data, dict):
        out: dict[str, Any] = {}
        for key, value in data.items():
            cleaned = filter_customization_data(value)
            if not _is_empty(cleaned):
                out[key] = cleaned
        return out
    if isinstance(data, list):
        cleaned_items = [filter_customization_data(v) for v in data]
        return [v for v in cleaned_items if not _is_empty(v)]
    return data


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def overlay_from_document(doc: dict[str, Any]) -> Overlay:
    agent = doc.get("agent") if isinstance(doc.get("agent"), dict) else {}
    metadata = agent.get("metadata") if isinstance(agent.get("metadata"), dict) else {}
    persona = doc.get("persona") if isinstance(doc.get("persona"), dict) else {}
    return Overlay(
        metadata=filter_customization_data(metadata),
        persona=filter_customization_data(persona),
        critical_actions=filter_customization_data(_as_list(doc.get("critical_actions"))),
        memories=filter_customization_data(_as_list(doc.get("memories"))),
        menu=filter_customization_data(_as_list(doc.get("menu"))),
        prompts=filter_customization_data(_as_list(doc.get("prompts"))),
        customized_fields=[str(f) for f in _as_list(doc.get("customized_fields"))],
    )


def load_overlay(path: Path) -> Overlay | None:
    """Read an overlay file; a missing file yields None. Parse errors propagate."""

    if not path.is_file():
        return None
    return overlay_from_document(load_yaml_mapping(path))


def _merge_keyed(base: list[Any], extra: list[Any], key: str) -> list[Any]:
    merged = list(base)
    for entry in extra:
        entry_id = entry.get(key) if isinstance(entry, dict) else None
        index = None
        if entry_id is not None:
            for i, existing in enumerate(merged):
                if isinstance(existing, dict) and existing.get(key) == entry_id:
                    index = i
                    break
        if index is None:
            merged.append(entry)
        else:
            merged[index] = entry
    return merged


def merge_overlay(base_doc: dict[str, Any], overlay: Overlay | None) -> dict[str, Any]:
    """Return a new document with `overlay` applied to `base_doc["agent"]`."""

    doc = copy.deepcopy(base_doc)
    if overlay is None or overlay.is_empty():
        return doc
    agent = doc.setdefault("agent", {})

    if overlay.metadata:
        metadata = dict(agent.get("metadata") or {})
        metadata.update(overlay.metadata)
        agent["metadata"] = metadata
    if overlay.persona:
        agent["persona"] = copy.deepcopy(overlay.persona)
    for name in APPENDED_FIELDS:
        extra = getattr(overlay, name)
        if extra:
            agent[name] = _as_list(agent.get(name)) + copy.deepcopy(extra)
    for name, key in KEYED_FIELDS.items():
        extra = getattr(overlay, name)
        if extra:
            agent[name] = _merge_keyed(_as_list(agent.get(name)), copy.deepcopy(extra), key)
    return doc
