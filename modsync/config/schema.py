"""Typed view of a module's declarative config schema (`module.yaml`).

Each config item is resolved once at load time into a tagged kind so callers
never branch on raw schema fields.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Any, Literal, Union

from modsync.domain.errors import SchemaParseError
from modsync.infrastructure.yaml_io import YamlDocumentError, load_yaml
from modsync.modules.resolver import ModuleSource

SCHEMA_METADATA_KEYS = frozenset(
    {
        "code",
        "name",
        "header",
        "subheader",
        "description",
        "version",
        "dependencies",
        "default_selected",
        "type",
        "author",
        "prompt",
        "unitary",
    }
)


@dataclass(frozen=True)
class Choice:
    label: str
    value: Any


@dataclass(frozen=True)
class TextKind:
    tag: Literal["text"] = "text"


@dataclass(frozen=True)
class BooleanKind:
    tag: Literal["boolean"] = "boolean"


@dataclass(frozen=True)
class SingleChoiceKind:
    options: tuple[Choice, ...]
    tag: Literal["single-choice"] = "single-choice"


@dataclass(frozen=True)
class MultiChoiceKind:
    options: tuple[Choice, ...]
    tag: Literal["multi-choice"] = "multi-choice"


@dataclass(frozen=True)
class StaticKind:
    tag: Literal["static"] = "static"


ConfigItemKind = Union[TextKind, BooleanKind, SingleChoiceKind, MultiChoiceKind, StaticKind]


@dataclass(frozen=True)
class ConfigItem:
    module_id: str
    key: str
    kind: ConfigItemKind
    prompt: str | None
    default: Any
    result: Any
    regex: str | None = None
    required: bool = False

    @property
    def is_static(self) -> bool:
        return isinstance(self.kind, StaticKind)


@dataclass(frozen=True)
class ModuleSchema:
    module_id: str
    header: str
    subheader: str
    items: tuple[ConfigItem, ...]

    def keys(self) -> list[str]:
        return [item.key for item in self.items]

    def item(self, key: str) -> ConfigItem | None:
        for item in self.items:
            if item.key == key:
                return item
        return None

    def defaults(self) -> dict[str, Any]:
        return {item.key: item.default for item in self.items if item.default is not None}


def _parse_choices(module_id: str, key: str, raw: Any) -> tuple[Choice, ...]:
    if not isinstance(raw, list) or not raw:
        raise SchemaParseError(f"config item {key!r}: choice list must be a non-empty list", module_id=module_id)
    out: list[Choice] = []
    for option in raw:
        if isinstance(option, dict):
            if "value" not in option:
                raise SchemaParseError(f"config item {key!r}: choice mapping requires 'value'", module_id=module_id)
            value = option["value"]
            out.append(Choice(label=str(option.get("label", value)), value=value))
        else:
            out.append(Choice(label=str(option), value=option))
    return tuple(out)


def _prompt_text(raw: Any) -> str | None:
    if raw is None:
        return None
    if isinstance(raw, list):
        return "\n".join(str(line) for line in raw)
    return str(raw)


def parse_item(module_id: str, key: str, raw: dict[str, Any]) -> ConfigItem:
    prompt = _prompt_text(raw.get("prompt"))
    default = raw.get("default")
    result = raw.get("result")
    regex = raw.get("regex")
    if regex is not None:
        try:
            re.compile(str(regex))
        except re.error as exc:
            raise SchemaParseError(f"config item {key!r}: invalid regex {regex!r}: {exc}", module_id=module_id) from exc

    kind: ConfigItemKind
    if prompt is None:
        kind = StaticKind()
    elif "single-select" in raw:
        kind = SingleChoiceKind(options=_parse_choices(module_id, key, raw["single-select"]))
    elif "multi-select" in raw:
        kind = MultiChoiceKind(options=_parse_choices(module_id, key, raw["multi-select"]))
    elif isinstance(default, bool):
        kind = BooleanKind()
    else:
        kind = TextKind()

    return ConfigItem(
        module_id=module_id,
        key=key,
        kind=kind,
        prompt=prompt,
        default=default,
        result=result,
        regex=str(regex) if regex is not None else None,
        required=bool(raw.get("required", False)),
    )


def parse_schema(module_id: str, document: Any) -> ModuleSchema:
    if document is None:
        return ModuleSchema(module_id=module_id, header="", subheader="", items=())
    if not isinstance(document, dict):
        raise SchemaParseError("schema root must be a mapping", module_id=module_id)
    items: list[ConfigItem] = []
    for key, raw in document.items():
        if key in SCHEMA_METADATA_KEYS or not isinstance(raw, dict):
            continue
        if "prompt" not in raw and "result" not in raw:
            continue
        items.append(parse_item(module_id, str(key), raw))
    return ModuleSchema(
        module_id=module_id,
        header=str(document.get("header") or ""),
        subheader=str(document.get("subheader") or ""),
        items=tuple(items),
    )


def load_schema(source: ModuleSource) -> ModuleSchema:
    path = source.schema_path()
    if not path.is_file():
        return ModuleSchema(module_id=source.code, header=source.header, subheader=source.subheader, items=())
    try:
        document = load_yaml(path)
    except YamlDocumentError as exc:
        raise SchemaParseError(exc.detail, module_id=source.code) from exc
    return parse_schema(source.code, document)


def validate_answer(item: ConfigItem, value: Any) -> str | None:
    """Return an error message for an invalid answer, else None."""

    empty = value is None or (isinstance(value, str) and not value.strip()) or value == []
    if empty:
        return "This field is required." if item.required else None
    if item.regex and isinstance(value, str) and not re.search(item.regex, value):
        return f"Invalid format. Must match pattern: {item.regex}"
    return None
