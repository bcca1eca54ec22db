"""Placeholder resolution for `{key}` tokens in config defaults and templates.

Lookup order for one key:
1) answers already given in the current module batch
2) the run-wide answers map, matched by `_<key>` suffix
3) finalized config of any module collected so far
4) the declared schema default of the same module (resolved recursively)

`project-root` and `value` are reserved and never substituted here. Keys that
cannot be resolved stay verbatim; a default that refers back to itself through
other defaults is reported as a cycle and also left verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Any, Callable, Mapping

PLACEHOLDER_RE = re.compile(r"\{([A-Za-z0-9_\-]+)\}")
RESERVED_TOKENS = frozenset({"project-root", "value"})
DIRECTORY_NAME_TOKEN = "directory_name"

_MISSING = object()


def stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ", ".join(stringify(v) for v in value)
    if value is None:
        return ""
    return str(value)


def find_placeholders(text: str) -> list[str]:
    return PLACEHOLDER_RE.findall(text)


@dataclass
class PlaceholderScope:
    """Everything a resolution may look at for one module."""

    module_id: str
    batch_answers: Mapping[str, Any] = field(default_factory=dict)
    answers: Mapping[str, Any] = field(default_factory=dict)
    collected_config: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    schema_defaults: Mapping[str, Any] = field(default_factory=dict)
    directory_name: str | None = None


@dataclass
class Resolution:
    value: Any
    unresolved: tuple[str, ...]
    cycles: tuple[str, ...]


class PlaceholderResolver:
    def __init__(self, scope: PlaceholderScope, *, on_cycle: Callable[[str], None] | None = None):
        self.scope = scope
        self.on_cycle = on_cycle
        self._unresolved: list[str] = []
        self._cycles: list[str] = []

    def lookup(self, key: str, *, stack: tuple[str, ...] = ()) -> Any:
        scope = self.scope
        if key == DIRECTORY_NAME_TOKEN and scope.directory_name is not None:
            return scope.directory_name

        batch_key = f"{scope.module_id}_{key}"
        if batch_key in scope.batch_answers:
            return scope.batch_answers[batch_key]
        if key in scope.batch_answers:
            return scope.batch_answers[key]

        suffix = f"_{key}"
        for answer_key, answer_value in scope.answers.items():
            if answer_key.endswith(suffix):
                return answer_value

        for module_config in scope.collected_config.values():
            if isinstance(module_config, Mapping) and key in module_config:
                return module_config[key]

        if key in scope.schema_defaults:
            if key in stack:
                self._cycles.append(" -> ".join((*stack, key)))
                if self.on_cycle is not None:
                    self.on_cycle(" -> ".join((*stack, key)))
                return _MISSING
            default = scope.schema_defaults[key]
            if isinstance(default, str):
                return self._substitute(default, stack=(*stack, key))
            return default
        return _MISSING

    def _substitute(self, text: str, *, stack: tuple[str, ...]) -> Any:
        whole = PLACEHOLDER_RE.fullmatch(text)
        if whole and whole.group(1) not in RESERVED_TOKENS:
            found = self.lookup(whole.group(1), stack=stack)
            if found is _MISSING:
                self._unresolved.append(whole.group(1))
                return text
            return found

        def _replace(m: re.Match[str]) -> str:
            key = m.group(1)
            if key in RESERVED_TOKENS:
                return m.group(0)
            found = self.lookup(key, stack=stack)
            if found is _MISSING:
                self._unresolved.append(key)
                return m.group(0)
            return stringify(found)

        return PLACEHOLDER_RE.sub(_replace, text)

    def resolve(self, value: Any, *, origin: str | None = None) -> Resolution:
        """Resolve one value; `origin` is the key whose default is being resolved."""

        self._unresolved = []
        self._cycles = []
        stack: tuple[str, ...] = (origin,) if origin else ()
        if isinstance(value, str):
            out: Any = self._substitute(value, stack=stack)
        elif isinstance(value, list):
            out = [self._substitute(v, stack=stack) if isinstance(v, str) else v for v in value]
        else:
            out = value
        return Resolution(value=out, unresolved=tuple(self._unresolved), cycles=tuple(self._cycles))


def resolve_placeholders(value: Any, scope: PlaceholderScope) -> Any:
    return PlaceholderResolver(scope).resolve(value).value


def apply_result_template(result: Any, value: Any, scope: PlaceholderScope) -> Any:
    """Apply a `result` template to one answer.

    A template that is exactly `{value}` keeps the raw answer so booleans,
    numbers and lists survive; otherwise `{value}` is replaced textually and the
    remaining placeholders are resolved.
    """

    if result is None:
        return value
    if not isinstance(result, str):
        return result
    if result.strip() == "{value}":
        return value
    if isinstance(value, list):
        return [apply_result_template(result, item, scope) for item in value]
    text = result.replace("{value}", stringify(value))
    return resolve_placeholders(text, scope)


def substitute_mapping(text: str, values: Mapping[str, Any], *, keep: frozenset[str] = RESERVED_TOKENS) -> str:
    """Single-pass `{key}` substitution from a flat mapping, unknown keys untouched."""

    def _replace(m: re.Match[str]) -> str:
        key = m.group(1)
        if key in keep or key not in values:
            return m.group(0)
        return stringify(values[key])

    return PLACEHOLDER_RE.sub(_replace, text)
