"""Configuration collection for one install run.

For each module, in dependency order:
- prompted items are asked as one batch through the prompter, each default
  resolved against the answers given earlier in the batch,
- static items (no prompt, a `result` template) are resolved after the batch,
- answers land in the run-wide answers map as `<module>_<key>` and the
  processed results in the module's collected config.

On update runs only keys missing from the module's existing config are asked;
a module whose schema did not grow keeps its existing config verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Literal, Mapping

from modsync.config.prompter import Prompter, Question
from modsync.config.schema import ConfigItem, ModuleSchema, load_schema, validate_answer
from modsync.config.writer import CORE_SECTION_MARKER
from modsync.domain.errors import ConfigValidationError, SchemaParseError
from modsync.domain.placeholders import (
    PlaceholderResolver,
    PlaceholderScope,
    apply_result_template,
)
from modsync.domain.reason_codes import (
    EXISTING_CONFIG_UNREADABLE,
    PLACEHOLDER_CYCLE,
    SCHEMA_PARSE_ERROR,
)
from modsync.infrastructure.yaml_io import YamlDocumentError, load_yaml_mapping, parse_yaml_text
from modsync.modules.resolver import ModuleSource

if TYPE_CHECKING:
    from modsync.application.run_context import RunContext

CollectionMode = Literal["fresh", "carried-over", "migrated", "schema-error"]
PROJECT_ROOT_PREFIX = "{project-root}/"
MODULE_CONFIG_NAME = "config.yaml"


@dataclass
class CollectionResult:
    module_id: str
    mode: CollectionMode
    config: dict[str, Any]
    asked: list[str] = field(default_factory=list)
    new_keys: list[str] = field(default_factory=list)
    error: SchemaParseError | None = None


def load_existing_config(
    install_dir: Path,
    *,
    notify: Callable[[str, str, str | None], None] | None = None,
) -> dict[str, dict[str, Any]]:
    """Read `<install>/<module>/config.yaml` for every installed module.

    Directories starting with `_` are installer-owned and skipped. Core values
    appended to other modules' files are not read back as their own keys.
    """

    existing: dict[str, dict[str, Any]] = {}
    if not install_dir.is_dir():
        return existing
    for entry in sorted(install_dir.iterdir()):
        if not entry.is_dir() or entry.name.startswith("_"):
            continue
        config_path = entry / MODULE_CONFIG_NAME
        if not config_path.is_file():
            continue
        try:
            text = config_path.read_text(encoding="utf-8")
            # Core values appended below the marker belong to the core module.
            own_part = text.split(CORE_SECTION_MARKER, 1)[0]
            payload = parse_yaml_text(own_part, source=config_path)
            if payload is not None and not isinstance(payload, dict):
                raise YamlDocumentError(config_path, "document root must be a mapping")
            existing[entry.name] = payload or {}
        except (YamlDocumentError, OSError) as exc:
            if notify is not None:
                notify(EXISTING_CONFIG_UNREADABLE, f"ignoring unreadable config: {exc}", entry.name)
    return existing


def _strip_project_root(item: ConfigItem, value: Any) -> Any:
    if (
        isinstance(value, str)
        and isinstance(item.result, str)
        and item.result.startswith(PROJECT_ROOT_PREFIX)
        and value.startswith(PROJECT_ROOT_PREFIX)
    ):
        return value[len(PROJECT_ROOT_PREFIX):]
    return value


class ConfigCollector:
    def __init__(self, ctx: "RunContext", prompter: Prompter):
        self.ctx = ctx
        self.prompter = prompter
        self._reported_cycles: set[tuple[str, str]] = set()

    def _scope(self, module_id: str, schema: ModuleSchema, batch: dict[str, Any]) -> PlaceholderScope:
        return PlaceholderScope(
            module_id=module_id,
            batch_answers=batch,
            answers=self.ctx.answers,
            collected_config=self.ctx.collected_config,
            schema_defaults=schema.defaults(),
            directory_name=self.ctx.project_dir.name,
        )

    def _resolve_default(self, item: ConfigItem, scope: PlaceholderScope) -> Any:
        def _on_cycle(chain: str) -> None:
            if (item.module_id, chain) in self._reported_cycles:
                return
            self._reported_cycles.add((item.module_id, chain))
            self.ctx.warn(PLACEHOLDER_CYCLE, f"placeholder cycle left unresolved: {chain}", item.module_id)

        return PlaceholderResolver(scope, on_cycle=_on_cycle).resolve(item.default, origin=item.key).value

    def _question_default(self, item: ConfigItem, schema: ModuleSchema, answered: Mapping[str, Any]) -> Any:
        scope = self._scope(item.module_id, schema, dict(answered))
        return _strip_project_root(item, self._resolve_default(item, scope))

    def _default_fn(self, item: ConfigItem, schema: ModuleSchema) -> Callable[[Mapping[str, Any]], Any]:
        def _resolve(answered: Mapping[str, Any]) -> Any:
            return self._question_default(item, schema, answered)

        return _resolve

    def _register(self, module_id: str, values: dict[str, Any]) -> None:
        for key, value in values.items():
            self.ctx.answers[f"{module_id}_{key}"] = value

    def _finish(self, result: CollectionResult, source: ModuleSource) -> CollectionResult:
        custom_values = self._custom_values(source)
        for key, value in custom_values.items():
            result.config.setdefault(key, value)
        self.ctx.collected_config[result.module_id] = result.config
        return result

    def _custom_values(self, source: ModuleSource) -> dict[str, Any]:
        path = source.custom_values_path()
        if source.source_kind != "local-custom" or not path.is_file():
            return {}
        try:
            return load_yaml_mapping(path)
        except YamlDocumentError as exc:
            self.ctx.warn(SCHEMA_PARSE_ERROR, f"ignoring custom values: {exc.detail}", source.code)
            return {}

    def collect(self, source: ModuleSource) -> CollectionResult:
        module_id = source.code
        existing = self.ctx.existing_config.get(module_id)

        try:
            schema = load_schema(source)
        except SchemaParseError as exc:
            carried = dict(existing or {})
            self.ctx.warn(exc.reason_code, f"schema unreadable, keeping existing config: {exc.detail}", module_id)
            self._register(module_id, carried)
            return self._finish(
                CollectionResult(module_id=module_id, mode="schema-error", config=carried, error=exc), source
            )

        if existing is not None:
            new_keys = [key for key in schema.keys() if key not in existing]
            config = dict(existing)
            self._register(module_id, config)
            if not new_keys:
                return self._finish(CollectionResult(module_id=module_id, mode="carried-over", config=config), source)
            items = [item for item in schema.items if item.key in new_keys]
            mode: CollectionMode = "migrated"
        else:
            new_keys = schema.keys()
            config = {}
            items = list(schema.items)
            mode = "fresh"

        self.ctx.collected_config[module_id] = config

        prompted = [item for item in items if not item.is_static]
        asked: list[str] = []
        batch: dict[str, Any] = {}
        if prompted:
            questions = [
                Question(
                    item=item,
                    message=item.prompt or item.key,
                    default=self._question_default(item, schema, {}),
                    default_fn=self._default_fn(item, schema),
                )
                for item in prompted
            ]
            header = schema.header or source.header or source.name
            raw_answers = self.prompter.ask(module_id, header, questions)
            asked = [q.key for q in questions]

            given: dict[str, Any] = {}
            for question in questions:
                if question.key in raw_answers:
                    value = raw_answers[question.key]
                else:
                    value = question.bind(given).default
                error = validate_answer(question.item, value)
                if error is not None:
                    raise ConfigValidationError(f"{question.key}: {error}", module_id=module_id)
                given[question.key] = value
                batch[question.answer_key] = value
                self.ctx.answers[question.answer_key] = value

            for question in questions:
                scope = self._scope(module_id, schema, batch)
                config[question.key] = apply_result_template(
                    question.item.result, batch[question.answer_key], scope
                )

        # Static results may name prompted keys, so they see the finished batch.
        for item in items:
            if not item.is_static:
                continue
            scope = self._scope(module_id, schema, batch)
            value = self._resolve_default(item, scope)
            config[item.key] = apply_result_template(item.result, value, scope)

        # Schema order, then keys the schema no longer declares.
        position = {key: index for index, key in enumerate(schema.keys())}
        ordered = sorted(config.items(), key=lambda kv: position.get(kv[0], len(position)))
        config.clear()
        config.update(ordered)

        result = CollectionResult(module_id=module_id, mode=mode, config=config, asked=asked, new_keys=list(new_keys))
        return self._finish(result, source)
