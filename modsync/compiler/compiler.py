"""Agent compilation: base definition + overlay + answers -> markdown document.

Compilation is pure with respect to the install tree: it reads sources and
overlays but never writes. The orchestrator hands the resulting documents to
the reconciler.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from modsync.compiler.overlay import Overlay, load_overlay, merge_overlay, overlay_rel_path
from modsync.compiler.xml_render import render_agent_document
from modsync.domain.errors import CompileError
from modsync.domain.placeholders import substitute_mapping
from modsync.infrastructure.settings import retarget_folder
from modsync.infrastructure.yaml_io import YamlDocumentError, load_yaml
from modsync.modules.resolver import AGENT_SUFFIX, SIDECAR_SUFFIX, ModuleSource


@dataclass(frozen=True)
class CompiledDocument:
    text: str
    metadata: dict[str, Any]
    customized_fields: tuple[str, ...] = ()


@dataclass(frozen=True)
class CompiledAgent:
    agent_name: str
    output_rel_path: str
    overlay_rel_path: str
    document: CompiledDocument
    sidecar_dir: Path | None = None


@dataclass
class ModuleCompilation:
    module_id: str
    agents: list[CompiledAgent] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def install_config_defaults(agent: Mapping[str, Any]) -> dict[str, Any]:
    install_config = agent.get("install_config")
    if not isinstance(install_config, Mapping):
        return {}
    defaults: dict[str, Any] = {}
    for question in install_config.get("questions") or []:
        if isinstance(question, Mapping) and question.get("var") and "default" in question:
            defaults[str(question["var"])] = question["default"]
    return defaults


def _substitute_tree(value: Any, values: Mapping[str, Any]) -> Any:
    if isinstance(value, str):
        return substitute_mapping(value, values)
    if isinstance(value, list):
        return [_substitute_tree(v, values) for v in value]
    if isinstance(value, dict):
        return {k: _substitute_tree(v, values) for k, v in value.items()}
    return value


def is_local_skip(doc: Mapping[str, Any]) -> bool:
    agent = doc.get("agent")
    if not isinstance(agent, Mapping):
        return False
    metadata = agent.get("metadata")
    return isinstance(metadata, Mapping) and metadata.get("localskip") is True


def compile_agent(
    base_doc: Any,
    overlay: Overlay | None,
    answers: Mapping[str, Any],
    *,
    agent_name: str,
    module_id: str,
    folder: str,
    agent_id: str | None = None,
) -> CompiledDocument:
    """Compile one agent definition.

    Placeholders resolve from `answers` first, then from the agent's own
    `install_config` question defaults; unknown keys stay verbatim.
    """

    if not isinstance(base_doc, dict) or not isinstance(base_doc.get("agent"), dict):
        raise CompileError(f"agent {agent_name!r}: definition must contain an 'agent' mapping", module_id=module_id)
    metadata = base_doc["agent"].get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        raise CompileError(f"agent {agent_name!r}: 'agent.metadata' must be a mapping", module_id=module_id)

    merged = merge_overlay(base_doc, overlay)
    agent = merged["agent"]
    values = install_config_defaults(agent)
    values.update(answers)
    agent.pop("install_config", None)
    agent = _substitute_tree(agent, values)

    rendered = render_agent_document(
        agent,
        agent_name=agent_name,
        agent_id=agent_id or f"{{project-root}}/{folder}/{module_id}/agents/{agent_name}.md",
        module_id=module_id,
        folder=folder,
    )
    return CompiledDocument(
        text=retarget_folder(rendered, folder),
        metadata=dict(agent.get("metadata") or {}),
        customized_fields=tuple(overlay.customized_fields) if overlay is not None else (),
    )


def compile_module_agents(
    source: ModuleSource,
    *,
    install_dir: Path,
    answers: Mapping[str, Any],
    folder: str,
) -> ModuleCompilation:
    """Compile every agent of a module in memory.

    Raises CompileError on the first agent that cannot be compiled so the
    caller can skip the module as a whole.
    """

    result = ModuleCompilation(module_id=source.code)
    agents_dir = source.template_path()
    sidecar_dirs = set(source.sidecar_dirs())
    for definition in source.agent_definitions():
        agent_name = definition.name[: -len(AGENT_SUFFIX)]
        try:
            base_doc = load_yaml(definition)
        except YamlDocumentError as exc:
            raise CompileError(f"agent {agent_name!r}: {exc.detail}", module_id=source.code) from exc
        if isinstance(base_doc, dict) and is_local_skip(base_doc):
            result.skipped.append(agent_name)
            continue

        overlay_rel = overlay_rel_path(source.code, agent_name)
        try:
            overlay = load_overlay(install_dir / overlay_rel)
        except YamlDocumentError as exc:
            raise CompileError(f"overlay {overlay_rel}: {exc.detail}", module_id=source.code) from exc

        rel_dir = definition.parent.relative_to(agents_dir).as_posix()
        output_rel = "/".join(
            part for part in (source.code, "agents", "" if rel_dir == "." else rel_dir, f"{agent_name}.md") if part
        )
        document = compile_agent(
            base_doc,
            overlay,
            answers,
            agent_name=agent_name,
            module_id=source.code,
            folder=folder,
            agent_id=f"{{project-root}}/{folder}/{output_rel}",
        )
        sidecar = definition.parent / f"{agent_name}{SIDECAR_SUFFIX}"
        result.agents.append(
            CompiledAgent(
                agent_name=agent_name,
                output_rel_path=output_rel,
                overlay_rel_path=overlay_rel,
                document=document,
                sidecar_dir=sidecar if sidecar in sidecar_dirs else None,
            )
        )
    return result
