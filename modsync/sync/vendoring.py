"""Cross-module vendoring of workflow artifacts.

A consumer agent menu item may declare `workflow-install`: the artifact named
by its `workflow` (or `exec`) path in another module is copied into the
consumer at the install path, and every `config_source` reference inside the
copy is rewritten to the consumer's own config.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Any, Callable, Iterator

from modsync.domain.errors import SourceUnavailable
from modsync.domain.reason_codes import VENDOR_SOURCE_MISSING
from modsync.infrastructure.yaml_io import YamlDocumentError, load_yaml
from modsync.modules.resolver import ModuleSource, Notify
from modsync.sync.staging import stage_tree

INSTALL_KEY = "workflow-install"
ARTIFACT_PATH_RE = re.compile(r"\{project-root\}/[^/]+/([^/]+)/(.+)")
ENTRY_FILE_RE = re.compile(r"/workflow\.(yaml|md)$")
CONFIG_SOURCE_RE = re.compile(r"""config_source:\s*["']?\{project-root\}/[^/]+/[^/]+/config\.yaml["']?""")


@dataclass(frozen=True)
class VendorRequest:
    agent: str
    origin_module: str
    origin_rel: str
    target_rel: str


@dataclass
class VendoringResult:
    staged: dict[str, bytes] = field(default_factory=dict)
    vendored: list[VendorRequest] = field(default_factory=list)


def rewrite_config_source(text: str, *, folder: str, consumer: str) -> str:
    replacement = f'config_source: "{{project-root}}/{folder}/{consumer}/config.yaml"'
    return CONFIG_SOURCE_RE.sub(replacement, text)


def parse_artifact_path(raw: Any) -> tuple[str, str] | None:
    """Split `{project-root}/<folder>/<module>/<rel>` into (module, rel dir)."""

    if not isinstance(raw, str):
        return None
    match = ARTIFACT_PATH_RE.fullmatch(raw.strip())
    if match is None:
        return None
    return match.group(1), ENTRY_FILE_RE.sub("", match.group(2))


def _menu_items(source: ModuleSource) -> Iterator[tuple[str, dict[str, Any]]]:
    for definition in source.agent_definitions():
        try:
            doc = load_yaml(definition)
        except YamlDocumentError:
            # Reported by the compiler for the same file.
            continue
        agent = doc.get("agent") if isinstance(doc, dict) else None
        menu = agent.get("menu") if isinstance(agent, dict) else None
        for item in menu or []:
            if isinstance(item, dict) and item.get(INSTALL_KEY):
                yield definition.name, item


def vendor_requests(consumer: ModuleSource, *, notify: Notify) -> list[VendorRequest]:
    requests: list[VendorRequest] = []
    for agent, item in _menu_items(consumer):
        origin = parse_artifact_path(item.get("workflow") or item.get("exec"))
        target = parse_artifact_path(item.get(INSTALL_KEY))
        if origin is None or target is None:
            notify(
                VENDOR_SOURCE_MISSING,
                f"{agent}: cannot parse vendoring paths {item.get('workflow') or item.get('exec')!r} "
                f"-> {item.get(INSTALL_KEY)!r}",
                consumer.code,
            )
            continue
        requests.append(
            VendorRequest(agent=agent, origin_module=origin[0], origin_rel=origin[1], target_rel=target[1])
        )
    return requests


def vendor_cross_module(
    consumer: ModuleSource,
    resolve: Callable[[str], ModuleSource],
    *,
    folder: str,
    notify: Notify,
) -> VendoringResult:
    """Stage vendored artifacts for `consumer`; missing origins are warned and skipped."""

    result = VendoringResult()
    for request in vendor_requests(consumer, notify=notify):
        try:
            origin = resolve(request.origin_module)
        except SourceUnavailable as exc:
            notify(VENDOR_SOURCE_MISSING, f"origin module unavailable: {exc.detail}", consumer.code)
            continue
        origin_path = origin.artifact_root() / request.origin_rel
        prefix = f"{consumer.code}/{request.target_rel}"
        if origin_path.is_dir():
            staged = stage_tree(origin_path, prefix, folder=folder)
        elif origin_path.is_file():
            staged = {prefix: origin_path.read_bytes()}
        else:
            notify(
                VENDOR_SOURCE_MISSING,
                f"{request.origin_module}/{request.origin_rel} not found in {origin.source_kind} source",
                consumer.code,
            )
            continue
        for rel, payload in staged.items():
            try:
                text = payload.decode("utf-8")
            except UnicodeDecodeError:
                result.staged[rel] = payload
                continue
            result.staged[rel] = rewrite_config_source(text, folder=folder, consumer=consumer.code).encode("utf-8")
        result.vendored.append(request)
    return result
