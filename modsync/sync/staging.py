"""Stage a module's static artifacts for reconciliation.

Staging maps install-relative paths to the bytes that should land there. Files
the installer generates itself (config, compiled agents, sidecars) and
install-time helpers never enter the stage.
"""

from __future__ import annotations

from pathlib import Path
import re

from modsync.infrastructure.hashing import iter_tree_files
from modsync.infrastructure.settings import retarget_folder
from modsync.modules.resolver import AGENT_SUFFIX, SIDECAR_SUFFIX, ModuleSource

SKIPPED_TOP_DIRS = frozenset({"sub-modules", "_module-installer"})
SKIPPED_DIR_NAMES = frozenset({"node_modules", ".deps", "__pycache__"})
SKIPPED_ROOT_FILES = frozenset({"module.yaml", "custom.yaml"})
GENERATED_FILE_NAME = "config.yaml"
WORKFLOW_FILE_NAME = "workflow.yaml"

_WEB_BUNDLE_RE = re.compile(r"^(\s*)web_bundle:")
_LOCALSKIP_RE = re.compile(r'<agent[^>]*\slocalskip="true"[^>]*>')
_BLANK_RUN_RE = re.compile(r"\n\n\n+")


def is_staged(rel: str) -> bool:
    parts = rel.split("/")
    if parts[0] in SKIPPED_TOP_DIRS:
        return False
    if any(part in SKIPPED_DIR_NAMES or part.lower().endswith(SIDECAR_SUFFIX) for part in parts[:-1]):
        return False
    name = parts[-1]
    if len(parts) == 1 and name in SKIPPED_ROOT_FILES:
        return False
    if name == GENERATED_FILE_NAME or name.endswith(AGENT_SUFFIX):
        return False
    return True


def strip_web_bundle(text: str) -> str:
    """Remove a top-level or nested `web_bundle:` block, keeping the rest verbatim."""

    lines = text.split("\n")
    start = None
    indent = 0
    for index, line in enumerate(lines):
        match = _WEB_BUNDLE_RE.match(line)
        if match:
            start = index
            indent = len(match.group(1))
            break
    if start is None:
        return text
    end = len(lines)
    for index in range(start + 1, len(lines)):
        stripped = lines[index].strip()
        if not stripped or stripped.startswith("#"):
            continue
        if len(lines[index]) - len(lines[index].lstrip()) <= indent:
            end = index
            break
    return _BLANK_RUN_RE.sub("\n\n", "\n".join(lines[:start] + lines[end:]))


def _transform(rel: str, payload: bytes, folder: str) -> bytes | None:
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError:
        return payload
    name = rel.rsplit("/", 1)[-1]
    if rel.startswith("agents/") and name.endswith(".md") and _LOCALSKIP_RE.search(text):
        return None
    text = retarget_folder(text, folder)
    if name == WORKFLOW_FILE_NAME:
        text = strip_web_bundle(text)
    return text.encode("utf-8")


def stage_tree(root: Path, target_prefix: str, *, folder: str) -> dict[str, bytes]:
    staged: dict[str, bytes] = {}
    if not root.is_dir():
        return staged
    for path in iter_tree_files(root):
        rel = path.relative_to(root).as_posix()
        if not is_staged(rel):
            continue
        payload = _transform(rel, path.read_bytes(), folder)
        if payload is not None:
            staged[f"{target_prefix}/{rel}"] = payload
    return staged


def stage_module_artifacts(source: ModuleSource, *, folder: str) -> dict[str, bytes]:
    """Return `{install-relative path: bytes}` for the module's own artifacts."""

    return stage_tree(source.artifact_root(), source.code, folder=folder)
