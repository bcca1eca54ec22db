from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from modsync.infrastructure.fs_atomic import atomic_write_text
from modsync.infrastructure.yaml_io import dump_yaml
from modsync.modules.dependency_order import CORE_MODULE_ID

CORE_SECTION_MARKER = "# Core Configuration Values"


def render_module_config(
    module_id: str,
    values: Mapping[str, Any],
    *,
    core_values: Mapping[str, Any] | None,
    tool_version: str,
) -> str:
    lines = [
        f"# {module_id.upper()} Module Configuration",
        "# Generated by modsync installer",
        f"# Version: {tool_version}",
        "",
    ]
    text = "\n".join(lines) + "\n"
    if values:
        text += dump_yaml(dict(values))
    if module_id != CORE_MODULE_ID and core_values:
        extra = {k: v for k, v in core_values.items() if k not in values}
        if extra:
            text += f"\n{CORE_SECTION_MARKER}\n" + dump_yaml(extra)
    return text


def write_module_config(
    install_dir: Path,
    module_id: str,
    values: Mapping[str, Any],
    *,
    core_values: Mapping[str, Any] | None,
    tool_version: str,
    dry_run: bool = False,
) -> bool:
    """Write `<install>/<module>/config.yaml`; returns True when the content changed."""

    target = install_dir / module_id / "config.yaml"
    text = render_module_config(module_id, values, core_values=core_values, tool_version=tool_version)
    if target.is_file() and target.read_text(encoding="utf-8") == text:
        return False
    if not dry_run:
        atomic_write_text(target, text)
    return True
