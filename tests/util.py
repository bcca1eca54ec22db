from __future__ import annotations

import hashlib
import os
import subprocess
import sys
from pathlib import Path
from typing import Any

import yaml

from modsync.infrastructure.settings import InstallerSettings, resolve_settings

REPO_ROOT = Path(__file__).resolve().parents[1]
FIXED_NOW = "2026-02-19T12:00:00+00:00"


def run(cmd: list[str], *, env: dict[str, str] | None = None, cwd: Path | None = None) -> subprocess.CompletedProcess:
    e = os.environ.copy()
    if env:
        e.update(env)
    return subprocess.run(
        cmd,
        cwd=str(cwd or REPO_ROOT),
        env=e,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        check=False,
    )


def run_install(args: list[str], *, env: dict[str, str] | None = None) -> subprocess.CompletedProcess:
    # Always use the current interpreter (matrix python-version).
    return run([sys.executable, "-X", "utf8", "install.py", *args], env=env)


def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def sha256_file(p: Path) -> str:
    h = hashlib.sha256()
    with p.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def write_yaml_file(path: Path, doc: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(doc, sort_keys=False), encoding="utf-8")
    return path


def write_module(
    root: Path,
    code: str,
    *,
    schema: dict[str, Any] | str | None = None,
    agents: dict[str, Any] | None = None,
    files: dict[str, str] | None = None,
) -> Path:
    """Create a module source tree under `root/<code>`."""

    module_root = root / code
    module_root.mkdir(parents=True, exist_ok=True)
    if isinstance(schema, str):
        (module_root / "module.yaml").write_text(schema, encoding="utf-8")
    else:
        doc = {"code": code, "name": code.upper(), "version": "1.0.0"}
        doc.update(schema or {})
        write_yaml_file(module_root / "module.yaml", doc)
    for name, agent in (agents or {}).items():
        target = module_root / "agents" / f"{name}.agent.yaml"
        if isinstance(agent, str):
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(agent, encoding="utf-8")
        else:
            write_yaml_file(target, agent)
    for rel, text in (files or {}).items():
        target = module_root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
    return module_root


def agent_doc(name: str, *, menu: list[dict] | None = None, **extra: Any) -> dict[str, Any]:
    agent: dict[str, Any] = {
        "metadata": {"name": name.title(), "title": f"{name.title()} Agent", "icon": "🧪"},
        "persona": {
            "role": "Tester",
            "identity": "Checks things.",
            "communication_style": "Terse, in {communication_language}.",
            "principles": ["Be exact."],
        },
        "menu": menu or [],
    }
    agent.update(extra)
    return {"agent": agent}


CORE_SCHEMA: dict[str, Any] = {
    "header": "Core Configuration",
    "user_name": {"prompt": "Your name?", "default": "User", "result": "{value}"},
    "communication_language": {"prompt": "Language?", "default": "English", "result": "{value}"},
    "output_folder": {
        "prompt": "Output folder?",
        "default": "docs-out",
        "result": "{project-root}/{value}",
    },
}


def write_core(builtin_dir: Path, *, extra_schema: dict[str, Any] | None = None) -> Path:
    schema = dict(CORE_SCHEMA)
    schema.update(extra_schema or {})
    root = write_module(
        builtin_dir,
        "core",
        schema=schema,
        agents={"helper": agent_doc("helper")},
        files={
            "workflows/party-mode/workflow.md": "# Party Mode\n",
            "workflows/review/workflow.yaml": (
                "name: review\n"
                'config_source: "{project-root}/_modsync/core/config.yaml"\n'
                "instructions: instructions.md\n"
            ),
            "workflows/review/instructions.md": "Review the work.\n",
            "agents/helper-sidecar/notes.md": "# Notes\n",
        },
    )
    return root


def make_settings(tmp_path: Path, **overrides: Any) -> InstallerSettings:
    params: dict[str, Any] = {
        "project_dir": tmp_path / "project",
        "builtin_dir": tmp_path / "builtin",
        "cache_dir": tmp_path / "cache",
        "env": {},
    }
    params.update(overrides)
    params["project_dir"].mkdir(parents=True, exist_ok=True)
    return resolve_settings(**params)
