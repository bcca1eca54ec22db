"""Run Summary Writer - persists one JSON summary per install run."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any, Mapping

from modsync.infrastructure.fs_atomic import atomic_write_json
from modsync.infrastructure.settings import CONFIG_DIR_NAME

RUN_SUMMARY_SCHEMA = "modsync.run-summary.v1"
RUNS_DIR_NAME = "runs"


def compute_run_id(*, command: str, started_at: str, modules: list[str]) -> str:
    """Compute deterministic run ID from command, start time and module selection."""
    payload = json.dumps(
        {"command": command, "started_at": started_at, "modules": sorted(modules)},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def build_run_summary(
    *,
    run_id: str,
    command: str,
    started_at: str,
    finished_at: str,
    tool_version: str,
    project_dir: Path,
    degraded: bool,
    dry_run: bool,
    outcomes: list[Mapping[str, Any]],
    notices: list[Mapping[str, Any]],
) -> dict[str, Any]:
    counts: dict[str, int] = {}
    for outcome in outcomes:
        status = str(outcome.get("status", "unknown"))
        counts[status] = counts.get(status, 0) + 1
    return {
        "schema": RUN_SUMMARY_SCHEMA,
        "run_id": run_id,
        "command": command,
        "tool_version": tool_version,
        "started_at": started_at,
        "finished_at": finished_at,
        "project_dir": str(project_dir),
        "dry_run": dry_run,
        "manifest_degraded": degraded,
        "counts": dict(sorted(counts.items())),
        "modules": list(outcomes),
        "notices": list(notices),
    }


def write_run_summary(install_dir: Path, summary: Mapping[str, Any]) -> Path:
    target = install_dir / CONFIG_DIR_NAME / RUNS_DIR_NAME / f"{summary['run_id']}.json"
    atomic_write_json(target, dict(summary))
    return target
