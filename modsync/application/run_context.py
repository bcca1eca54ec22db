"""Per-run state threaded through every installer component."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Literal

from modsync.domain.reason_codes import FAILURE_CODES, REASON_CODE_NONE
from modsync.infrastructure.console import Console
from modsync.infrastructure.manifest_store import Manifest

ModuleStatus = Literal["installed", "updated", "skipped", "failed"]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class Notice:
    reason_code: str
    message: str
    module_id: str | None = None
    level: Literal["warning", "info"] = "warning"

    def to_document(self) -> dict[str, Any]:
        return {
            "reason_code": self.reason_code,
            "module": self.module_id,
            "level": self.level,
            "message": self.message,
        }


@dataclass
class ModuleOutcome:
    module_id: str
    status: ModuleStatus
    version: str = "unknown"
    source_kind: str = "unknown"
    reason_code: str = REASON_CODE_NONE
    detail: str = ""
    config_mode: str = ""
    written: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    preserved: list[str] = field(default_factory=list)
    vendored: list[str] = field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        return {
            "module": self.module_id,
            "status": self.status,
            "version": self.version,
            "source": self.source_kind,
            "reason_code": self.reason_code,
            "detail": self.detail,
            "config_mode": self.config_mode,
            "written": sorted(self.written),
            "skipped": sorted(self.skipped),
            "preserved": sorted(self.preserved),
            "vendored": list(self.vendored),
        }


@dataclass
class RunContext:
    project_dir: Path
    install_dir: Path
    folder_name: str
    is_update: bool = False
    dry_run: bool = False
    console: Console = field(default_factory=Console)
    now: Callable[[], str] = utc_now
    answers: dict[str, Any] = field(default_factory=dict)
    collected_config: dict[str, dict[str, Any]] = field(default_factory=dict)
    existing_config: dict[str, dict[str, Any]] = field(default_factory=dict)
    prior_manifest: Manifest | None = None
    manifest_degraded: bool = False
    refreshed_sources: set[str] = field(default_factory=set)
    notices: list[Notice] = field(default_factory=list)
    outcomes: list[ModuleOutcome] = field(default_factory=list)

    def warn(self, reason_code: str, message: str, module_id: str | None = None) -> None:
        self.notices.append(Notice(reason_code=reason_code, message=message, module_id=module_id))
        prefix = f"[{module_id}] " if module_id else ""
        self.console.warn(f"{reason_code}: {prefix}{message}")

    def info(self, reason_code: str, message: str, module_id: str | None = None) -> None:
        self.notices.append(Notice(reason_code=reason_code, message=message, module_id=module_id, level="info"))
        prefix = f"[{module_id}] " if module_id else ""
        self.console.note(f"{prefix}{message}")

    def failed(self) -> list[ModuleOutcome]:
        """Outcomes that make the run exit non-zero, including skips caused by an error."""
        return [o for o in self.outcomes if o.status == "failed" or o.reason_code in FAILURE_CODES]
