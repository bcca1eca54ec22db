"""Applies reconcile decisions to the install tree.

All paths are POSIX-style and relative to the install directory so manifest
keys stay stable when the project moves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from modsync.domain.errors import WriteFailed
from modsync.domain.reconcile import PRESERVE_USER_EDIT, SKIP, WRITE, ReconcileDecision, decide
from modsync.infrastructure.fs_atomic import atomic_write_bytes
from modsync.infrastructure.hashing import iter_tree_files, sha256_bytes, sha256_file_or_none


@dataclass(frozen=True)
class FileOutcome:
    path: str
    decision: ReconcileDecision

    @property
    def action(self) -> str:
        return self.decision.action


@dataclass
class FileReconciler:
    install_dir: Path
    tracked: Mapping[str, str]
    is_update: bool
    dry_run: bool = False
    module_id: str | None = None
    outcomes: list[FileOutcome] = field(default_factory=list)
    # Hashes the manifest should carry for every path this reconciler saw.
    hashes: dict[str, str] = field(default_factory=dict)

    def sync_bytes(self, rel_path: str, payload: bytes) -> FileOutcome:
        target = self.install_dir / rel_path
        decision = decide(
            tracked_hash=self.tracked.get(rel_path),
            disk_hash=sha256_file_or_none(target),
            new_hash=sha256_bytes(payload),
            is_update=self.is_update,
        )
        if decision.action == WRITE and not self.dry_run:
            try:
                atomic_write_bytes(target, payload)
            except OSError as exc:
                raise WriteFailed(f"{rel_path}: {exc}", module_id=self.module_id) from exc

        if decision.record_hash is not None:
            self.hashes[rel_path] = decision.record_hash
        elif rel_path in self.tracked:
            self.hashes[rel_path] = self.tracked[rel_path]

        outcome = FileOutcome(path=rel_path, decision=decision)
        self.outcomes.append(outcome)
        return outcome

    def sync_text(self, rel_path: str, text: str) -> FileOutcome:
        return self.sync_bytes(rel_path, text.encode("utf-8"))

    def sync_tree(self, source_dir: Path, rel_root: str) -> list[FileOutcome]:
        """Reconcile every file below `source_dir` into `<install>/<rel_root>/`."""

        out: list[FileOutcome] = []
        for path in iter_tree_files(source_dir):
            rel = f"{rel_root.rstrip('/')}/{path.relative_to(source_dir).as_posix()}"
            out.append(self.sync_bytes(rel, path.read_bytes()))
        return out

    def _paths(self, action: str) -> list[str]:
        return [o.path for o in self.outcomes if o.action == action]

    @property
    def written(self) -> list[str]:
        return self._paths(WRITE)

    @property
    def skipped(self) -> list[str]:
        return self._paths(SKIP)

    @property
    def preserved(self) -> list[str]:
        return self._paths(PRESERVE_USER_EDIT)
