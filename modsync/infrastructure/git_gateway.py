"""Subprocess gateway for fetching remote module sources and their dependencies.

Network transport is delegated to the `git` executable; this module only
decides which commands to run, bounds them with a timeout and converts failures
into `NetworkFetchFailure`.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import shutil
import subprocess
import sys
from typing import Callable, Sequence

from modsync.domain.errors import NetworkFetchFailure

Runner = Callable[..., subprocess.CompletedProcess]


@dataclass(frozen=True)
class CommandResult:
    argv: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def describe(self) -> str:
        if self.timed_out:
            return f"{' '.join(self.argv)} timed out"
        tail = (self.stderr or self.stdout).strip().splitlines()
        return f"{' '.join(self.argv)} exited {self.returncode}" + (f": {tail[-1]}" if tail else "")


def run_command(
    argv: Sequence[str],
    *,
    cwd: Path | None,
    timeout_seconds: int,
    runner: Runner = subprocess.run,
) -> CommandResult:
    try:
        proc = runner(
            list(argv),
            cwd=str(cwd) if cwd is not None else None,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            timeout=timeout_seconds,
            check=False,
        )
    except subprocess.TimeoutExpired:
        return CommandResult(tuple(argv), returncode=-1, stdout="", stderr="", timed_out=True)
    except OSError as exc:
        return CommandResult(tuple(argv), returncode=-1, stdout="", stderr=str(exc))
    return CommandResult(tuple(argv), proc.returncode, proc.stdout or "", proc.stderr or "")


class GitGateway:
    def __init__(self, *, timeout_seconds: int, runner: Runner = subprocess.run):
        self.timeout_seconds = timeout_seconds
        self.runner = runner

    def _run(self, argv: Sequence[str], *, cwd: Path | None = None) -> CommandResult:
        return run_command(argv, cwd=cwd, timeout_seconds=self.timeout_seconds, runner=self.runner)

    def clone(self, url: str, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        result = self._run(["git", "clone", "--depth", "1", url, str(dest)])
        if not result.ok:
            if dest.exists():
                shutil.rmtree(dest, ignore_errors=True)
            raise NetworkFetchFailure(f"clone failed: {result.describe()}")

    def update(self, repo_dir: Path) -> None:
        """Fetch the remote tip and hard-reset the cached clone onto it."""

        fetch = self._run(["git", "fetch", "origin", "--depth", "1"], cwd=repo_dir)
        if not fetch.ok:
            raise NetworkFetchFailure(f"fetch failed: {fetch.describe()}")
        reset = self._run(["git", "reset", "--hard", "origin/HEAD"], cwd=repo_dir)
        if not reset.ok:
            raise NetworkFetchFailure(f"reset failed: {reset.describe()}")


@dataclass(frozen=True)
class DependencyManifestKind:
    manifest: str
    lock_files: tuple[str, ...]
    installed_marker: str
    argv: tuple[str, ...]


DEPENDENCY_MANIFESTS: tuple[DependencyManifestKind, ...] = (
    DependencyManifestKind(
        manifest="package.json",
        lock_files=("package-lock.json",),
        installed_marker="node_modules",
        argv=("npm", "install", "--omit=dev", "--no-audit", "--no-fund", "--no-progress"),
    ),
    DependencyManifestKind(
        manifest="requirements.txt",
        lock_files=(),
        installed_marker=".deps",
        argv=(sys.executable, "-m", "pip", "install", "--quiet", "--target", ".deps", "-r", "requirements.txt"),
    ),
)


def _mtime(path: Path) -> float:
    return path.stat().st_mtime if path.exists() else 0.0


def pending_dependency_installs(root: Path) -> list[DependencyManifestKind]:
    """Dependency manifests whose installed tree is missing or older than the manifest/lock."""

    pending: list[DependencyManifestKind] = []
    for kind in DEPENDENCY_MANIFESTS:
        manifest_path = root / kind.manifest
        if not manifest_path.is_file():
            continue
        marker = root / kind.installed_marker
        if not marker.exists():
            pending.append(kind)
            continue
        newest_input = max([_mtime(manifest_path)] + [_mtime(root / lock) for lock in kind.lock_files])
        if newest_input > _mtime(marker):
            pending.append(kind)
    return pending


def install_dependencies(
    root: Path,
    kind: DependencyManifestKind,
    *,
    timeout_seconds: int,
    runner: Runner = subprocess.run,
) -> CommandResult:
    return run_command(kind.argv, cwd=root, timeout_seconds=timeout_seconds, runner=runner)
