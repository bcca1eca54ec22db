"""Install orchestration: sequences every component per module.

Per module, in dependency order:
1) resolve the module source
2) collect its configuration
3) stage vendored artifacts, then the module's own artifacts
4) compile agents in memory
5) reconcile staged files, compiled agents, sidecars and overlays
6) write the module config
7) record the module in the manifest and save it

A failing module is recorded and skipped; the run continues with the next one.
Nothing is written for a module whose compilation failed.
"""

from __future__ import annotations

import subprocess
from typing import Any, Callable, Literal

from modsync.application.run_context import ModuleOutcome, RunContext, utc_now
from modsync.compiler.compiler import ModuleCompilation, compile_module_agents
from modsync.compiler.overlay import scaffold_overlay_text
from modsync.config.collector import CollectionResult, ConfigCollector, load_existing_config
from modsync.config.prompter import Prompter
from modsync.config.writer import write_module_config
from modsync.domain.errors import InstallError, SourceUnavailable
from modsync.domain.reason_codes import (
    MANIFEST_DEGRADED,
    REASON_CODE_NONE,
    WRITE_CONFLICT,
)
from modsync.infrastructure.console import Console
from modsync.infrastructure.custom_cache import CustomModuleCache
from modsync.infrastructure.git_gateway import GitGateway, Runner
from modsync.infrastructure.hashing import sha256_file_or_none
from modsync.infrastructure.manifest_store import Manifest, ManifestStore, ModuleRecord
from modsync.infrastructure.run_summary_writer import build_run_summary, compute_run_id, write_run_summary
from modsync.infrastructure.settings import MEMORY_DIR_NAME, InstallerSettings
from modsync.modules.dependency_order import CORE_MODULE_ID, expand_selection, order_modules
from modsync.modules.registry import load_registry
from modsync.modules.resolver import SIDECAR_SUFFIX, ModuleSource, ModuleSourceResolver
from modsync.sync.reconciler import FileReconciler
from modsync.sync.staging import stage_module_artifacts
from modsync.sync.vendoring import vendor_cross_module
from modsync.version import VERSION

RunMode = Literal["install", "quick-update", "recompile"]


def sidecar_rel_root(agent_name: str) -> str:
    return f"{MEMORY_DIR_NAME}/{agent_name}{SIDECAR_SUFFIX}"


class InstallOrchestrator:
    def __init__(
        self,
        settings: InstallerSettings,
        *,
        prompter: Prompter,
        console: Console | None = None,
        now: Callable[[], str] = utc_now,
        runner: Runner = subprocess.run,
    ):
        self.settings = settings
        self.prompter = prompter
        self.console = console or Console(quiet=settings.quiet)
        self.now = now
        self.runner = runner
        self.store = ManifestStore(settings.install_dir)

    # -- run setup -----------------------------------------------------------

    def build_context(self) -> RunContext:
        settings = self.settings
        ctx = RunContext(
            project_dir=settings.project_dir,
            install_dir=settings.install_dir,
            folder_name=settings.folder_name,
            dry_run=settings.dry_run,
            console=self.console,
            now=self.now,
        )
        loaded = self.store.load()
        ctx.prior_manifest = loaded.manifest
        ctx.manifest_degraded = loaded.degraded
        ctx.is_update = loaded.manifest is not None or loaded.degraded
        if loaded.degraded:
            ctx.warn(MANIFEST_DEGRADED, f"{loaded.detail}; untracked files will be adopted")
        ctx.existing_config = load_existing_config(settings.install_dir, notify=ctx.warn)
        return ctx

    def build_resolver(self, ctx: RunContext) -> ModuleSourceResolver:
        settings = self.settings
        return ModuleSourceResolver(
            builtin_dir=settings.builtin_dir,
            cache_dir=settings.cache_dir,
            registry=load_registry(settings.registry_path),
            custom_paths=settings.custom_paths,
            custom_cache=CustomModuleCache(settings.install_dir, now=self.now),
            git=GitGateway(timeout_seconds=settings.network_timeout_seconds, runner=self.runner),
            refreshed=ctx.refreshed_sources,
            notify=ctx.warn,
            dependency_timeout_seconds=settings.dependency_timeout_seconds,
            runner=self.runner,
        )

    def installed_module_ids(self, ctx: RunContext) -> list[str]:
        if ctx.prior_manifest is not None:
            return ctx.prior_manifest.module_ids()
        return sorted(ctx.existing_config)

    def select_modules(self, ctx: RunContext, resolver: ModuleSourceResolver, mode: RunMode) -> list[str]:
        """Return the module ids to process, in install order.

        Raises ValueError when nothing is installed for an update mode, or when
        the declared dependencies form a cycle.
        """

        installed = self.installed_module_ids(ctx)
        if mode != "install":
            if not installed:
                raise ValueError(f"no installation found in {ctx.install_dir}; run install first")
            selected = list(installed)
        else:
            selected = [CORE_MODULE_ID] if CORE_MODULE_ID in resolver.builtin_ids() else []
            selected += [m for m in installed if m not in selected]
            selected += [m for m in self.settings.selected_modules if m not in selected]

        def _dependencies(module_id: str) -> tuple[str, ...]:
            try:
                return resolver.resolve(module_id).dependencies
            except SourceUnavailable:
                # Reported when the module itself is processed.
                return ()

        expanded = expand_selection(selected, _dependencies)
        return order_modules({m: _dependencies(m) for m in expanded})

    # -- per module ----------------------------------------------------------

    def _new_manifest(self, ctx: RunContext) -> Manifest:
        if ctx.prior_manifest is not None:
            return Manifest.from_document(ctx.prior_manifest.to_document())
        stamp = ctx.now()
        return Manifest(version=VERSION, install_date=stamp, last_modified=stamp)

    def _carry_existing(self, ctx: RunContext, module_id: str) -> dict[str, Any]:
        config = dict(ctx.existing_config.get(module_id, {}))
        for key, value in config.items():
            ctx.answers[f"{module_id}_{key}"] = value
        ctx.collected_config[module_id] = config
        return config

    def _compile_values(self, ctx: RunContext, module_id: str) -> dict[str, Any]:
        values: dict[str, Any] = dict(ctx.collected_config.get(CORE_MODULE_ID, {}))
        values.update(ctx.collected_config.get(module_id, {}))
        return values

    def _cache_custom_source(self, ctx: RunContext, source: ModuleSource) -> None:
        if source.source_kind != "local-custom" or source.source_path is None:
            return
        cache = CustomModuleCache(ctx.install_dir, now=ctx.now)
        if source.root.resolve() == (cache.cache_dir / source.code).resolve():
            return
        cache.cache_module(source.code, source.root, dry_run=ctx.dry_run)

    def _reconcile_overlays(
        self, ctx: RunContext, manifest: Manifest, compilation: ModuleCompilation, outcome: ModuleOutcome
    ) -> dict[str, str]:
        reconciler = FileReconciler(
            ctx.install_dir,
            tracked=manifest.customization_files,
            is_update=ctx.is_update,
            dry_run=ctx.dry_run,
            module_id=compilation.module_id,
        )
        scaffold = scaffold_overlay_text()
        for agent in compilation.agents:
            target = ctx.install_dir / agent.overlay_rel_path
            if target.exists() and agent.overlay_rel_path not in manifest.customization_files:
                # An overlay the installer never recorded belongs to the user.
                continue
            result = reconciler.sync_text(agent.overlay_rel_path, scaffold)
            if result.action == "write":
                outcome.written.append(agent.overlay_rel_path)
        return reconciler.hashes

    def _record_module(
        self,
        ctx: RunContext,
        manifest: Manifest,
        source: ModuleSource,
        changed: bool,
    ) -> None:
        stamp = ctx.now()
        prior = manifest.module_record(source.code)
        schema_hash = sha256_file_or_none(source.schema_path())
        record = ModuleRecord(
            id=source.code,
            version=source.version,
            source=source.source_kind,
            install_date=prior.install_date if prior and prior.install_date else stamp,
            last_updated=prior.last_updated if prior and prior.last_updated else stamp,
            schema_hash=schema_hash,
            repo_url=source.repo_url,
            source_path=source.source_path or (prior.source_path if prior else None),
        )
        if prior is None or prior.to_document() != record.to_document():
            changed = True
        if changed:
            record.last_updated = stamp
            manifest.version = VERSION
            manifest.last_modified = stamp
        manifest.upsert_module(record)

    def process_module(
        self,
        ctx: RunContext,
        resolver: ModuleSourceResolver,
        module_id: str,
        manifest: Manifest,
        mode: RunMode,
    ) -> ModuleOutcome:
        console = ctx.console
        prior = manifest.module_record(module_id)
        outcome = ModuleOutcome(module_id=module_id, status="installed" if prior is None else "updated")
        console.section(f"📦 {module_id}")

        source = resolver.resolve(module_id)
        outcome.version = source.version
        outcome.source_kind = source.source_kind
        self._cache_custom_source(ctx, source)

        if mode == "recompile":
            config = self._carry_existing(ctx, module_id)
            outcome.config_mode = "carried-over"
        else:
            collected: CollectionResult = ConfigCollector(ctx, self.prompter).collect(source)
            config = collected.config
            outcome.config_mode = collected.mode
            if collected.error is not None:
                outcome.status = "skipped"
                outcome.reason_code = collected.error.reason_code
                outcome.detail = collected.error.detail
                console.skip(f"{module_id}: schema unreadable, existing config kept")
                return outcome

        staged: dict[str, bytes] = {}
        if mode != "recompile":
            vendored = vendor_cross_module(source, resolver.resolve, folder=ctx.folder_name, notify=ctx.warn)
            staged.update(vendored.staged)
            outcome.vendored = [
                f"{r.origin_module}/{r.origin_rel} -> {module_id}/{r.target_rel}" for r in vendored.vendored
            ]
            # The module's own files win over vendored copies at the same path.
            staged.update(stage_module_artifacts(source, folder=ctx.folder_name))

        compilation = compile_module_agents(
            source,
            install_dir=ctx.install_dir,
            answers=self._compile_values(ctx, module_id),
            folder=ctx.folder_name,
        )
        for agent_name in compilation.skipped:
            console.skip(f"{agent_name}: local-only agent not compiled")

        reconciler = FileReconciler(
            ctx.install_dir,
            tracked=manifest.tracked_files,
            is_update=ctx.is_update,
            dry_run=ctx.dry_run,
            module_id=module_id,
        )
        for rel in sorted(staged):
            reconciler.sync_bytes(rel, staged[rel])
        for agent in compilation.agents:
            reconciler.sync_text(agent.output_rel_path, agent.document.text)
            if agent.sidecar_dir is not None:
                reconciler.sync_tree(agent.sidecar_dir, sidecar_rel_root(agent.agent_name))
        overlay_hashes = self._reconcile_overlays(ctx, manifest, compilation, outcome)

        outcome.written.extend(reconciler.written)
        outcome.skipped.extend(reconciler.skipped)
        outcome.preserved.extend(reconciler.preserved)
        for path in reconciler.preserved:
            ctx.info(WRITE_CONFLICT, f"kept user edits in {path}", module_id)

        if mode != "recompile":
            core_values = ctx.collected_config.get(CORE_MODULE_ID)
            if write_module_config(
                ctx.install_dir,
                module_id,
                config,
                core_values=core_values,
                tool_version=VERSION,
                dry_run=ctx.dry_run,
            ):
                outcome.written.append(f"{module_id}/config.yaml")
            prefixes = [module_id] + [sidecar_rel_root(a.agent_name) for a in compilation.agents]
        else:
            prefixes = []

        before = manifest.to_document()
        manifest.replace_tracked(prefixes, reconciler.hashes)
        manifest.merge_customizations(overlay_hashes)
        changed = bool(outcome.written) or manifest.to_document() != before
        self._record_module(ctx, manifest, source, changed)

        if prior is not None and not outcome.written:
            outcome.status = "skipped"
            outcome.detail = "already current"
        for path in outcome.written:
            console.ok(f"{path} ({'planned' if ctx.dry_run else 'written'})")
        if not outcome.written and not outcome.preserved:
            console.skip(f"{module_id} already current ({len(outcome.skipped)} files)")
        return outcome

    # -- run -----------------------------------------------------------------

    def run(self, mode: RunMode = "install") -> RunContext:
        """Process every selected module; PromptAborted and KeyboardInterrupt propagate."""

        ctx = self.build_context()
        started_at = ctx.now()
        resolver = self.build_resolver(ctx)
        module_ids = self.select_modules(ctx, resolver, mode)
        manifest = self._new_manifest(ctx)

        console = ctx.console
        console.info(f"📁 Install dir: {ctx.install_dir}")
        console.info(f"📋 Modules: {', '.join(module_ids) if module_ids else '(none)'}")
        console.info(f"Mode: {mode.upper()} | {'UPDATE' if ctx.is_update else 'FRESH'} | {'DRY-RUN' if ctx.dry_run else 'LIVE'}")

        for module_id in module_ids:
            try:
                outcome = self.process_module(ctx, resolver, module_id, manifest, mode)
            except SourceUnavailable as exc:
                # Nothing of the module was touched; any prior install stays as it was.
                outcome = ModuleOutcome(
                    module_id=module_id,
                    status="skipped",
                    reason_code=exc.reason_code,
                    detail=exc.detail,
                )
                ctx.warn(exc.reason_code, f"module skipped, prior install kept: {exc.detail}", module_id)
            except InstallError as exc:
                outcome = ModuleOutcome(
                    module_id=module_id,
                    status="failed",
                    reason_code=exc.reason_code,
                    detail=exc.detail,
                )
                console.error(str(exc) if exc.module_id else f"{exc.reason_code}: [{module_id}] {exc.detail}")
            ctx.outcomes.append(outcome)
            if outcome.status != "failed" and not ctx.dry_run:
                if self.store.save(manifest):
                    console.info(f"🧾 Manifest updated: {self.store.path.name}")

        self.finish(ctx, command=mode, started_at=started_at, module_ids=module_ids)
        return ctx

    def finish(self, ctx: RunContext, *, command: str, started_at: str, module_ids: list[str]) -> None:
        summary = build_run_summary(
            run_id=compute_run_id(command=command, started_at=started_at, modules=module_ids),
            command=command,
            started_at=started_at,
            finished_at=ctx.now(),
            tool_version=VERSION,
            project_dir=ctx.project_dir,
            degraded=ctx.manifest_degraded,
            dry_run=ctx.dry_run,
            outcomes=[o.to_document() for o in ctx.outcomes],
            notices=[n.to_document() for n in ctx.notices],
        )
        print_summary(ctx)
        if not ctx.dry_run and ctx.outcomes:
            path = write_run_summary(ctx.install_dir, summary)
            ctx.console.info(f"🧾 Run summary: {path.relative_to(ctx.install_dir).as_posix()}")


_STATUS_MARKERS = {"installed": "✅", "updated": "✅", "skipped": "⏭️ ", "failed": "❌"}


def print_summary(ctx: RunContext) -> None:
    console = ctx.console
    console.info("\n" + "=" * 60)
    for outcome in ctx.outcomes:
        marker = _STATUS_MARKERS.get(outcome.status, "•")
        counts = f"{len(outcome.written)} written, {len(outcome.skipped)} current, {len(outcome.preserved)} preserved"
        line = f"{marker} {outcome.module_id}: {outcome.status} ({counts})"
        if outcome.reason_code != REASON_CODE_NONE:
            line += f" [{outcome.reason_code}] {outcome.detail}"
        if outcome.status == "failed":
            console.error(line)
        else:
            console.info(line)
    warnings = [n for n in ctx.notices if n.level == "warning"]
    if warnings:
        console.info(f"⚠️  {len(warnings)} warning(s); see the run summary for details")
    console.info("=" * 60)
    if ctx.dry_run:
        console.info("✅ DRY-RUN complete (no changes were made).")
    elif run_failed(ctx):
        console.info("⚠️  Finished with module failures.")
    else:
        console.info("🎉 Installation complete!")


def run_failed(ctx: RunContext) -> bool:
    return bool(ctx.failed())
