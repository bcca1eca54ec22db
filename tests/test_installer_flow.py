from __future__ import annotations

import json
from pathlib import Path
import shutil

import pytest
import yaml

from modsync.application.orchestrator import InstallOrchestrator, run_failed
from modsync.config.prompter import DefaultsPrompter, ScriptedPrompter
from modsync.domain.errors import PromptAborted
from modsync.infrastructure.console import Console
from modsync.infrastructure.hashing import sha256_text

from .util import FIXED_NOW, agent_doc, make_settings, read_text, write_core, write_module, write_yaml_file

BMM_SCHEMA = {
    "version": "1.0.0",
    "header": "BMM Settings",
    "dependencies": ["core"],
    "planning_dir": {"prompt": "Planning dir?", "default": "{output_folder}/plans", "result": "{value}"},
}

PM_MENU = [
    {
        "trigger": "RV",
        "workflow": "{project-root}/_modsync/core/workflows/review/workflow.yaml",
        "workflow-install": "{project-root}/_modsync/bmm/workflows/review/workflow.yaml",
        "description": "Review the plan",
    }
]


def _sources(tmp_path: Path) -> Path:
    builtin = tmp_path / "builtin"
    write_core(builtin)
    write_module(
        builtin,
        "bmm",
        schema=BMM_SCHEMA,
        agents={"pm": agent_doc("pm", menu=PM_MENU, critical_actions=["Plans live in {planning_dir}"])},
        files={"templates/prd.md": "# PRD for {project_name}\n"},
    )
    return builtin


def _orchestrator(tmp_path: Path, prompter=None, **overrides) -> InstallOrchestrator:
    overrides.setdefault("selected_modules", ("bmm",))
    settings = make_settings(tmp_path, **overrides)
    return InstallOrchestrator(
        settings,
        prompter=prompter or DefaultsPrompter(),
        console=Console(quiet=True),
        now=lambda: FIXED_NOW,
    )


def _install_dir(tmp_path: Path) -> Path:
    return tmp_path / "project" / "_modsync"


def _manifest(tmp_path: Path) -> dict:
    return yaml.safe_load(read_text(_install_dir(tmp_path) / "_config" / "manifest.yaml"))


def _outcome(ctx, module_id: str):
    return next(o for o in ctx.outcomes if o.module_id == module_id)


@pytest.mark.installer
class TestFreshInstall:
    def test_installs_core_and_selected_module(self, tmp_path: Path):
        _sources(tmp_path)
        ctx = _orchestrator(tmp_path).run("install")
        install = _install_dir(tmp_path)

        assert [o.module_id for o in ctx.outcomes] == ["core", "bmm"]
        assert {o.status for o in ctx.outcomes} == {"installed"}
        assert not run_failed(ctx)

        assert (install / "core" / "agents" / "helper.md").is_file()
        assert (install / "core" / "workflows" / "party-mode" / "workflow.md").is_file()
        assert read_text(install / "_memory" / "helper-sidecar" / "notes.md") == "# Notes\n"
        assert read_text(install / "bmm" / "templates" / "prd.md") == "# PRD for {project_name}\n"
        assert not (install / "bmm" / "module.yaml").exists()
        assert not (install / "bmm" / "agents" / "pm.agent.yaml").exists()

        pm = read_text(install / "bmm" / "agents" / "pm.md")
        assert "Plans live in docs-out/plans" in pm
        assert 'cmd="RV"' in pm

    def test_config_files_and_core_section(self, tmp_path: Path):
        _sources(tmp_path)
        _orchestrator(tmp_path).run("install")
        install = _install_dir(tmp_path)

        core_config = yaml.safe_load(read_text(install / "core" / "config.yaml"))
        assert core_config == {
            "user_name": "User",
            "communication_language": "English",
            "output_folder": "{project-root}/docs-out",
        }
        bmm_text = read_text(install / "bmm" / "config.yaml")
        assert "planning_dir: docs-out/plans" in bmm_text
        assert "# Core Configuration Values\nuser_name: User\n" in bmm_text

    def test_vendored_workflow_points_at_consumer_config(self, tmp_path: Path):
        _sources(tmp_path)
        ctx = _orchestrator(tmp_path).run("install")
        install = _install_dir(tmp_path)

        vendored = read_text(install / "bmm" / "workflows" / "review" / "workflow.yaml")
        assert 'config_source: "{project-root}/_modsync/bmm/config.yaml"' in vendored
        assert read_text(install / "bmm" / "workflows" / "review" / "instructions.md") == "Review the work.\n"
        assert _outcome(ctx, "bmm").vendored == ["core/workflows/review -> bmm/workflows/review"]

    def test_manifest_tracks_every_written_file(self, tmp_path: Path):
        _sources(tmp_path)
        _orchestrator(tmp_path).run("install")
        install = _install_dir(tmp_path)
        manifest = _manifest(tmp_path)

        assert [m["id"] for m in manifest["modules"]] == ["core", "bmm"]
        assert manifest["installation"]["installDate"] == FIXED_NOW
        tracked = manifest["trackedFiles"]
        for rel in ("core/agents/helper.md", "bmm/agents/pm.md", "_memory/helper-sidecar/notes.md"):
            assert tracked[rel] == sha256_text(read_text(install / rel))
        assert "core/config.yaml" not in tracked
        assert sorted(manifest["customizationFiles"]) == [
            "_config/agents/bmm-pm.customize.yaml",
            "_config/agents/core-helper.customize.yaml",
        ]

    def test_run_summary_is_written(self, tmp_path: Path):
        _sources(tmp_path)
        _orchestrator(tmp_path).run("install")
        runs = sorted((_install_dir(tmp_path) / "_config" / "runs").glob("*.json"))

        assert len(runs) == 1
        summary = json.loads(read_text(runs[0]))
        assert summary["command"] == "install"
        assert summary["counts"] == {"installed": 2}

    def test_dry_run_writes_nothing(self, tmp_path: Path):
        _sources(tmp_path)
        ctx = _orchestrator(tmp_path, dry_run=True).run("install")

        assert not _install_dir(tmp_path).exists()
        assert "bmm/agents/pm.md" in _outcome(ctx, "bmm").written


@pytest.mark.installer
class TestReinstall:
    def test_second_run_is_a_no_op(self, tmp_path: Path):
        _sources(tmp_path)
        _orchestrator(tmp_path).run("install")
        manifest_path = _install_dir(tmp_path) / "_config" / "manifest.yaml"
        manifest_before = read_text(manifest_path)
        pm_before = read_text(_install_dir(tmp_path) / "bmm" / "agents" / "pm.md")

        prompter = DefaultsPrompter()
        ctx = _orchestrator(tmp_path, prompter=prompter).run("install")

        assert [o.status for o in ctx.outcomes] == ["skipped", "skipped"]
        assert all(o.written == [] for o in ctx.outcomes)
        assert prompter.batches == []
        assert read_text(manifest_path) == manifest_before
        assert read_text(_install_dir(tmp_path) / "bmm" / "agents" / "pm.md") == pm_before

    def test_user_edit_is_preserved_when_source_changes(self, tmp_path: Path):
        builtin = _sources(tmp_path)
        _orchestrator(tmp_path).run("install")
        install = _install_dir(tmp_path)
        tracked_before = _manifest(tmp_path)["trackedFiles"]["bmm/templates/prd.md"]

        (install / "bmm" / "templates" / "prd.md").write_text("# my own PRD\n", encoding="utf-8")
        (builtin / "bmm" / "templates" / "prd.md").write_text("# PRD v2\n", encoding="utf-8")
        ctx = _orchestrator(tmp_path).run("install")

        assert read_text(install / "bmm" / "templates" / "prd.md") == "# my own PRD\n"
        assert _outcome(ctx, "bmm").preserved == ["bmm/templates/prd.md"]
        assert ("WRITE-CONFLICT", "bmm") in [(n.reason_code, n.module_id) for n in ctx.notices]
        assert _manifest(tmp_path)["trackedFiles"]["bmm/templates/prd.md"] == tracked_before
        assert not run_failed(ctx)

    def test_unedited_file_follows_source_changes(self, tmp_path: Path):
        builtin = _sources(tmp_path)
        _orchestrator(tmp_path).run("install")
        (builtin / "bmm" / "templates" / "prd.md").write_text("# PRD v2\n", encoding="utf-8")

        ctx = _orchestrator(tmp_path).run("install")

        install = _install_dir(tmp_path)
        assert read_text(install / "bmm" / "templates" / "prd.md") == "# PRD v2\n"
        assert _outcome(ctx, "bmm").status == "updated"
        assert _manifest(tmp_path)["trackedFiles"]["bmm/templates/prd.md"] == sha256_text("# PRD v2\n")

    def test_removed_source_file_is_dropped_from_tracking_but_kept_on_disk(self, tmp_path: Path):
        builtin = _sources(tmp_path)
        _orchestrator(tmp_path).run("install")
        (builtin / "bmm" / "templates" / "prd.md").unlink()

        _orchestrator(tmp_path).run("install")

        assert "bmm/templates/prd.md" not in _manifest(tmp_path)["trackedFiles"]
        assert (_install_dir(tmp_path) / "bmm" / "templates" / "prd.md").is_file()

    def test_customized_overlay_survives_and_is_applied(self, tmp_path: Path):
        _sources(tmp_path)
        _orchestrator(tmp_path).run("install")
        install = _install_dir(tmp_path)
        overlay = install / "_config" / "agents" / "bmm-pm.customize.yaml"
        scaffold_hash = _manifest(tmp_path)["customizationFiles"]["_config/agents/bmm-pm.customize.yaml"]

        overlay.write_text("agent:\n  metadata:\n    name: Priya\n", encoding="utf-8")
        ctx = _orchestrator(tmp_path).run("install")

        assert read_text(overlay) == "agent:\n  metadata:\n    name: Priya\n"
        assert 'name="Priya"' in read_text(install / "bmm" / "agents" / "pm.md")
        assert _outcome(ctx, "bmm").written == ["bmm/agents/pm.md"]
        assert _manifest(tmp_path)["customizationFiles"]["_config/agents/bmm-pm.customize.yaml"] == scaffold_hash

    def test_new_module_is_added_to_existing_install(self, tmp_path: Path):
        builtin = _sources(tmp_path)
        _orchestrator(tmp_path).run("install")
        write_module(builtin, "cis", files={"data/ideas.md": "# Ideas\n"})

        ctx = _orchestrator(tmp_path, selected_modules=("cis",)).run("install")

        assert [(o.module_id, o.status) for o in ctx.outcomes] == [
            ("core", "skipped"),
            ("bmm", "skipped"),
            ("cis", "installed"),
        ]
        assert [m["id"] for m in _manifest(tmp_path)["modules"]] == ["core", "bmm", "cis"]


@pytest.mark.installer
class TestFailures:
    def test_compile_failure_is_isolated_to_its_module(self, tmp_path: Path):
        builtin = _sources(tmp_path)
        (builtin / "bmm" / "agents" / "pm.agent.yaml").write_text("agent: [broken\n", encoding="utf-8")

        ctx = _orchestrator(tmp_path).run("install")

        assert [(o.module_id, o.status) for o in ctx.outcomes] == [("core", "installed"), ("bmm", "failed")]
        assert _outcome(ctx, "bmm").reason_code == "COMPILE-ERROR"
        assert not (_install_dir(tmp_path) / "bmm").exists()
        assert [m["id"] for m in _manifest(tmp_path)["modules"]] == ["core"]
        assert run_failed(ctx)

    def test_unknown_module_is_skipped_without_stopping_the_run(self, tmp_path: Path):
        _sources(tmp_path)
        ctx = _orchestrator(tmp_path, selected_modules=("nope", "bmm")).run("install")

        nope = _outcome(ctx, "nope")
        assert (nope.status, nope.reason_code) == ("skipped", "SOURCE-UNAVAILABLE")
        assert _outcome(ctx, "bmm").status == "installed"
        assert [n.module_id for n in ctx.notices if n.reason_code == "SOURCE-UNAVAILABLE"] == ["nope"]
        assert run_failed(ctx)

    def test_vanished_source_keeps_prior_install(self, tmp_path: Path):
        builtin = _sources(tmp_path)
        _orchestrator(tmp_path).run("install")
        manifest_before = _manifest(tmp_path)
        config_before = read_text(_install_dir(tmp_path) / "bmm" / "config.yaml")
        shutil.rmtree(builtin / "bmm")

        ctx = _orchestrator(tmp_path).run("install")

        assert _outcome(ctx, "bmm").status == "skipped"
        assert _manifest(tmp_path) == manifest_before
        assert read_text(_install_dir(tmp_path) / "bmm" / "config.yaml") == config_before
        assert run_failed(ctx)

    def test_abort_leaves_unprocessed_modules_out_of_the_manifest(self, tmp_path: Path):
        _sources(tmp_path)

        class _AbortOnBmm(DefaultsPrompter):
            def ask(self, module_id, header, questions):
                if module_id == "bmm":
                    raise PromptAborted("input aborted")
                return super().ask(module_id, header, questions)

        with pytest.raises(PromptAborted):
            _orchestrator(tmp_path, prompter=_AbortOnBmm()).run("install")

        manifest = _manifest(tmp_path)
        assert [m["id"] for m in manifest["modules"]] == ["core"]
        assert not any(path.startswith("bmm/") for path in manifest["trackedFiles"])
        assert "core/agents/helper.md" in manifest["trackedFiles"]
        assert not (_install_dir(tmp_path) / "bmm" / "config.yaml").exists()
        assert (_install_dir(tmp_path) / "core" / "config.yaml").is_file()

    def test_broken_schema_on_update_skips_module_and_keeps_config(self, tmp_path: Path):
        builtin = _sources(tmp_path)
        _orchestrator(tmp_path).run("install")
        install = _install_dir(tmp_path)
        config_before = read_text(install / "bmm" / "config.yaml")
        (builtin / "bmm" / "module.yaml").write_text("code: bmm\nplanning_dir: [\n", encoding="utf-8")

        ctx = _orchestrator(tmp_path).run("install")

        outcome = _outcome(ctx, "bmm")
        assert (outcome.status, outcome.reason_code) == ("skipped", "SCHEMA-PARSE-ERROR")
        assert read_text(install / "bmm" / "config.yaml") == config_before
        assert run_failed(ctx)

    def test_missing_manifest_degrades_and_adopts_files(self, tmp_path: Path):
        _sources(tmp_path)
        _orchestrator(tmp_path).run("install")
        install = _install_dir(tmp_path)
        (install / "_config" / "manifest.yaml").unlink()
        (install / "bmm" / "templates" / "prd.md").write_text("# stray edit\n", encoding="utf-8")

        ctx = _orchestrator(tmp_path).run("install")

        assert ctx.manifest_degraded is True
        assert "MANIFEST-DEGRADED" in [n.reason_code for n in ctx.notices]
        assert read_text(install / "bmm" / "templates" / "prd.md") == "# PRD for {project_name}\n"
        assert "bmm/templates/prd.md" in _manifest(tmp_path)["trackedFiles"]


@pytest.mark.installer
class TestOtherModes:
    def test_quick_update_requires_an_install(self, tmp_path: Path):
        _sources(tmp_path)
        with pytest.raises(ValueError, match="no installation found"):
            _orchestrator(tmp_path).run("quick-update")

    def test_quick_update_asks_only_new_keys(self, tmp_path: Path):
        builtin = _sources(tmp_path)
        _orchestrator(tmp_path).run("install")
        schema = dict(BMM_SCHEMA)
        schema["team_size"] = {"prompt": "Team size?", "default": 3}
        write_yaml_file(builtin / "bmm" / "module.yaml", {"code": "bmm", **schema})

        prompter = ScriptedPrompter(responses={"bmm_team_size": 5})
        ctx = _orchestrator(tmp_path, prompter=prompter).run("quick-update")

        assert prompter.batches == [("bmm", ["team_size"])]
        config = yaml.safe_load(read_text(_install_dir(tmp_path) / "bmm" / "config.yaml").split("# Core")[0])
        assert config == {"planning_dir": "docs-out/plans", "team_size": 5}
        assert _outcome(ctx, "bmm").config_mode == "migrated"

    def test_recompile_applies_overlay_without_touching_config(self, tmp_path: Path):
        _sources(tmp_path)
        _orchestrator(tmp_path).run("install")
        install = _install_dir(tmp_path)
        config_before = read_text(install / "bmm" / "config.yaml")
        tracked_before = set(_manifest(tmp_path)["trackedFiles"])
        (install / "_config" / "agents" / "core-helper.customize.yaml").write_text(
            "persona:\n  role: Librarian\n", encoding="utf-8"
        )

        ctx = _orchestrator(tmp_path).run("recompile")

        assert "<role>Librarian</role>" in read_text(install / "core" / "agents" / "helper.md")
        assert _outcome(ctx, "core").written == ["core/agents/helper.md"]
        assert _outcome(ctx, "bmm").status == "skipped"
        assert read_text(install / "bmm" / "config.yaml") == config_before
        assert set(_manifest(tmp_path)["trackedFiles"]) == tracked_before

    def test_custom_folder_name_is_used_everywhere(self, tmp_path: Path):
        _sources(tmp_path)
        _orchestrator(tmp_path, folder_name=".agents").run("install")
        install = tmp_path / "project" / ".agents"

        vendored = read_text(install / "bmm" / "workflows" / "review" / "workflow.yaml")
        assert 'config_source: "{project-root}/.agents/bmm/config.yaml"' in vendored
        assert "{project-root}/.agents/core/workflows/party-mode/workflow.md" in read_text(
            install / "bmm" / "agents" / "pm.md"
        )
        assert (install / "_config" / "manifest.yaml").is_file()

    def test_custom_module_is_cached_in_project(self, tmp_path: Path):
        _sources(tmp_path)
        custom_root = write_module(tmp_path / "elsewhere", "acme", files={"notes/readme.md": "# Acme\n"})

        ctx = _orchestrator(tmp_path, custom_paths=(("acme", custom_root),), selected_modules=("acme",)).run(
            "install"
        )

        install = _install_dir(tmp_path)
        assert _outcome(ctx, "acme").source_kind == "local-custom"
        assert read_text(install / "acme" / "notes" / "readme.md") == "# Acme\n"
        assert (install / "_config" / "custom" / "acme" / "module.yaml").is_file()
        assert _manifest(tmp_path)["modules"][-1]["sourcePath"] == str(custom_root.resolve())
