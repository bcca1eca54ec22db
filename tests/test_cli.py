from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from modsync.application.status import build_status
from modsync.cli import EXIT_ABORTED, EXIT_MODULE_FAILED, EXIT_OK, EXIT_USAGE, main
from modsync.domain.errors import PromptAborted

from .util import make_settings, read_text, run_install, write_core, write_module, write_yaml_file


def _args(tmp_path: Path, command: str, *extra: str) -> list[str]:
    return [
        command,
        "--directory",
        str(tmp_path / "project"),
        "--source-dir",
        str(tmp_path / "builtin"),
        "--cache-dir",
        str(tmp_path / "cache"),
        *extra,
    ]


@pytest.fixture
def sources(tmp_path: Path) -> Path:
    (tmp_path / "project").mkdir()
    builtin = tmp_path / "builtin"
    write_core(builtin)
    write_module(builtin, "bmm", schema={"dependencies": ["core"]}, files={"templates/prd.md": "# PRD\n"})
    return builtin


@pytest.mark.installer
class TestInstallCommand:
    def test_install_exit_zero(self, tmp_path: Path, sources: Path, capsys: pytest.CaptureFixture[str]):
        code = main(_args(tmp_path, "install", "--yes", "--modules", "bmm"))

        assert code == EXIT_OK
        assert (tmp_path / "project" / "_modsync" / "bmm" / "templates" / "prd.md").is_file()
        assert "Installation complete" in capsys.readouterr().out

    def test_failed_module_exits_one(self, tmp_path: Path, sources: Path):
        assert main(_args(tmp_path, "install", "--yes", "--quiet", "--modules", "missing")) == EXIT_MODULE_FAILED

    def test_quiet_hides_progress_but_not_errors(self, tmp_path: Path, sources: Path, capsys):
        main(_args(tmp_path, "install", "--yes", "--quiet", "--modules", "missing"))
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "SOURCE-UNAVAILABLE" in captured.err

    def test_answers_file(self, tmp_path: Path, sources: Path):
        answers = write_yaml_file(tmp_path / "answers.yaml", {"core_user_name": "Ada", "output_folder": "out"})

        assert main(_args(tmp_path, "install", "--answers", str(answers), "--quiet")) == EXIT_OK

        config = yaml.safe_load(read_text(tmp_path / "project" / "_modsync" / "core" / "config.yaml"))
        assert config["user_name"] == "Ada"
        assert config["output_folder"] == "{project-root}/out"

    def test_missing_answers_file_is_usage_error(self, tmp_path: Path, sources: Path):
        assert main(_args(tmp_path, "install", "--answers", str(tmp_path / "nope.yaml"))) == EXIT_USAGE

    def test_invalid_folder_is_usage_error(self, tmp_path: Path, sources: Path):
        assert main(_args(tmp_path, "install", "--yes", "--folder", "a/b")) == EXIT_USAGE

    def test_quick_update_without_install_is_usage_error(self, tmp_path: Path, sources: Path):
        assert main(_args(tmp_path, "install", "--yes", "--quick-update")) == EXIT_USAGE

    def test_aborted_prompt_exits_130(self, tmp_path: Path, sources: Path, monkeypatch: pytest.MonkeyPatch):
        def _abort(self, mode="install"):
            raise PromptAborted("input aborted")

        monkeypatch.setattr("modsync.cli.InstallOrchestrator.run", _abort)
        assert main(_args(tmp_path, "install", "--yes")) == EXIT_ABORTED

    def test_dry_run_leaves_project_untouched(self, tmp_path: Path, sources: Path):
        assert main(_args(tmp_path, "install", "--yes", "--quiet", "--dry-run")) == EXIT_OK
        assert list((tmp_path / "project").iterdir()) == []


@pytest.mark.installer
class TestStatusCommand:
    def test_status_without_install(self, tmp_path: Path, sources: Path, capsys):
        assert main(_args(tmp_path, "status")) == EXIT_OK
        assert "No installation manifest found" in capsys.readouterr().out

    def test_status_reports_drift_and_updates(self, tmp_path: Path, sources: Path, capsys):
        main(_args(tmp_path, "install", "--yes", "--quiet", "--modules", "bmm"))
        install = tmp_path / "project" / "_modsync"
        (install / "bmm" / "templates" / "prd.md").write_text("# mine\n", encoding="utf-8")
        (install / "core" / "workflows" / "party-mode" / "workflow.md").unlink()
        write_yaml_file(sources / "bmm" / "module.yaml", {"code": "bmm", "version": "1.1.0", "dependencies": ["core"]})

        report = build_status(make_settings(tmp_path, builtin_dir=sources))

        assert report.installed is True
        drift = {(d.path, d.kind) for d in report.modified_files}
        assert drift == {
            ("bmm/templates/prd.md", "user-modified"),
            ("core/workflows/party-mode/workflow.md", "missing"),
        }
        bmm = next(m for m in report.modules if m.module_id == "bmm")
        assert (bmm.installed_version, bmm.latest_version, bmm.update_available) == ("1.0.0", "1.1.0", True)

        assert main(_args(tmp_path, "status")) == EXIT_OK
        out = capsys.readouterr().out
        assert "update available" in out
        assert "bmm/templates/prd.md (user-modified)" in out

    def test_customized_overlays_are_listed(self, tmp_path: Path, sources: Path):
        main(_args(tmp_path, "install", "--yes", "--quiet"))
        overlay = tmp_path / "project" / "_modsync" / "_config" / "agents" / "core-helper.customize.yaml"
        overlay.write_text("persona:\n  role: Librarian\n", encoding="utf-8")

        report = build_status(make_settings(tmp_path, builtin_dir=sources))

        assert report.customized_overlays == ["_config/agents/core-helper.customize.yaml"]
        assert report.to_document()["customized_overlays"] == ["_config/agents/core-helper.customize.yaml"]


@pytest.mark.installer
def test_install_script_runs_from_checkout(tmp_path: Path, sources: Path):
    result = run_install(_args(tmp_path, "install", "--yes", "--quiet"))
    assert result.returncode == 0, result.stderr
    assert (tmp_path / "project" / "_modsync" / "_config" / "manifest.yaml").is_file()
