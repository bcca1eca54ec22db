from __future__ import annotations

from pathlib import Path

import pytest

from modsync.application.run_context import RunContext
from modsync.config.collector import ConfigCollector, load_existing_config
from modsync.config.prompter import DefaultsPrompter, ScriptedPrompter
from modsync.config.writer import render_module_config, write_module_config
from modsync.domain.errors import ConfigValidationError
from modsync.modules.resolver import build_module_source

from .util import CORE_SCHEMA, write_module

BMM_SCHEMA = {
    "header": "BMM",
    "dependencies": ["core"],
    "planning_dir": {"prompt": "Planning dir?", "default": "{output_folder}/plans", "result": "{value}"},
    "team_size": {"prompt": "Team size?", "default": 3},
}


def _sources(tmp_path: Path):
    builtin = tmp_path / "builtin"
    core = build_module_source("core", write_module(builtin, "core", schema=CORE_SCHEMA), "builtin")
    bmm = build_module_source("bmm", write_module(builtin, "bmm", schema=BMM_SCHEMA), "builtin")
    return core, bmm


@pytest.mark.config
class TestFreshCollection:
    def test_core_answers_flow_into_dependent_defaults(self, tmp_path: Path, run_context: RunContext):
        core, bmm = _sources(tmp_path)
        prompter = ScriptedPrompter(responses={"core_user_name": "Ada", "core_output_folder": "out"})
        collector = ConfigCollector(run_context, prompter)

        core_result = collector.collect(core)
        bmm_result = collector.collect(bmm)

        assert core_result.mode == "fresh"
        assert core_result.config == {
            "user_name": "Ada",
            "communication_language": "English",
            "output_folder": "{project-root}/out",
        }
        assert run_context.answers["core_output_folder"] == "out"
        # The shown default is resolved from the core answers before asking.
        assert bmm_result.config["planning_dir"] == "out/plans"
        assert bmm_result.config["team_size"] == 3
        assert prompter.batches == [
            ("core", ["user_name", "communication_language", "output_folder"]),
            ("bmm", ["planning_dir", "team_size"]),
        ]

    def test_default_follows_earlier_answer_in_same_batch(self, tmp_path: Path, run_context: RunContext):
        builtin = tmp_path / "builtin"
        schema = {
            "communication_language": {"prompt": "Chat language?", "default": "English"},
            "document_output_language": {"prompt": "Document language?", "default": "{communication_language}"},
        }
        source = build_module_source("core", write_module(builtin, "core", schema=schema), "builtin")
        prompter = ScriptedPrompter(responses={"communication_language": "German"})

        result = ConfigCollector(run_context, prompter).collect(source)

        assert result.config == {"communication_language": "German", "document_output_language": "German"}
        assert run_context.answers["core_document_output_language"] == "German"

    def test_static_result_sees_prompted_answer(self, tmp_path: Path, run_context: RunContext):
        builtin = tmp_path / "builtin"
        schema = {
            "artifacts": {"result": "{project-root}/{output_folder}/artifacts"},
            "output_folder": {"prompt": "Output?", "default": "out", "result": "{project-root}/{value}"},
        }
        source = build_module_source("m", write_module(builtin, "m", schema=schema), "builtin")

        result = ConfigCollector(run_context, ScriptedPrompter(responses={"output_folder": "docs"})).collect(source)

        assert result.config == {
            "artifacts": "{project-root}/docs/artifacts",
            "output_folder": "{project-root}/docs",
        }
        assert list(result.config) == ["artifacts", "output_folder"]

    def test_project_root_prefix_is_stripped_from_shown_default(self, tmp_path: Path, run_context: RunContext):
        builtin = tmp_path / "builtin"
        schema = {"docs": {"prompt": "Docs?", "default": "{project-root}/docs", "result": "{project-root}/{value}"}}
        source = build_module_source("m", write_module(builtin, "m", schema=schema), "builtin")

        result = ConfigCollector(run_context, DefaultsPrompter()).collect(source)

        assert result.config == {"docs": "{project-root}/docs"}

    def test_static_items_are_resolved_without_asking(self, tmp_path: Path, run_context: RunContext):
        builtin = tmp_path / "builtin"
        schema = {"project_name": {"result": "{directory_name}"}}
        source = build_module_source("m", write_module(builtin, "m", schema=schema), "builtin")
        prompter = DefaultsPrompter()

        result = ConfigCollector(run_context, prompter).collect(source)

        assert result.config == {"project_name": "project"}
        assert prompter.batches == []

    def test_invalid_answer_raises(self, tmp_path: Path, run_context: RunContext):
        builtin = tmp_path / "builtin"
        schema = {"nick": {"prompt": "Nick?", "regex": "^[a-z]+$"}}
        source = build_module_source("m", write_module(builtin, "m", schema=schema), "builtin")
        collector = ConfigCollector(run_context, ScriptedPrompter(responses={"nick": "NOPE"}))
        with pytest.raises(ConfigValidationError):
            collector.collect(source)


@pytest.mark.config
class TestUpdateCollection:
    def test_unchanged_schema_carries_config_over_without_prompting(self, tmp_path: Path, run_context: RunContext):
        _core, bmm = _sources(tmp_path)
        run_context.existing_config = {"bmm": {"planning_dir": "custom/plans", "team_size": 7}}
        prompter = DefaultsPrompter()

        result = ConfigCollector(run_context, prompter).collect(bmm)

        assert result.mode == "carried-over"
        assert result.config == {"planning_dir": "custom/plans", "team_size": 7}
        assert prompter.batches == []
        assert run_context.answers["bmm_team_size"] == 7

    def test_new_schema_key_is_the_only_question(self, tmp_path: Path, run_context: RunContext):
        _core, bmm = _sources(tmp_path)
        run_context.existing_config = {"bmm": {"planning_dir": "custom/plans"}}
        prompter = DefaultsPrompter()

        result = ConfigCollector(run_context, prompter).collect(bmm)

        assert result.mode == "migrated"
        assert result.new_keys == ["team_size"]
        assert prompter.batches == [("bmm", ["team_size"])]
        assert result.config == {"planning_dir": "custom/plans", "team_size": 3}

    def test_broken_schema_keeps_existing_config(self, tmp_path: Path, run_context: RunContext):
        root = write_module(tmp_path / "builtin", "bmm", schema="code: bmm\nbad: [\n")
        source = build_module_source("bmm", root, "builtin")
        run_context.existing_config = {"bmm": {"planning_dir": "keep"}}

        result = ConfigCollector(run_context, DefaultsPrompter()).collect(source)

        assert result.mode == "schema-error"
        assert result.config == {"planning_dir": "keep"}
        assert result.error is not None
        assert [n.reason_code for n in run_context.notices] == ["SCHEMA-PARSE-ERROR"]


@pytest.mark.config
def test_custom_values_fill_missing_keys_for_custom_modules(tmp_path: Path, run_context: RunContext):
    root = write_module(
        tmp_path / "custom",
        "acme",
        schema={"style": {"prompt": "Style?", "default": "plain"}},
        files={"custom.yaml": "style: ignored\nextra: from-custom\n"},
    )
    source = build_module_source("acme", root, "local-custom", source_path=str(root))

    result = ConfigCollector(run_context, DefaultsPrompter()).collect(source)

    assert result.config == {"style": "plain", "extra": "from-custom"}


@pytest.mark.config
class TestExistingConfig:
    def test_core_section_is_not_read_back_as_module_keys(self, tmp_path: Path):
        install = tmp_path / "_modsync"
        write_module_config(install, "core", {"user_name": "Ada"}, core_values=None, tool_version="1.0.0")
        write_module_config(
            install,
            "bmm",
            {"team_size": 3},
            core_values={"user_name": "Ada", "team_size": 9},
            tool_version="1.0.0",
        )

        existing = load_existing_config(install)

        assert existing == {"core": {"user_name": "Ada"}, "bmm": {"team_size": 3}}

    def test_unreadable_config_is_reported_and_ignored(self, tmp_path: Path):
        install = tmp_path / "_modsync"
        (install / "bmm").mkdir(parents=True)
        (install / "bmm" / "config.yaml").write_text("- a list\n", encoding="utf-8")
        (install / "_config").mkdir()
        (install / "_config" / "config.yaml").write_text("ignored: true\n", encoding="utf-8")
        seen: list[tuple[str, str | None]] = []

        existing = load_existing_config(install, notify=lambda code, _msg, module: seen.append((code, module)))

        assert existing == {}
        assert seen == [("EXISTING-CONFIG-UNREADABLE", "bmm")]


@pytest.mark.config
def test_rendered_config_has_no_timestamp_and_appends_core_values():
    text = render_module_config(
        "bmm",
        {"team_size": 3},
        core_values={"user_name": "Ada", "team_size": 1},
        tool_version="1.0.0",
    )
    assert text.startswith("# BMM Module Configuration\n")
    assert "# Version: 1.0.0" in text
    assert "Date" not in text
    assert text.endswith("# Core Configuration Values\nuser_name: Ada\n")
    assert text.count("team_size") == 1


@pytest.mark.config
def test_write_module_config_reports_unchanged(tmp_path: Path):
    assert write_module_config(tmp_path, "core", {"a": 1}, core_values=None, tool_version="1.0.0") is True
    assert write_module_config(tmp_path, "core", {"a": 1}, core_values=None, tool_version="1.0.0") is False
