"""Unit tests for SpecLinter project workspace functionality.

This module tests project root resolution, project initialization and
the workspace operations that touch both the database and task files.
"""

import json

import pytest

from speclinter import materializer as materializer_module
from speclinter.errors import InvalidInputError, NotFoundError, NotInitializedError, PersistenceError, SpecLinterError
from speclinter.models import GherkinRunResult, SaveOptions, ScenarioOutcome, ScenarioResult, TaskStatus
from speclinter.workspace import (
    GITIGNORE_CONTENT,
    PROJECT_ROOT_ENV,
    SpecLinterWorkspace,
    initialize_project,
    resolve_project_root,
)


class TestResolveProjectRoot:
    """Test cases for project root resolution."""

    def test_explicit_root_wins(self, tmp_path, monkeypatch):
        other = tmp_path / "other"
        other.mkdir()
        monkeypatch.setenv(PROJECT_ROOT_ENV, str(other))

        assert resolve_project_root(tmp_path) == tmp_path.resolve()

    def test_explicit_root_must_exist(self, tmp_path):
        with pytest.raises(ValueError, match="does not exist"):
            resolve_project_root(tmp_path / "missing")

    def test_environment_variable(self, tmp_path, monkeypatch):
        monkeypatch.setenv(PROJECT_ROOT_ENV, str(tmp_path))
        assert resolve_project_root() == tmp_path.resolve()

    def test_environment_variable_must_exist(self, tmp_path, monkeypatch):
        monkeypatch.setenv(PROJECT_ROOT_ENV, str(tmp_path / "missing"))
        with pytest.raises(ValueError, match=PROJECT_ROOT_ENV):
            resolve_project_root()

    def test_walks_up_to_marker(self, tmp_path, monkeypatch):
        monkeypatch.delenv(PROJECT_ROOT_ENV, raising=False)
        (tmp_path / ".speclinter").mkdir()
        nested = tmp_path / "src" / "app"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)

        assert resolve_project_root() == tmp_path.resolve()

    def test_falls_back_to_cwd(self, tmp_path, monkeypatch):
        monkeypatch.delenv(PROJECT_ROOT_ENV, raising=False)
        monkeypatch.chdir(tmp_path)
        assert resolve_project_root() == tmp_path.resolve()


class TestInitializeProject:
    """Test cases for initialize_project."""

    def test_layout(self, tmp_path):
        result = initialize_project(tmp_path)

        base = tmp_path / ".speclinter"
        assert (base / "context").is_dir()
        assert (base / "cache").is_dir()
        assert (tmp_path / "tasks").is_dir()
        assert (base / "speclinter.db").exists()
        assert (base / ".gitignore").read_text(encoding="utf-8") == GITIGNORE_CONTENT
        assert result["root"] == str(tmp_path.resolve())
        assert result["tasks_dir"] == str(tmp_path.resolve() / "tasks")

    def test_config_uses_camel_case(self, tmp_path):
        initialize_project(tmp_path)
        config = json.loads((tmp_path / ".speclinter" / "config.json").read_text(encoding="utf-8"))

        assert config["deduplication"]["similarityThreshold"] == 0.8
        assert config["deduplication"]["defaultStrategy"] == "prompt"
        assert config["storage"]["tasksDir"] == "tasks"

    def test_refuses_second_initialization(self, tmp_path):
        initialize_project(tmp_path)
        with pytest.raises(SpecLinterError, match="already initialized"):
            initialize_project(tmp_path)

    def test_force_keeps_stored_features(self, tmp_path, task_factory, spec_result_factory):
        initialize_project(tmp_path)
        with SpecLinterWorkspace.open(tmp_path) as workspace:
            workspace.save_feature("login", [task_factory(1, "a")], spec_result_factory())

        initialize_project(tmp_path, force=True)
        with SpecLinterWorkspace.open(tmp_path) as workspace:
            assert workspace.repository.get("login") is not None


class TestOpen:
    """Test cases for SpecLinterWorkspace.open."""

    def test_uninitialized_project(self, tmp_path):
        with pytest.raises(NotInitializedError) as exc_info:
            SpecLinterWorkspace.open(tmp_path)
        assert "speclinter_init_project" in str(exc_info.value)

    def test_auto_initialize(self, tmp_path):
        with SpecLinterWorkspace.open(tmp_path, auto_initialize=True) as workspace:
            assert workspace.tasks_dir == tmp_path.resolve() / "tasks"
        assert (tmp_path / ".speclinter" / "config.json").exists()

    def test_config_thresholds_are_applied(self, tmp_path):
        initialize_project(tmp_path)
        config_path = tmp_path / ".speclinter" / "config.json"
        config = json.loads(config_path.read_text(encoding="utf-8"))
        config["deduplication"]["taskSimilarityThreshold"] = 0.5
        config["storage"]["tasksDir"] = "work"
        config_path.write_text(json.dumps(config), encoding="utf-8")

        with SpecLinterWorkspace.open(tmp_path) as workspace:
            assert workspace.resolver.task_similarity_threshold == 0.5
            assert workspace.tasks_dir == tmp_path.resolve() / "work"


class TestTaskOperations:
    """Test cases for workspace task operations."""

    def test_save_writes_files(self, workspace, login_tasks, spec_result_factory):
        result = workspace.save_feature("login", login_tasks, spec_result_factory())

        assert result.persisted
        assert (workspace.tasks_dir / "login" / "task_01_build-login-form.md").exists()
        assert (workspace.tasks_dir / "login" / "meta.json").exists()

    def test_update_task_status_refreshes_dashboard(self, workspace, login_tasks, spec_result_factory):
        workspace.save_feature("login", login_tasks, spec_result_factory())

        task = workspace.update_task_status("login", "task_01", "completed", notes="shipped")

        assert task.status is TaskStatus.COMPLETED
        assert task.notes == "shipped"
        active = (workspace.tasks_dir / "login" / "_active.md").read_text(encoding="utf-8")
        assert "**Overall Progress**: 1/1 tasks completed" in active
        task_file = (workspace.tasks_dir / "login" / "task_01_build-login-form.md").read_text(encoding="utf-8")
        assert "✅ completed" in task_file

    def test_update_missing_task(self, workspace, login_tasks, spec_result_factory):
        workspace.save_feature("login", login_tasks, spec_result_factory())
        with pytest.raises(NotFoundError):
            workspace.update_task_status("login", "task_07", "completed")

    def test_feature_tasks_for_missing_feature(self, workspace):
        with pytest.raises(NotFoundError):
            workspace.feature_tasks("nope")

    def test_list_and_status(self, workspace, task_factory, spec_result_factory):
        workspace.save_feature(
            "login",
            [task_factory(1, "a"), task_factory(2, "b")],
            spec_result_factory(),
            SaveOptions(skip_similarity_check=True),
        )
        workspace.update_task_status("login", "task_02", TaskStatus.BLOCKED)

        status = workspace.feature_status("login")
        assert status.overall_status == "blocked"
        assert [f["name"] for f in workspace.list_features()] == ["login"]

    def test_apply_task_statuses_in_one_transaction(self, workspace, task_factory, spec_result_factory):
        workspace.save_feature("login", [task_factory(1, "a"), task_factory(2, "b")], spec_result_factory())

        with pytest.raises(NotFoundError):
            workspace.apply_task_statuses(
                "login", [("task_01", "completed", None), ("task_09", "completed", None)]
            )
        assert [t.status for t in workspace.feature_tasks("login")] == [TaskStatus.NOT_STARTED] * 2

        changed = workspace.apply_task_statuses(
            "login", [("task_01", "completed", "done"), ("task_02", TaskStatus.IN_PROGRESS, None)]
        )
        assert [(t.id, t.status) for t in changed] == [
            ("task_01", TaskStatus.COMPLETED),
            ("task_02", TaskStatus.IN_PROGRESS),
        ]

    def test_failed_status_update_restores_files(self, workspace, login_tasks, spec_result_factory, monkeypatch):
        """
        Given: a stored feature with one task
        When: the dashboard write fails after the task file was rewritten
        Then: the task file shows the committed status again
        """
        workspace.save_feature("login", login_tasks, spec_result_factory())
        real_write = materializer_module.atomic_write
        failing = {"armed": True}

        def fail_on_dashboard(path, content):
            if failing["armed"] and path.name == materializer_module.ACTIVE_FILENAME:
                failing["armed"] = False
                raise OSError("disk full")
            real_write(path, content)

        monkeypatch.setattr(materializer_module, "atomic_write", fail_on_dashboard)
        with pytest.raises(PersistenceError):
            workspace.update_task_status("login", "task_01", "completed")

        assert workspace.feature_tasks("login")[0].status is TaskStatus.NOT_STARTED
        task_file = (workspace.tasks_dir / "login" / "task_01_build-login-form.md").read_text(encoding="utf-8")
        assert "⏳ not_started" in task_file


class TestGherkinAndTestRuns:
    """Test cases for stored Gherkin scenarios and recorded test runs."""

    def test_save_task_gherkin_survives_status_updates(self, workspace, login_tasks, spec_result_factory):
        workspace.save_feature("login", login_tasks, spec_result_factory())
        content = "Feature: Login\n\n  Scenario: Valid credentials\n    Given a registered user\n"

        task, path = workspace.save_task_gherkin("login", "task_01", content)

        assert task.gherkin == content
        assert path == workspace.tasks_dir / "login" / "gherkin" / "task_01_build-login-form.feature"
        assert path.read_text(encoding="utf-8") == content

        workspace.update_task_status("login", "task_01", "in_progress")
        assert path.read_text(encoding="utf-8") == content

    def test_save_task_gherkin_missing_task(self, workspace, login_tasks, spec_result_factory):
        workspace.save_feature("login", login_tasks, spec_result_factory())
        with pytest.raises(NotFoundError):
            workspace.save_task_gherkin("login", "task_05", "Feature: x\n")

    def test_record_and_list_test_results(self, workspace, login_tasks, spec_result_factory):
        workspace.save_feature("login", login_tasks, spec_result_factory())
        first = workspace.record_test_results(GherkinRunResult(feature_name="login", passed=1, failed=1))
        second = workspace.record_test_results(
            GherkinRunResult(
                feature_name="login",
                task_id="task_01",
                passed=2,
                coverage=87.5,
                details=[ScenarioResult("Valid credentials", ScenarioOutcome.PASSED)],
            )
        )

        runs = workspace.list_test_results("login")
        assert [run.id for run in runs] == [second.id, first.id]
        assert runs[0].details[0].status is ScenarioOutcome.PASSED
        assert runs[0].coverage == 87.5
        assert [run.id for run in workspace.list_test_results("login", task_id="task_01")] == [second.id]
        assert len(workspace.list_test_results("login", limit=1)) == 1

    def test_record_test_results_rejects_bad_input(self, workspace, login_tasks, spec_result_factory):
        workspace.save_feature("login", login_tasks, spec_result_factory())

        with pytest.raises(InvalidInputError):
            workspace.record_test_results(GherkinRunResult(feature_name="login", passed=-1))
        with pytest.raises(NotFoundError):
            workspace.record_test_results(GherkinRunResult(feature_name="login", task_id="task_09"))
        with pytest.raises(NotFoundError):
            workspace.record_test_results(GherkinRunResult(feature_name="nope"))
        assert workspace.list_test_results("login") == []
