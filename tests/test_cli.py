"""Tests for the Typer CLI."""

import json

import pytest
from typer.testing import CliRunner

from companion.cli import app
from companion.config import CompanionConfig
from companion.exceptions import ConfigError
from companion.orchestrator import TaskHistory
from companion.persistence import KeyValueStore
from companion.state import TaskResult, TaskStatus, TaskType

runner = CliRunner()


@pytest.fixture
def config(tmp_path, monkeypatch):
    config = CompanionConfig(history_db_path=str(tmp_path / "history.db"))
    monkeypatch.setattr("companion.cli.commands.load_config", lambda: config)
    return config


class TestHistoryCommand:
    """Tests for `companion history`."""

    def test_empty(self, config):
        result = runner.invoke(app, ["history"])
        assert result.exit_code == 0
        assert "No tasks in history" in result.output

    def test_json(self, config):
        with KeyValueStore(config.history_db_path) as store:
            TaskHistory(store).push(
                TaskResult(task_id="task_1_abc", type=TaskType.FIX, success=False, duration=5, status=TaskStatus.FAILED)
            )
        result = runner.invoke(app, ["history", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.output)[0]["task_id"] == "task_1_abc"


class TestRunPlanCommand:
    """Tests for `companion run-plan`."""

    def test_unreadable_file(self, config, tmp_path):
        result = runner.invoke(app, ["run-plan", str(tmp_path / "missing.json")])
        assert result.exit_code == 1
        assert "Cannot read plan" in result.output

    def test_not_a_plan(self, config, tmp_path):
        plan = tmp_path / "plan.json"
        plan.write_text(json.dumps({"steps": "nope"}))
        result = runner.invoke(app, ["run-plan", str(plan)])
        assert result.exit_code == 1
        assert "Plan file must contain a list of steps" in result.output

    def test_runs_steps(self, config, tmp_path):
        workspace = tmp_path / "ws"
        workspace.mkdir()
        plan = tmp_path / "plan.json"
        plan.write_text(
            json.dumps(
                {
                    "type": "test",
                    "steps": [
                        {"name": "Look around", "type": "analysis"},
                        {"name": "Write notes", "type": "file_operation",
                         "parameters": {"operation": "create", "file_path": "notes.txt", "content": "hi"}},
                    ],
                }
            )
        )
        result = runner.invoke(app, ["run-plan", str(plan), "-w", str(workspace), "-v"])
        assert result.exit_code == 0, result.output
        assert "completed" in result.output
        assert (workspace / "notes.txt").read_text() == "hi"

        with KeyValueStore(config.history_db_path) as store:
            assert TaskHistory(store).snapshot()[-1].type == TaskType.TEST

    def test_blocked_step_exits_non_zero(self, config, tmp_path):
        plan = tmp_path / "plan.json"
        plan.write_text(json.dumps([{"name": "Wipe", "type": "terminal_command", "parameters": {"command": "rm -rf /"}}]))
        result = runner.invoke(app, ["run-plan", str(plan), "-w", str(tmp_path)])
        assert result.exit_code == 1
        assert "Dangerous command detected" in result.output


class TestConfigErrors:
    """Tests for configuration failures at startup."""

    def test_bad_config(self, monkeypatch):
        def broken():
            raise ConfigError("Invalid JSON in config.json")

        monkeypatch.setattr("companion.cli.commands.load_config", broken)
        result = runner.invoke(app, ["history"])
        assert result.exit_code == 1
        assert "Configuration error" in result.output

    def test_openai_without_key(self, tmp_path, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        config = CompanionConfig(llm_provider="openai", history_db_path=str(tmp_path / "h.db"))
        monkeypatch.setattr("companion.cli.commands.load_config", lambda: config)
        result = runner.invoke(app, ["chat", "hello"])
        assert result.exit_code == 1
        assert "Provider initialization failed" in result.output
