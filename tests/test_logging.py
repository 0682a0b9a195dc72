"""Tests for the JSONL log channels."""

import json

from companion.logging import (
    LogConfig,
    StepLogEntry,
    TaskLogEntry,
    get_config,
    now_iso,
    reset_loggers,
    set_config,
    step_logger,
    task_logger,
)
from companion.logging.handlers import create_jsonl_logger


def read_lines(path):
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestChannels:
    """Tests for the lazily created channel loggers."""

    def test_entry_written_as_is(self):
        task_logger.info(TaskLogEntry(timestamp=now_iso(), task_id="task_1_abc", event_type="submitted").to_json())
        lines = read_lines(get_config().path_for("task"))
        assert lines[-1]["task_id"] == "task_1_abc"
        assert lines[-1]["event_type"] == "submitted"
        assert "logger" not in lines[-1]

    def test_plain_text_wrapped(self):
        step_logger.warning("disk nearly full")
        line = read_lines(get_config().path_for("step"))[-1]
        assert line["message"] == "disk nearly full"
        assert line["level"] == "WARNING"
        assert line["logger"] == "companion.step"

    def test_entry_from_dict_ignores_unknown_keys(self):
        entry = StepLogEntry.from_dict(
            {"timestamp": "t", "task_id": "a", "step_id": "s", "step_type": "analysis", "status": "completed", "extra": 1}
        )
        assert entry.status == "completed"


class TestCreateJsonlLogger:
    """Tests for create_jsonl_logger."""

    def test_level_filters(self, tmp_path):
        path = tmp_path / "deep" / "x.jsonl"
        logger = create_jsonl_logger("companion.test.level", path, level="warning")
        logger.info("hidden")
        logger.error("shown")
        assert [line["message"] for line in read_lines(path)] == ["shown"]
        assert logger.propagate is False

    def test_rebinding_replaces_handler(self, tmp_path):
        create_jsonl_logger("companion.test.rebind", tmp_path / "a.jsonl")
        logger = create_jsonl_logger("companion.test.rebind", tmp_path / "b.jsonl")
        logger.info("moved")
        assert len(logger.handlers) == 1
        assert read_lines(tmp_path / "b.jsonl")[0]["message"] == "moved"
        assert not (tmp_path / "a.jsonl").read_text()


class TestLogConfig:
    """Tests for LogConfig.from_env."""

    def test_env_overrides(self, tmp_path):
        config = LogConfig.from_env(
            {
                "COMPANION_LOG_LEVEL": "DEBUG",
                "COMPANION_LOG_LEVEL_LLM": "ERROR",
                "COMPANION_LOG_DIR": str(tmp_path),
                "COMPANION_LOG_MAX_SIZE_MB": "2",
            }
        )
        assert config.level_for("step") == "DEBUG"
        assert config.level_for("llm") == "ERROR"
        assert config.path_for("task") == tmp_path / "tasks.jsonl"
        assert config.max_bytes == 2 * 1024 * 1024

    def test_defaults(self):
        config = LogConfig.from_env({})
        assert config.level_for("task") == "INFO"
        assert config.path_for("llm").name == "llm.jsonl"
        assert config.max_bytes == 10 * 1024 * 1024

    def test_bad_size_ignored(self):
        assert LogConfig.from_env({"COMPANION_LOG_MAX_SIZE_MB": "lots"}).max_size_mb == 10

    def test_channel_level_applied(self, tmp_path):
        set_config(LogConfig(log_dir=tmp_path, channel_levels={"step": "ERROR"}))
        reset_loggers()
        step_logger.info("quiet")
        step_logger.error("loud")
        assert [line["message"] for line in read_lines(tmp_path / "steps.jsonl")] == ["loud"]
