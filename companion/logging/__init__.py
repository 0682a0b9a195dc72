"""
Code Companion Logging System.

Structured JSONL logs for:
- Provider calls (prompts, responses, latency, errors)
- Step executions (status, duration, safety warnings)
- Task lifecycle events (state changes, completion, failure)

Usage:
    from companion.logging import task_logger, TaskLogEntry, now_iso

    entry = TaskLogEntry(timestamp=now_iso(), task_id=task.id, event_type="submitted")
    task_logger.info(entry.to_json())

Logs are written to ~/.companion/logs/ (override with COMPANION_LOG_DIR):
    - llm.jsonl
    - steps.jsonl
    - tasks.jsonl
"""

import threading
from typing import Any

from .config import CHANNEL_FILES, LogConfig, get_config, set_config
from .entries import LLMLogEntry, StepLogEntry, TaskLogEntry, now_iso
from .handlers import create_jsonl_logger

_loggers: dict[str, Any] = {}
_init_lock = threading.Lock()


def _ensure_loggers() -> None:
    """Initialize loggers on first use."""
    if _loggers:
        return

    with _init_lock:
        if _loggers:
            return

        config = get_config()
        for channel in CHANNEL_FILES:
            _loggers[channel] = create_jsonl_logger(
                f"companion.{channel}",
                config.path_for(channel),
                level=config.level_for(channel),
                max_bytes=config.max_bytes,
                backup_count=config.backup_count,
            )


def reset_loggers() -> None:
    """Drop initialized loggers so the next use picks up a new LogConfig."""
    with _init_lock:
        _loggers.clear()


class _LazyLogger:
    """Lazy wrapper that initializes the actual logger on first use."""

    def __init__(self, name: str):
        self._name = name

    def _get_logger(self) -> Any:
        _ensure_loggers()
        return _loggers[self._name]

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._get_logger().error(msg, *args, **kwargs)


llm_logger = _LazyLogger("llm")
step_logger = _LazyLogger("step")
task_logger = _LazyLogger("task")


__all__ = [
    "llm_logger",
    "step_logger",
    "task_logger",
    "LLMLogEntry",
    "StepLogEntry",
    "TaskLogEntry",
    "now_iso",
    "reset_loggers",
    "LogConfig",
    "get_config",
    "set_config",
]
