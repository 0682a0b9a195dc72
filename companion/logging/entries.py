"""
Log Entry Data Structures for Code Companion.

Structured entries for provider calls, step executions and task lifecycle
events. Each entry serializes to a single JSON line.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any


class _JsonEntry:
    """Shared serialization helpers for log entries."""

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(asdict(self), default=str)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        """Create from dictionary, ignoring unknown keys."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class LLMLogEntry(_JsonEntry):
    """Log entry for a language-model provider call."""

    timestamp: str  # ISO 8601
    request_id: str  # UUID for correlating request/response
    provider: str  # "ollama", "openai"
    method: str  # "generate", "generate_stream", "list_models"

    model: str = ""
    prompt: str = ""
    temperature: float = 0.0
    max_tokens: int = 0

    response_content: str = ""
    finish_reason: str = ""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: int = 0

    error: str | None = None
    error_type: str | None = None


@dataclass
class StepLogEntry(_JsonEntry):
    """Log entry for one step execution."""

    timestamp: str
    task_id: str
    step_id: str
    step_type: str
    status: str  # "completed", "failed", "blocked"

    name: str = ""
    duration_ms: int = 0
    warnings: list[str] = field(default_factory=list)

    error: str | None = None
    error_type: str | None = None


@dataclass
class TaskLogEntry(_JsonEntry):
    """Log entry for task lifecycle events."""

    timestamp: str
    task_id: str
    event_type: str  # "submitted", "state_change", "completed", "failed", "cancelled"

    task_type: str = ""
    from_state: str | None = None
    to_state: str | None = None

    steps_total: int = 0
    steps_completed: int = 0
    duration_ms: int = 0

    error: str | None = None
    error_type: str | None = None


def now_iso() -> str:
    """Get current time as ISO 8601 string."""
    return datetime.now().isoformat()
