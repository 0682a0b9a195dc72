"""Shared fixtures for Companion tests."""

from typing import Any

import pytest

from companion.agent.context import ContextProvider
from companion.llm.provider import LLMProvider
from companion.logging import LogConfig, reset_loggers, set_config
from companion.state import TaskContext


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path):
    """Send JSONL logs to a per-test directory."""
    set_config(LogConfig(log_dir=tmp_path / "logs"))
    reset_loggers()
    yield
    reset_loggers()


class FakeLLM(LLMProvider):
    """Provider returning queued responses (or raising queued exceptions)."""

    name = "fake"

    def __init__(self, responses: list[Any] | None = None, default: str = "generated"):
        self.responses = list(responses or [])
        self.default = default
        self.prompts: list[str] = []
        self.disposed = False

    async def generate(self, prompt: str, options: dict[str, Any] | None = None) -> str:
        self.prompts.append(prompt)
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, BaseException):
                raise response
            return response
        return self.default

    async def dispose(self) -> None:
        self.disposed = True


class StaticContext(ContextProvider):
    """Context provider returning a fixed snapshot."""

    def __init__(self, context: TaskContext):
        self.context = context
        self.calls = 0

    async def analyze(self, params: dict[str, Any]) -> TaskContext:
        self.calls += 1
        return self.context


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "proj"
    root.mkdir()
    return root


@pytest.fixture
def context(workspace):
    return TaskContext(workspace_root=str(workspace), language="python")


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def make_llm():
    return FakeLLM


@pytest.fixture
def make_context_provider():
    return StaticContext
