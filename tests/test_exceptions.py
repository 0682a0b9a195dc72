"""Tests for exceptions module."""

import pytest

from companion.exceptions import (
    CancellationError,
    CompanionError,
    ExecutionError,
    ModelNotFoundError,
    PlanParseError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    SafetyViolation,
    StateTransitionError,
    TaskError,
    TaskNotFoundError,
    UserInputError,
)


class TestCompanionError:
    """Tests for the base exception."""

    def test_message_only(self):
        err = CompanionError("something broke")
        assert str(err) == "something broke"
        assert err.details == {}

    def test_details_in_str(self):
        err = CompanionError("bad", {"key": "value"})
        assert "bad" in str(err)
        assert "key" in str(err)

    def test_catchable_as_base(self):
        with pytest.raises(CompanionError):
            raise UserInputError("missing")


class TestSubclasses:
    """Tests for the structured subclasses."""

    def test_execution_error_carries_exit_code(self):
        err = ExecutionError("Command failed with exit code 3: boom", exit_code=3, stderr="boom")
        assert err.exit_code == 3
        assert err.details == {"exit_code": 3, "stderr": "boom"}

    def test_execution_error_truncates_stderr_in_details(self):
        err = ExecutionError("failed", exit_code=1, stderr="x" * 2000)
        assert len(err.details["stderr"]) == 500
        assert len(err.stderr) == 2000

    def test_safety_violation(self):
        err = SafetyViolation("Safety check failed: nope", step_id="step_1")
        assert err.step_id == "step_1"
        assert err.warnings == []

    def test_provider_errors(self):
        assert isinstance(ProviderTimeoutError("slow", 30.0), ProviderError)
        assert ModelNotFoundError("missing", model="llama").model == "llama"
        assert ProviderRateLimitError("slow down", retry_after=10).retry_after == 10

    def test_task_errors(self):
        assert isinstance(CancellationError("cancelled", task_id="t"), TaskError)
        assert isinstance(TaskNotFoundError("Task not found in history"), TaskError)
        assert isinstance(PlanParseError("no json"), TaskError)

    def test_state_transition_error(self):
        err = StateTransitionError("nope", from_state="completed", to_state="running")
        assert err.from_state == "completed"
        assert err.to_state == "running"
