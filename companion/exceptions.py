"""
Code Companion - Exception Hierarchy

All Companion-specific exceptions inherit from CompanionError.
Every error carries a human-readable message plus an optional details dict.
"""

from typing import Any


class CompanionError(Exception):
    """Base exception for all Companion errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# Configuration Errors
class ConfigError(CompanionError):
    """Raised when configuration is invalid or missing."""

    pass


# Input Errors
class UserInputError(CompanionError):
    """Raised when a required parameter is missing or malformed (e.g. no command or path)."""

    pass


# Safety Errors
class SafetyViolation(CompanionError):
    """Raised when the safety gate blocks a step."""

    def __init__(
        self,
        message: str,
        step_id: str = "",
        warnings: list[str] | None = None,
    ):
        super().__init__(message, {"step_id": step_id, "warnings": warnings or []})
        self.step_id = step_id
        self.warnings = warnings or []


# Execution Errors
class ExecutionError(CompanionError):
    """Raised when a step fails while performing its side effect."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        stderr: str | None = None,
    ):
        details: dict[str, Any] = {}
        if exit_code is not None:
            details["exit_code"] = exit_code
        if stderr:
            details["stderr"] = stderr[:500]
        super().__init__(message, details)
        self.exit_code = exit_code
        self.stderr = stderr


# Provider (LLM) Errors
class ProviderError(CompanionError):
    """Base exception for language-model provider errors."""

    pass


class ProviderConnectionError(ProviderError):
    """Raised when the provider endpoint cannot be reached."""

    pass


class ProviderTimeoutError(ProviderError):
    """Raised when a provider request times out."""

    def __init__(self, message: str, timeout_seconds: float):
        super().__init__(message, {"timeout_seconds": timeout_seconds})
        self.timeout_seconds = timeout_seconds


class ModelNotFoundError(ProviderError):
    """Raised when the configured model is not available on the provider."""

    def __init__(self, message: str, model: str):
        super().__init__(message, {"model": model})
        self.model = model


class ProviderRateLimitError(ProviderError):
    """Raised when the provider rate limit is hit."""

    def __init__(self, message: str, retry_after: int | None = None):
        super().__init__(message, {"retry_after": retry_after})
        self.retry_after = retry_after


class ProviderResponseError(ProviderError):
    """Raised when the provider returns an unexpected response."""

    pass


# Task Errors
class TaskError(CompanionError):
    """Base exception for task lifecycle errors."""

    pass


class CancellationError(TaskError):
    """Raised when a task is removed from the active set mid-loop."""

    def __init__(self, message: str, task_id: str):
        super().__init__(message, {"task_id": task_id})
        self.task_id = task_id


class TaskNotFoundError(TaskError):
    """Raised when a task id is neither active nor in history."""

    pass


class PlanParseError(TaskError):
    """Raised when a plan response cannot be parsed."""

    pass


# State Errors
class StateTransitionError(CompanionError):
    """Raised when an invalid task or step transition is attempted."""

    def __init__(self, message: str, from_state: str, to_state: str):
        super().__init__(message, {"from_state": from_state, "to_state": to_state})
        self.from_state = from_state
        self.to_state = to_state


# Storage Errors
class StorageError(CompanionError):
    """Raised when the key-value store cannot be read or written."""

    pass
