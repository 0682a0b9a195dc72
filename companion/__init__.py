"""
Code Companion - plan, screen and execute coding tasks with a language model.

A task is turned into an ordered plan of steps (by the model, or a
deterministic fallback), each step passes a safety gate before it runs,
and every finished task lands in a bounded, persisted history.
"""

__version__ = "0.1.0"

from companion.exceptions import (
    CompanionError,
    ConfigError,
    ExecutionError,
    ProviderError,
    SafetyViolation,
    TaskError,
    UserInputError,
)

__all__ = [
    "__version__",
    "CompanionError",
    "ConfigError",
    "ExecutionError",
    "ProviderError",
    "SafetyViolation",
    "TaskError",
    "UserInputError",
]
