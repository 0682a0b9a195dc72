"""
Companion Orchestrator

Task lifecycle, step loop, confirmation gate and bounded history.
"""

from companion.orchestrator.history import HISTORY_KEY, TaskHistory
from companion.orchestrator.manager import (
    OrchestratorCallbacks,
    PendingConfirmation,
    TaskOrchestrator,
    generate_task_id,
)

__all__ = [
    "HISTORY_KEY",
    "OrchestratorCallbacks",
    "PendingConfirmation",
    "TaskHistory",
    "TaskOrchestrator",
    "generate_task_id",
]
