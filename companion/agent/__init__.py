"""
Companion Agent

Planning, safety screening and execution of individual steps.
"""

from companion.agent.context import ContextAnalyzer, ContextProvider
from companion.agent.executor import ConfirmationRequest, Executor
from companion.agent.planner import Planner, default_plan
from companion.agent.safety import SafetyPolicy, SafetyRule, SafetyValidator

__all__ = [
    "ConfirmationRequest",
    "ContextAnalyzer",
    "ContextProvider",
    "Executor",
    "Planner",
    "SafetyPolicy",
    "SafetyRule",
    "SafetyValidator",
    "default_plan",
]
