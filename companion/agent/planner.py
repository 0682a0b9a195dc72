"""
Planner - turns a task into an ordered list of steps

Asks the language model for a JSON plan. Any failure (provider error,
unparseable response, empty step list, malformed parameters) falls back
to a deterministic plan for the task type, so planning never fails.
"""

import logging
from typing import Any

from companion.agent.parser import parse_plan_response
from companion.agent.prompts import build_planning_prompt
from companion.exceptions import PlanParseError, ProviderError, UserInputError
from companion.llm.provider import LLMProvider
from companion.state import Plan, StepType, TaskContext, TaskStep, TaskType

logger = logging.getLogger(__name__)

DEFAULT_PLAN_DURATION = 300  # seconds, when the model omits an estimate
SECONDS_PER_FALLBACK_STEP = 60


def build_steps(raw_steps: list[dict[str, Any]]) -> list[TaskStep]:
    """
    Build pending TaskSteps from raw dicts, defaulting missing fields.

    Raises:
        UserInputError: If a step's parameters have the wrong shape
    """
    steps = []
    for index, raw in enumerate(raw_steps, start=1):
        steps.append(
            TaskStep(
                id=str(raw.get("id") or f"step_{index}"),
                name=str(raw.get("name") or f"Step {index}"),
                description=str(raw.get("description") or ""),
                type=raw.get("type") or StepType.ANALYSIS,
                parameters=raw.get("parameters") or {},
            )
        )
    return steps


def _step(index: int, name: str, description: str, step_type: StepType, parameters: dict[str, Any]) -> TaskStep:
    # Drop unset values so typed params keep their defaults
    clean = {k: v for k, v in parameters.items() if v is not None}
    return TaskStep(
        id=f"step_{index}",
        name=name,
        description=description,
        type=step_type,
        parameters=clean,
    )


def default_plan(task_type: TaskType, params: dict[str, Any], context: TaskContext) -> Plan:
    """Deterministic plan used whenever the model's plan is unusable."""
    code = params.get("code")
    file_path = params.get("filePath") or params.get("file_path")

    if task_type == TaskType.REFACTOR:
        steps = [
            _step(1, "Analyze Code", "Analyze the selected code for refactoring opportunities",
                  StepType.ANALYSIS, {"code": code, "language": context.language}),
            _step(2, "Generate Refactored Code", "Generate improved version of the code",
                  StepType.CODE_GENERATION,
                  {"code": code, "goal": "improve readability and maintainability"}),
            _step(3, "Apply Changes", "Apply the refactored code to the file",
                  StepType.FILE_OPERATION, {"file_path": file_path, "operation": "replace"}),
        ]
    elif task_type == TaskType.IMPLEMENT:
        description = params.get("description")
        steps = [
            _step(1, "Analyze Requirements", "Analyze the feature requirements",
                  StepType.ANALYSIS, {"description": description}),
            _step(2, "Design Solution", "Design the implementation approach",
                  StepType.ANALYSIS, {}),
            _step(3, "Generate Implementation", "Generate the feature implementation",
                  StepType.CODE_GENERATION, {"requirements": description}),
            _step(4, "Create Tests", "Generate tests for the new feature",
                  StepType.CODE_GENERATION, {"testType": "unit"}),
            _step(5, "Update Documentation", "Generate or update project README and docs",
                  StepType.DOCUMENTATION, {}),
        ]
    elif task_type == TaskType.FIX:
        error_message = params.get("errorMessage") or params.get("error_message")
        steps = [
            _step(1, "Analyze Error", "Analyze the error message and stack trace",
                  StepType.ANALYSIS,
                  {"errorMessage": error_message,
                   "stackTrace": params.get("stackTrace") or params.get("stack_trace")}),
            _step(2, "Generate Fix", "Generate the fix for the identified issue",
                  StepType.CODE_GENERATION, {"code": code, "error": error_message}),
            _step(3, "Apply Fix", "Apply the fix to the file",
                  StepType.FILE_OPERATION, {"file_path": file_path, "operation": "replace"}),
        ]
    elif task_type == TaskType.REVIEW:
        steps = [
            _step(1, "Code Analysis", "Analyze the code for quality, security, and performance issues",
                  StepType.ANALYSIS, {"code": code, "language": context.language}),
            _step(2, "Generate Review Report", "Generate a comprehensive code review report",
                  StepType.CODE_GENERATION, {"reviewType": "comprehensive", "code": code}),
        ]
    else:
        steps = [
            _step(1, "Analyze Task", "Analyze the task requirements",
                  StepType.ANALYSIS, {"taskType": task_type.value, "params": params}),
            _step(2, "Execute Task", "Execute the requested task",
                  StepType.CODE_GENERATION, {"taskType": task_type.value, "params": params}),
        ]

    return Plan(steps=steps, estimated_duration=len(steps) * SECONDS_PER_FALLBACK_STEP)


class Planner:
    """Creates step plans from the language model, with a deterministic fallback."""

    def __init__(self, llm: LLMProvider):
        self.llm = llm

    async def create_plan(self, task_type: TaskType, params: dict[str, Any], context: TaskContext) -> Plan:
        """
        Create a plan for a task. Never raises for model or parse failures.

        Args:
            task_type: Kind of task
            params: Task parameters as given by the caller
            context: The task's context snapshot

        Returns:
            Plan with pending steps and a duration estimate in seconds
        """
        prompt = build_planning_prompt(task_type, params, context)

        try:
            response = await self.llm.generate(prompt)
            raw_steps, duration = parse_plan_response(response)
            steps = build_steps(raw_steps)
        except (ProviderError, PlanParseError, UserInputError) as e:
            logger.warning(f"Using default {task_type.value} plan: {e}")
            return default_plan(task_type, params, context)

        return Plan(steps=steps, estimated_duration=duration or DEFAULT_PLAN_DURATION)
