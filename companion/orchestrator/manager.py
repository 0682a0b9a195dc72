"""
Task Orchestrator - lifecycle owner for coding tasks

Flow for submit_task():
1. Create the task in PLANNING and add it to the active set
2. ANALYZING: capture the context snapshot (exactly once)
3. PLANNING: ask the planner for steps
4. EXECUTING: for each step, check cancellation, validate, execute
5. Record a TaskResult in history and drop the task from the active set

Cancellation is cooperative. cancel_task() marks the task CANCELLED and
removes it from the active set; the step loop notices at its next
iteration. A step waiting on a file-change confirmation is woken and the
change is treated as declined.

File mutations that need approval park the task in AWAITING_CONFIRMATION
with a future. The future is resolved by the confirmation channel, by
resolve_confirmation(), by cancel_task(), or by the optional timeout.
"""

import asyncio
import logging
import threading
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from companion.agent.context import ContextProvider
from companion.agent.executor import ConfirmationRequest, ConfirmCallback, Executor
from companion.agent.planner import Planner, build_steps
from companion.agent.prompts import build_chat_prompt
from companion.agent.safety import SafetyValidator
from companion.exceptions import (
    CancellationError,
    CompanionError,
    SafetyViolation,
    TaskNotFoundError,
    UserInputError,
)
from companion.llm.provider import LLMProvider
from companion.logging import StepLogEntry, TaskLogEntry, now_iso, step_logger, task_logger
from companion.orchestrator.history import DEFAULT_HISTORY_LIMIT, TaskHistory
from companion.persistence import KeyValueStore
from companion.state import (
    FileOperation,
    FileOperationParams,
    SafetyValidation,
    StepStatus,
    StepType,
    Task,
    TaskContext,
    TaskResult,
    TaskStatus,
    TaskStep,
    TaskType,
)

logger = logging.getLogger(__name__)

ConfirmationChannel = Callable[[ConfirmationRequest], Awaitable[bool]]


@dataclass
class OrchestratorCallbacks:
    """Callbacks for orchestrator events to update UI/progress."""

    on_task_update: Callable[[Task], None] | None = None
    on_step_update: Callable[[Task, TaskStep], None] | None = None
    on_history_update: Callable[[TaskResult], None] | None = None
    on_confirmation_request: Callable[[ConfirmationRequest], None] | None = None


@dataclass
class PendingConfirmation:
    """Resumption handle for a task parked in AWAITING_CONFIRMATION."""

    request: ConfirmationRequest
    future: asyncio.Future
    loop: asyncio.AbstractEventLoop


def generate_task_id() -> str:
    return f"task_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _error_message(error: BaseException) -> str:
    if isinstance(error, CompanionError):
        return error.message
    return str(error) or type(error).__name__


class TaskOrchestrator:
    """
    Runs tasks end to end and keeps the active set and history.

    Collaborators are injected; only llm and context_provider are
    required; the rest default to standard implementations.
    """

    def __init__(
        self,
        llm: LLMProvider,
        context_provider: ContextProvider,
        safety: SafetyValidator | None = None,
        executor: Executor | None = None,
        planner: Planner | None = None,
        store: KeyValueStore | None = None,
        callbacks: OrchestratorCallbacks | None = None,
        confirmation_channel: ConfirmationChannel | None = None,
        confirm_changes: bool = True,
        confirmation_timeout: float | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ):
        self.llm = llm
        self.context_provider = context_provider
        self.safety = safety or SafetyValidator()
        self.executor = executor or Executor(llm, confirm_changes=confirm_changes, safety=self.safety)
        self.planner = planner or Planner(llm)
        self.history = TaskHistory(store, limit=history_limit)
        self.callbacks = callbacks or OrchestratorCallbacks()
        self.confirmation_channel = confirmation_channel
        self.confirmation_timeout = confirmation_timeout

        self._active: dict[str, Task] = {}
        self._pending: dict[str, PendingConfirmation] = {}
        self._lock = threading.RLock()

    # =========================================================================
    # NOTIFICATIONS AND LOGGING
    # =========================================================================

    def _emit_task(self, task: Task) -> None:
        if self.callbacks.on_task_update:
            self.callbacks.on_task_update(task)

    def _emit_step(self, task: Task, step: TaskStep) -> None:
        if self.callbacks.on_step_update:
            self.callbacks.on_step_update(task, step)

    def _log_task(self, task: Task, event_type: str, from_state: str | None = None, error: BaseException | None = None) -> None:
        entry = TaskLogEntry(
            timestamp=now_iso(),
            task_id=task.id,
            event_type=event_type,
            task_type=task.type.value,
            from_state=from_state,
            to_state=task.status.value,
            steps_total=len(task.steps),
            steps_completed=sum(1 for s in task.steps if s.status == StepStatus.COMPLETED),
            duration_ms=task.duration_ms,
        )
        if error is not None:
            entry.error = _error_message(error)[:500]
            entry.error_type = type(error).__name__
            task_logger.error(entry.to_json())
        else:
            task_logger.info(entry.to_json())

    def _log_step(self, task: Task, step: TaskStep, status: str, error: BaseException | None = None) -> None:
        duration_ms = 0
        if step.started_at and step.completed_at:
            duration_ms = int((step.completed_at - step.started_at).total_seconds() * 1000)
        entry = StepLogEntry(
            timestamp=now_iso(),
            task_id=task.id,
            step_id=step.id,
            step_type=step.type_name,
            status=status,
            name=step.name,
            duration_ms=duration_ms,
            warnings=list(step.validation.warnings) if step.validation else [],
        )
        if error is not None:
            entry.error = _error_message(error)[:500]
            entry.error_type = type(error).__name__
            step_logger.error(entry.to_json())
        else:
            step_logger.info(entry.to_json())

    # =========================================================================
    # LIFECYCLE HELPERS
    # =========================================================================

    def _create_task(self, task_type: TaskType | str, params: dict[str, Any] | None) -> Task:
        try:
            task_type = TaskType(task_type)
        except ValueError:
            raise UserInputError(
                f"Unknown task type: {task_type}",
                {"allowed": [t.value for t in TaskType]},
            )
        task = Task(id=generate_task_id(), type=task_type, params=dict(params or {}))
        with self._lock:
            self._active[task.id] = task
        logger.info(f"Task {task.id} submitted ({task.type.value})")
        self._log_task(task, "submitted")
        self._emit_task(task)
        return task

    def _ensure_active(self, task: Task) -> None:
        """
        Raises:
            CancellationError: If the task has left the active set
        """
        with self._lock:
            if task.id not in self._active:
                raise CancellationError(f"Task {task.id} was cancelled", task_id=task.id)

    def _transition(self, task: Task, status: TaskStatus) -> None:
        """Move an active task to a new status and notify."""
        with self._lock:
            self._ensure_active(task)
            previous = task.status
            task.require_transition(status)
        self._log_task(task, "state_change", from_state=previous.value)
        self._emit_task(task)

    async def _capture_context(self, task: Task) -> TaskContext:
        self._transition(task, TaskStatus.ANALYZING)
        context = await self.context_provider.analyze(task.params)
        task.set_context(context)
        return context

    def _finish(self, task: Task, results: list[Any], error: BaseException | None = None) -> TaskResult:
        """Settle the terminal status, push to history and leave the active set."""
        with self._lock:
            self._active.pop(task.id, None)
            if error is None and task.status == TaskStatus.CANCELLED:
                # cancel_task landed after the last active check
                error = CancellationError(f"Task {task.id} was cancelled", task_id=task.id)
            if error is None:
                task.require_transition(TaskStatus.COMPLETED)
            elif isinstance(error, (CancellationError, asyncio.CancelledError)):
                task.transition_to(TaskStatus.CANCELLED)
            else:
                task.transition_to(TaskStatus.FAILED)
            if error is not None:
                task.error = _error_message(error)

        result = TaskResult.from_task(task, results)
        self.history.push(result)

        event = "completed" if error is None else task.status.value
        self._log_task(task, event, error=error)
        if error is None:
            logger.info(f"Task {task.id} completed in {result.duration}ms")
        else:
            logger.error(f"Task {task.id} {task.status.value}: {task.error}")

        self._emit_task(task)
        if self.callbacks.on_history_update:
            self.callbacks.on_history_update(result)
        return result

    async def _run(self, task: Task, prepare: Callable[[Task], Awaitable[None]]) -> TaskResult:
        """Run prepare (context + plan) then the step loop, recording the outcome."""
        results: list[Any] = []
        try:
            await prepare(task)
            self._transition(task, TaskStatus.EXECUTING)
            await self._execute_steps(task, results)
            self._ensure_active(task)
        except (Exception, asyncio.CancelledError) as e:
            self._finish(task, results, error=e)
            raise
        result = self._finish(task, results)
        if result.status == TaskStatus.CANCELLED:
            raise CancellationError(f"Task {task.id} was cancelled", task_id=task.id)
        return result

    # =========================================================================
    # STEP LOOP
    # =========================================================================

    async def _execute_steps(self, task: Task, results: list[Any]) -> None:
        context = task.context or TaskContext()
        last_generated: str | None = None

        for index, step in enumerate(task.steps):
            self._ensure_active(task)

            step.transition_to(StepStatus.RUNNING)
            self._emit_step(task, step)

            self._carry_generated_code(step, last_generated)

            validation = self.safety.validate_step(step, context)
            step.validation = validation
            if not validation.safe:
                step.error = validation.reason
                step.transition_to(StepStatus.FAILED)
                violation = SafetyViolation(
                    f"Safety check failed: {validation.reason}",
                    step_id=step.id,
                    warnings=validation.warnings,
                )
                self._log_step(task, step, "blocked", error=violation)
                self._emit_step(task, step)
                raise violation

            try:
                result = await self.executor.execute_step(
                    step, context, confirm=self._confirm_gate(task), task_id=task.id
                )
            except Exception as e:
                step.error = _error_message(e)
                step.transition_to(StepStatus.FAILED)
                self._log_step(task, step, "failed", error=e)
                self._emit_step(task, step)
                raise

            step.result = result
            step.transition_to(StepStatus.COMPLETED)

            if step.type == StepType.CODE_GENERATION and isinstance(result, dict):
                last_generated = result.get("generated_code")
                advisory = self.safety.validate_code_generation(last_generated or "", context)
                step.validation = _merge_validation(validation, advisory)

            results.append(result)
            task.update_progress(index + 1)
            self._log_step(task, step, "completed")
            self._emit_step(task, step)
            self._emit_task(task)

    def _carry_generated_code(self, step: TaskStep, generated: str | None) -> None:
        """File operations without content write the latest generated code."""
        params = step.parameters
        if (
            generated is not None
            and step.type == StepType.FILE_OPERATION
            and isinstance(params, FileOperationParams)
            and params.content is None
            and params.operation != FileOperation.DELETE
        ):
            params.content = generated

    # =========================================================================
    # CONFIRMATION GATE
    # =========================================================================

    def _confirm_gate(self, task: Task) -> ConfirmCallback:
        async def gate(request: ConfirmationRequest) -> bool:
            return await self._await_confirmation(task, request)

        return gate

    async def _await_confirmation(self, task: Task, request: ConfirmationRequest) -> bool:
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        with self._lock:
            self._transition(task, TaskStatus.AWAITING_CONFIRMATION)
            self._pending[task.id] = PendingConfirmation(request=request, future=future, loop=loop)

        logger.info(f"Task {task.id} awaiting confirmation for {request.operation} {request.file_path}")
        if self.callbacks.on_confirmation_request:
            self.callbacks.on_confirmation_request(request)

        channel_task = None
        if self.confirmation_channel is not None:
            channel_task = asyncio.create_task(self.confirmation_channel(request))
            channel_task.add_done_callback(lambda t: self._channel_answered(future, t))

        try:
            approved = await asyncio.wait_for(future, timeout=self.confirmation_timeout)
        except TimeoutError:
            logger.warning(f"Confirmation for {request.file_path} timed out, declining")
            approved = False
        finally:
            with self._lock:
                self._pending.pop(task.id, None)
            if channel_task is not None and not channel_task.done():
                channel_task.cancel()

        with self._lock:
            if task.status == TaskStatus.AWAITING_CONFIRMATION:
                self._transition(task, TaskStatus.EXECUTING)

        return bool(approved)

    @staticmethod
    def _settle(future: asyncio.Future, approved: bool) -> None:
        if not future.done():
            future.set_result(approved)

    @staticmethod
    def _channel_answered(future: asyncio.Future, channel_task: asyncio.Task) -> None:
        if channel_task.cancelled() or future.done():
            return
        error = channel_task.exception()
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(bool(channel_task.result()))

    def get_pending_confirmations(self) -> list[ConfirmationRequest]:
        with self._lock:
            return [pending.request for pending in self._pending.values()]

    def resolve_confirmation(self, task_id: str, approved: bool) -> bool:
        """
        Answer a pending confirmation. Safe to call from any thread.

        Returns:
            False if the task has no pending confirmation
        """
        with self._lock:
            pending = self._pending.get(task_id)
            if pending is None:
                return False
            pending.loop.call_soon_threadsafe(self._settle, pending.future, approved)
        return True

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def submit_task(self, task_type: TaskType | str, params: dict[str, Any] | None = None) -> TaskResult:
        """
        Run a task through context capture, planning and execution.

        Returns:
            The successful TaskResult

        Raises:
            SafetyViolation: A step was blocked
            CancellationError: The task was cancelled
            CompanionError: Any other step failure (also recorded in history)
        """
        task = self._create_task(task_type, params)

        async def prepare(task: Task) -> None:
            context = await self._capture_context(task)
            self._transition(task, TaskStatus.PLANNING)
            plan = await self.planner.create_plan(task.type, task.params, context)
            self._ensure_active(task)
            task.steps = plan.steps
            task.estimated_duration = plan.estimated_duration
            logger.info(f"Task {task.id} planned with {len(plan.steps)} steps")

        return await self._run(task, prepare)

    async def run_custom_plan(
        self,
        task_type: TaskType | str,
        params: dict[str, Any] | None,
        steps: list[TaskStep] | list[dict[str, Any]],
    ) -> TaskResult:
        """Execute caller-supplied steps with the same lifecycle, skipping the planner."""
        if not steps:
            raise UserInputError("A custom plan needs at least one step")
        copies = [s.fresh_copy() if isinstance(s, TaskStep) else build_steps([s])[0] for s in steps]
        task = self._create_task(task_type, params)

        async def prepare(task: Task) -> None:
            await self._capture_context(task)
            task.steps = copies

        return await self._run(task, prepare)

    async def retry_task(self, task_id: str) -> TaskResult:
        """
        Re-plan and re-run a task from history with its original type and params.

        Raises:
            TaskNotFoundError: If the id is not in history
        """
        previous = self.history.find(task_id)
        if previous is None:
            raise TaskNotFoundError("Task not found in history", {"task_id": task_id})
        logger.info(f"Retrying task {task_id}")
        return await self.submit_task(previous.type, dict(previous.params))

    def cancel_task(self, task_id: str) -> bool:
        """
        Cancel an active task. Safe to call from any thread.

        Returns:
            False if the task is not active
        """
        with self._lock:
            task = self._active.pop(task_id, None)
            if task is None:
                return False
            previous = task.status
            task.transition_to(TaskStatus.CANCELLED)
            pending = self._pending.get(task_id)
            if pending is not None:
                pending.loop.call_soon_threadsafe(self._settle, pending.future, False)

        logger.info(f"Task {task_id} cancelled")
        self._log_task(task, "cancel_requested", from_state=previous.value)
        self._emit_task(task)
        return True

    def get_active_tasks(self) -> list[Task]:
        with self._lock:
            return list(self._active.values())

    def get_task_history(self) -> list[TaskResult]:
        return self.history.snapshot()

    def get_task_by_id(self, task_id: str) -> Task | None:
        """Active task by id; None once the task is terminal."""
        with self._lock:
            return self._active.get(task_id)

    async def get_current_context(self) -> TaskContext:
        return await self.context_provider.analyze({})

    async def chat(self, message: str, context: TaskContext | None = None) -> str:
        """One-shot assistant reply."""
        return await self.llm.generate(build_chat_prompt(message, context))

    async def dispose(self) -> None:
        """Cancel everything still active and release the provider."""
        for task in self.get_active_tasks():
            self.cancel_task(task.id)
        await self.llm.dispose()


def _merge_validation(base: SafetyValidation, advisory: SafetyValidation) -> SafetyValidation:
    return SafetyValidation(
        safe=base.safe,
        reason=base.reason,
        warnings=base.warnings + [w for w in advisory.warnings if w not in base.warnings],
        recommendations=base.recommendations
        + [r for r in advisory.recommendations if r not in base.recommendations],
    )
