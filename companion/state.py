"""
Code Companion - Task and Step State Model

Defines tasks, steps, their lifecycle state machines, the typed step
parameter variants, and the immutable context snapshot shared by every
step of a task.

Task transitions:
PLANNING -> ANALYZING (gathering context)
ANALYZING -> PLANNING (context captured, plan requested)
ANALYZING -> EXECUTING (custom plan, no planner)
PLANNING -> EXECUTING (plan ready)
EXECUTING <-> AWAITING_CONFIRMATION (file mutation waiting on approval)
Any non-terminal -> FAILED | CANCELLED
COMPLETED, FAILED, CANCELLED are terminal.

Step transitions are monotonic: PENDING -> RUNNING -> COMPLETED | FAILED.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any

from companion.exceptions import StateTransitionError, UserInputError


class TaskType(str, Enum):
    """Kinds of user-initiated goals."""

    REFACTOR = "refactor"
    IMPLEMENT = "implement"
    FIX = "fix"
    REVIEW = "review"
    TEST = "test"
    DOCUMENT = "document"


class TaskStatus(str, Enum):
    """Lifecycle states for a task."""

    PLANNING = "planning"
    ANALYZING = "analyzing"
    EXECUTING = "executing"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class StepStatus(str, Enum):
    """Lifecycle states for a single step."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepType(str, Enum):
    """Kinds of work a step can perform."""

    CODE_GENERATION = "code_generation"
    FILE_OPERATION = "file_operation"
    TERMINAL_COMMAND = "terminal_command"
    ANALYSIS = "analysis"
    DESIGN = "design"
    TEST = "test"
    DOCUMENTATION = "documentation"


class FileOperation(str, Enum):
    """Mutations a file_operation step can apply."""

    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    REPLACE = "replace"


VALID_TASK_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PLANNING: {
        TaskStatus.ANALYZING,
        TaskStatus.EXECUTING,
        TaskStatus.FAILED,
        TaskStatus.CANCELLED,
    },
    TaskStatus.ANALYZING: {
        TaskStatus.PLANNING,
        TaskStatus.EXECUTING,
        TaskStatus.FAILED,
        TaskStatus.CANCELLED,
    },
    TaskStatus.EXECUTING: {
        TaskStatus.AWAITING_CONFIRMATION,
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
        TaskStatus.CANCELLED,
    },
    TaskStatus.AWAITING_CONFIRMATION: {
        TaskStatus.EXECUTING,
        TaskStatus.FAILED,
        TaskStatus.CANCELLED,
    },
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
    TaskStatus.CANCELLED: set(),
}

VALID_STEP_TRANSITIONS: dict[StepStatus, set[StepStatus]] = {
    StepStatus.PENDING: {StepStatus.RUNNING},
    StepStatus.RUNNING: {StepStatus.COMPLETED, StepStatus.FAILED},
    StepStatus.COMPLETED: set(),
    StepStatus.FAILED: set(),
}


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _pick(raw: dict[str, Any], *keys: str) -> Any:
    """Return the first present key, accepting camelCase and snake_case spellings."""
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _optional_str(raw: dict[str, Any], label: str, *keys: str) -> str | None:
    value = _pick(raw, *keys)
    if value is None:
        return None
    if not isinstance(value, str):
        raise UserInputError(
            f"Parameter '{label}' must be a string",
            {"got": type(value).__name__},
        )
    return value


# =============================================================================
# STEP PARAMETERS
# One variant per step type, validated when constructed from raw dicts.
# =============================================================================


@dataclass
class CodeGenerationParams:
    """Inputs for a code_generation step."""

    goal: str | None = None
    code: str | None = None
    language: str | None = None
    requirements: str | None = None
    file_path: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    _KEYS = {
        "goal": ("goal",),
        "code": ("code", "originalCode", "original_code"),
        "language": ("language",),
        "requirements": ("requirements", "description"),
        "file_path": ("filePath", "file_path"),
    }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> CodeGenerationParams:
        values = {name: _optional_str(raw, name, *keys) for name, keys in cls._KEYS.items()}
        consumed = {key for keys in cls._KEYS.values() for key in keys}
        extras = {k: v for k, v in raw.items() if k not in consumed}
        return cls(**values, extras=extras)

    def to_dict(self) -> dict[str, Any]:
        data = {name: getattr(self, name) for name in self._KEYS if getattr(self, name) is not None}
        data.update(self.extras)
        return data


@dataclass
class FileOperationParams:
    """Inputs for a file_operation step."""

    operation: FileOperation | None = None
    file_path: str | None = None
    content: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> FileOperationParams:
        operation = _pick(raw, "operation")
        if operation is not None:
            try:
                operation = FileOperation(str(operation).lower())
            except ValueError:
                raise UserInputError(
                    f"Unknown file operation: {operation}",
                    {"allowed": [op.value for op in FileOperation]},
                )
        return cls(
            operation=operation,
            file_path=_optional_str(raw, "file_path", "filePath", "file_path", "path"),
            content=_optional_str(raw, "content", "content"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.operation is not None:
            data["operation"] = self.operation.value
        if self.file_path is not None:
            data["file_path"] = self.file_path
        if self.content is not None:
            data["content"] = self.content
        return data


@dataclass
class TerminalCommandParams:
    """Inputs for a terminal_command step."""

    command: str | None = None
    cwd: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TerminalCommandParams:
        return cls(
            command=_optional_str(raw, "command", "command"),
            cwd=_optional_str(raw, "cwd", "cwd"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in (("command", self.command), ("cwd", self.cwd)) if v is not None}


@dataclass
class AnalysisParams:
    """Inputs for analysis and design steps (free-form notes for the prompt)."""

    subject: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> AnalysisParams:
        subject = _pick(raw, "subject", "description", "code")
        extras = {k: v for k, v in raw.items() if k not in ("subject", "description", "code")}
        return cls(subject=str(subject) if subject is not None else None, extras=extras)

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extras)
        if self.subject is not None:
            data["subject"] = self.subject
        return data


@dataclass
class TestParams:
    """Inputs for a test step."""

    target: str | None = None
    framework: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    __test__ = False  # not a pytest class

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TestParams:
        extras = {k: v for k, v in raw.items() if k not in ("target", "framework", "testType")}
        return cls(
            target=_optional_str(raw, "target", "target"),
            framework=_optional_str(raw, "framework", "framework", "testType"),
            extras=extras,
        )

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extras)
        if self.target is not None:
            data["target"] = self.target
        if self.framework is not None:
            data["framework"] = self.framework
        return data


@dataclass
class DocumentationParams:
    """Inputs for a documentation step."""

    content: str | None = None
    file_path: str = "README.md"

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> DocumentationParams:
        return cls(
            content=_optional_str(raw, "content", "content"),
            file_path=_optional_str(raw, "file_path", "filePath", "file_path") or "README.md",
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"file_path": self.file_path}
        if self.content is not None:
            data["content"] = self.content
        return data


@dataclass
class GenericParams:
    """Parameters for step types this version does not know about."""

    values: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> GenericParams:
        return cls(values=dict(raw))

    def to_dict(self) -> dict[str, Any]:
        return dict(self.values)


StepParams = (
    CodeGenerationParams
    | FileOperationParams
    | TerminalCommandParams
    | AnalysisParams
    | TestParams
    | DocumentationParams
    | GenericParams
)

PARAMS_BY_TYPE: dict[StepType, type] = {
    StepType.CODE_GENERATION: CodeGenerationParams,
    StepType.FILE_OPERATION: FileOperationParams,
    StepType.TERMINAL_COMMAND: TerminalCommandParams,
    StepType.ANALYSIS: AnalysisParams,
    StepType.DESIGN: AnalysisParams,
    StepType.TEST: TestParams,
    StepType.DOCUMENTATION: DocumentationParams,
}


def parse_step_type(value: Any) -> StepType | str:
    """Coerce to StepType, keeping unknown names as plain strings."""
    if isinstance(value, StepType):
        return value
    text = str(value or StepType.ANALYSIS.value).strip().lower()
    try:
        return StepType(text)
    except ValueError:
        return text


def parse_step_parameters(step_type: StepType | str, raw: Any) -> StepParams:
    """
    Build the typed parameter variant for a step type.

    Args:
        step_type: The step's type (unknown strings get GenericParams)
        raw: Parameter dict, an existing params object, or None

    Returns:
        The matching params dataclass

    Raises:
        UserInputError: If a parameter has the wrong shape
    """
    params_cls = PARAMS_BY_TYPE.get(step_type, GenericParams) if isinstance(step_type, StepType) else GenericParams
    if isinstance(raw, params_cls):
        return raw
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise UserInputError(
            "Step parameters must be an object",
            {"step_type": str(step_type), "got": type(raw).__name__},
        )
    return params_cls.from_dict(raw)


# =============================================================================
# CONTEXT SNAPSHOT
# =============================================================================


@dataclass(frozen=True)
class GitInfo:
    """Version-control state of the workspace."""

    branch: str
    last_commit: str
    has_uncommitted_changes: bool
    remote_url: str | None = None


@dataclass(frozen=True)
class UserPreferences:
    """Coding preferences forwarded to prompts."""

    coding_style: str = "functional"
    framework: str | None = None
    testing_framework: str | None = None
    documentation_style: str | None = None
    max_line_length: int = 80
    indentation_size: int = 4


@dataclass(frozen=True)
class FileChange:
    """A recent change reported by version control."""

    file_path: str
    change_type: str  # created, modified, deleted
    timestamp: datetime = field(default_factory=datetime.now)
    description: str | None = None


@dataclass(frozen=True)
class TaskContext:
    """
    Immutable snapshot of the workspace, captured once per task.

    Every step of the task sees the same snapshot; it is never re-fetched
    mid-task.
    """

    workspace_root: str | None = None
    current_file: str | None = None
    language: str | None = None
    project_type: str | None = None
    dependencies: tuple[str, ...] = ()
    git_info: GitInfo | None = None
    user_preferences: UserPreferences | None = None
    recent_changes: tuple[FileChange, ...] = ()
    open_files: tuple[str, ...] = ()
    scripts: dict[str, str] = field(default_factory=dict)

    def summary(self) -> str:
        """One-line description used inside prompts."""
        return f"Language: {self.language or 'unknown'}; File: {self.current_file or 'N/A'}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "workspace_root": self.workspace_root,
            "current_file": self.current_file,
            "language": self.language,
            "project_type": self.project_type,
            "dependencies": list(self.dependencies),
            "git_info": (
                {
                    "branch": self.git_info.branch,
                    "last_commit": self.git_info.last_commit,
                    "has_uncommitted_changes": self.git_info.has_uncommitted_changes,
                    "remote_url": self.git_info.remote_url,
                }
                if self.git_info
                else None
            ),
            "user_preferences": (
                {f.name: getattr(self.user_preferences, f.name) for f in fields(UserPreferences)}
                if self.user_preferences
                else None
            ),
            "recent_changes": [
                {
                    "file_path": c.file_path,
                    "change_type": c.change_type,
                    "timestamp": _format_datetime(c.timestamp),
                    "description": c.description,
                }
                for c in self.recent_changes
            ],
            "open_files": list(self.open_files),
            "scripts": dict(self.scripts),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskContext:
        git = data.get("git_info")
        prefs = data.get("user_preferences")
        return cls(
            workspace_root=data.get("workspace_root"),
            current_file=data.get("current_file"),
            language=data.get("language"),
            project_type=data.get("project_type"),
            dependencies=tuple(data.get("dependencies") or ()),
            git_info=GitInfo(**git) if git else None,
            user_preferences=UserPreferences(**prefs) if prefs else None,
            recent_changes=tuple(
                FileChange(
                    file_path=c["file_path"],
                    change_type=c["change_type"],
                    timestamp=_parse_datetime(c.get("timestamp")) or datetime.now(),
                    description=c.get("description"),
                )
                for c in data.get("recent_changes") or ()
            ),
            open_files=tuple(data.get("open_files") or ()),
            scripts=dict(data.get("scripts") or {}),
        )


# =============================================================================
# SAFETY RESULT
# =============================================================================


@dataclass
class SafetyValidation:
    """Outcome of a safety check. Only safe=False blocks execution."""

    safe: bool = True
    reason: str | None = None
    warnings: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "safe": self.safe,
            "reason": self.reason,
            "warnings": list(self.warnings),
            "recommendations": list(self.recommendations),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SafetyValidation:
        return cls(
            safe=bool(data.get("safe", True)),
            reason=data.get("reason"),
            warnings=list(data.get("warnings") or []),
            recommendations=list(data.get("recommendations") or []),
        )


# =============================================================================
# STEPS, TASKS, PLANS, RESULTS
# =============================================================================


@dataclass
class TaskStep:
    """One atomic unit of work within a task."""

    id: str
    name: str
    description: str = ""
    type: StepType | str = StepType.ANALYSIS
    parameters: StepParams | dict[str, Any] | None = None
    status: StepStatus = StepStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: Any = None
    error: str | None = None
    validation: SafetyValidation | None = None

    def __post_init__(self) -> None:
        self.type = parse_step_type(self.type)
        self.parameters = parse_step_parameters(self.type, self.parameters)
        self.status = StepStatus(self.status)

    def transition_to(self, new_status: StepStatus) -> None:
        """
        Move to a new status, enforcing the monotonic step order.

        Raises:
            StateTransitionError: If the move would regress or skip RUNNING
        """
        if new_status not in VALID_STEP_TRANSITIONS[self.status]:
            raise StateTransitionError(
                f"Invalid step transition for {self.id}: "
                f"{self.status.value} -> {new_status.value}",
                from_state=self.status.value,
                to_state=new_status.value,
            )
        self.status = new_status
        if new_status == StepStatus.RUNNING:
            self.started_at = datetime.now()
        else:
            self.completed_at = datetime.now()

    def fresh_copy(self) -> TaskStep:
        """A pending copy carrying only the plan-time fields."""
        return TaskStep(
            id=self.id,
            name=self.name,
            description=self.description,
            type=self.type,
            parameters=parse_step_parameters(self.type, self.parameters.to_dict()),
        )

    @property
    def type_name(self) -> str:
        return self.type.value if isinstance(self.type, StepType) else str(self.type)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type_name,
            "status": self.status.value,
            "started_at": _format_datetime(self.started_at),
            "completed_at": _format_datetime(self.completed_at),
            "result": self.result,
            "error": self.error,
            "parameters": self.parameters.to_dict(),
            "validation": self.validation.to_dict() if self.validation else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskStep:
        validation = data.get("validation")
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            description=data.get("description", ""),
            type=data.get("type", StepType.ANALYSIS.value),
            parameters=data.get("parameters") or {},
            status=StepStatus(data.get("status", StepStatus.PENDING.value)),
            started_at=_parse_datetime(data.get("started_at")),
            completed_at=_parse_datetime(data.get("completed_at")),
            result=data.get("result"),
            error=data.get("error"),
            validation=SafetyValidation.from_dict(validation) if validation else None,
        )


@dataclass
class Plan:
    """Ordered steps plus a duration estimate in seconds."""

    steps: list[TaskStep]
    estimated_duration: int


@dataclass
class Task:
    """A user-initiated goal tracked through its lifecycle while active."""

    id: str
    type: TaskType
    params: dict[str, Any] = field(default_factory=dict)
    status: TaskStatus = TaskStatus.PLANNING
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None
    error: str | None = None
    steps: list[TaskStep] = field(default_factory=list)
    context: TaskContext | None = None
    estimated_duration: int | None = None
    current_step: int | None = None
    progress: float | None = None

    def transition_to(self, new_status: TaskStatus) -> bool:
        """Attempt a transition; returns False if it is not allowed."""
        if new_status in VALID_TASK_TRANSITIONS.get(self.status, set()):
            self.status = new_status
            if new_status.is_terminal:
                self.completed_at = datetime.now()
            return True
        return False

    def require_transition(self, new_status: TaskStatus) -> None:
        """
        Transition to a new status, raising if the move is invalid.

        Raises:
            StateTransitionError: If the transition is not valid
        """
        if not self.transition_to(new_status):
            valid_targets = VALID_TASK_TRANSITIONS.get(self.status, set())
            valid_names = ", ".join(sorted(s.value for s in valid_targets)) or "none"
            raise StateTransitionError(
                f"Invalid task transition: {self.status.value} -> {new_status.value}. "
                f"Valid transitions from {self.status.value}: {valid_names}",
                from_state=self.status.value,
                to_state=new_status.value,
            )

    def set_context(self, context: TaskContext) -> None:
        """Attach the context snapshot. Allowed once per task."""
        if self.context is not None:
            raise StateTransitionError(
                f"Context already captured for task {self.id}",
                from_state="contextualized",
                to_state="contextualized",
            )
        self.context = context

    def update_progress(self, completed_steps: int) -> None:
        total = len(self.steps)
        self.current_step = completed_steps
        self.progress = (completed_steps / total) * 100 if total else 100.0

    @property
    def duration_ms(self) -> int:
        end = self.completed_at or datetime.now()
        return int((end - self.created_at).total_seconds() * 1000)


@dataclass
class TaskResult:
    """Durable history record of a finished task."""

    task_id: str
    type: TaskType
    success: bool
    duration: int  # milliseconds
    status: TaskStatus = TaskStatus.COMPLETED
    results: list[Any] = field(default_factory=list)
    steps: list[TaskStep] = field(default_factory=list)
    error: str | None = None
    context: TaskContext | None = None
    params: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_task(cls, task: Task, results: list[Any] | None = None) -> TaskResult:
        return cls(
            task_id=task.id,
            type=task.type,
            success=task.status == TaskStatus.COMPLETED,
            duration=task.duration_ms,
            status=task.status,
            results=list(results or []),
            steps=list(task.steps),
            error=task.error,
            context=task.context,
            params=dict(task.params),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "type": self.type.value,
            "success": self.success,
            "duration": self.duration,
            "status": self.status.value,
            "results": self.results,
            "steps": [step.to_dict() for step in self.steps],
            "error": self.error,
            "context": self.context.to_dict() if self.context else None,
            "params": self.params,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskResult:
        context = data.get("context")
        success = bool(data.get("success"))
        default_status = TaskStatus.COMPLETED if success else TaskStatus.FAILED
        return cls(
            task_id=data["task_id"],
            type=TaskType(data["type"]),
            success=success,
            duration=int(data.get("duration", 0)),
            status=TaskStatus(data.get("status", default_status.value)),
            results=list(data.get("results") or []),
            steps=[TaskStep.from_dict(s) for s in data.get("steps") or []],
            error=data.get("error"),
            context=TaskContext.from_dict(context) if context else None,
            params=dict(data.get("params") or {}),
        )
