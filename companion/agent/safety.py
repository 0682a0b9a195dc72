"""
Safety Validator - pre-execution gate for steps

Every step passes validate_step() before the executor runs it. Only three
things block a step:
- a dangerous shell command
- delete/replace of a sensitive path
- a file path or command cwd that resolves outside the workspace root

Everything else (uncommitted changes, huge payloads, recursive globs) is
advisory and only adds warnings. The rules live in a SafetyPolicy so they
can be swapped without touching the validator.
"""

import logging
import os
import re
from collections.abc import Callable
from dataclasses import dataclass, field

from companion.state import (
    DocumentationParams,
    FileOperation,
    FileOperationParams,
    SafetyValidation,
    StepType,
    TaskContext,
    TaskStep,
    TerminalCommandParams,
)

logger = logging.getLogger(__name__)


# =============================================================================
# PATH HELPERS
# Shared with the executor so both sides agree on what a path means.
# =============================================================================


def resolve_workspace_path(path: str, workspace_root: str | None) -> str:
    """Absolute, normalized form of path; relative paths are joined to the workspace root."""
    if not os.path.isabs(path) and workspace_root:
        path = os.path.join(workspace_root, path)
    return os.path.normpath(os.path.abspath(path))


def is_within_workspace(path: str, workspace_root: str) -> bool:
    """True if path is the workspace root or lies below it (component-wise, not by prefix)."""
    root = os.path.realpath(os.path.normpath(os.path.abspath(workspace_root)))
    target = os.path.realpath(resolve_workspace_path(path, workspace_root))
    try:
        return os.path.commonpath([root, target]) == root
    except ValueError:
        # Different drives on Windows
        return False


def infer_file_operation(operation: FileOperation | None, resolved_path: str) -> FileOperation:
    """Missing operations become replace for existing files and create otherwise."""
    if operation is not None:
        return operation
    return FileOperation.REPLACE if os.path.exists(resolved_path) else FileOperation.CREATE


# =============================================================================
# RULES
# =============================================================================


@dataclass(frozen=True)
class SafetyRule:
    """
    One pattern check.

    kind is "substring" (case-insensitive containment) or "regex".
    scope selects which input the rule is applied to:
    command, sensitive_path, command_glob, code_security, code_credentials,
    code_loop, structure.
    """

    name: str
    pattern: str
    kind: str = "substring"
    severity: str = "critical"
    blocking: bool = True
    scope: str = "command"
    message: str = ""
    recommendation: str = ""
    ignore_case: bool = True

    def matches(self, text: str) -> bool:
        if self.kind == "substring":
            if self.ignore_case:
                return self.pattern.lower() in text.lower()
            return self.pattern in text
        return re.search(self.pattern, text, self._flags) is not None

    def count(self, text: str) -> int:
        if self.kind == "substring":
            return text.count(self.pattern)
        return len(re.findall(self.pattern, text, self._flags))

    @property
    def _flags(self) -> int:
        return re.MULTILINE | (re.IGNORECASE if self.ignore_case else 0)


def _command_rule(name: str, pattern: str, kind: str = "substring") -> SafetyRule:
    return SafetyRule(
        name=name,
        pattern=pattern,
        kind=kind,
        scope="command",
        message="This command could cause data loss or system damage",
        recommendation="Review the command carefully before execution",
    )


def _sensitive_path_rule(entry: str) -> SafetyRule:
    if entry.startswith("."):
        # Dotfile entries cover variants like .env.local but not .github/
        pattern = rf"(^|/){re.escape(entry)}(?=$|[/._-])"
        kind = "regex"
    else:
        pattern = entry
        kind = "substring"
    return SafetyRule(
        name=f"sensitive:{entry}",
        pattern=pattern,
        kind=kind,
        scope="sensitive_path",
        message="This operation could affect project configuration or security",
        recommendation="Backup the file before proceeding",
        ignore_case=False,
    )


def _code_rule(name: str, pattern: str, scope: str, message: str, recommendation: str, ignore_case: bool = False) -> SafetyRule:
    return SafetyRule(
        name=name,
        pattern=pattern,
        kind="regex",
        severity="warning",
        blocking=False,
        scope=scope,
        message=message,
        recommendation=recommendation,
        ignore_case=ignore_case,
    )


DANGEROUS_COMMAND_RULES = (
    _command_rule("recursive-force-delete", r"\brm\s+(-[a-z]*r[a-z]*f|-[a-z]*f[a-z]*r)\b", kind="regex"),
    _command_rule("windows-recursive-delete", "del /s /q"),
    _command_rule("windows-format-drive", r"\bformat(\.com)?\s+[a-z]:", kind="regex"),
    _command_rule("make-filesystem", r"\bmkfs(\.\w+)?\b", kind="regex"),
    _command_rule("zero-fill-device", "dd if=/dev/zero"),
    _command_rule("shred", "shred"),
    _command_rule("wipe", "wipe"),
)

SENSITIVE_PATHS = (
    ".env",
    ".git",
    "node_modules",
    "package-lock.json",
    "yarn.lock",
    "poetry.lock",
    "uv.lock",
    ".vscode/settings.json",
    "config.json",
    "secrets.json",
)

SENSITIVE_PATH_RULES = tuple(_sensitive_path_rule(entry) for entry in SENSITIVE_PATHS)

RECURSIVE_GLOB_RULES = tuple(
    SafetyRule(
        name=f"recursive-glob:{glob}",
        pattern=glob,
        severity="warning",
        blocking=False,
        scope="command_glob",
        message="Recursive operation detected",
        recommendation="Verify the scope of this operation",
        ignore_case=False,
    )
    for glob in ("**", "/*", "\\*")
)

_SECURITY_MESSAGE = "Potential security issue detected in generated code"
_SECURITY_ADVICE = "Review the code for security vulnerabilities"

CODE_SECURITY_RULES = tuple(
    _code_rule(name, pattern, "code_security", _SECURITY_MESSAGE, _SECURITY_ADVICE)
    for name, pattern in (
        ("eval", r"\beval\s*\("),
        ("exec", r"\bexec\s*\("),
        ("system", r"\bsystem\s*\("),
        ("shell_exec", r"shell_exec\s*\("),
        ("passthru", r"passthru\s*\("),
        ("backticks", r"`[^`\n]+`"),
        ("process-exec", r"process\.exec"),
        ("child-process-spawn", r"child_process\.spawn"),
        ("require-http", r"require\s*\(.*http"),
        ("fetch-http", r"fetch\s*\(.*http"),
        ("os-system", r"os\.system\s*\("),
        ("subprocess-shell", r"subprocess\.\w+\(.*shell\s*=\s*True"),
        ("dunder-import", r"__import__\s*\("),
    )
)

CODE_CREDENTIAL_RULES = tuple(
    _code_rule(
        f"credential:{key}",
        rf"{key}\s*=\s*['\"][^'\"]+['\"]",
        "code_credentials",
        "Hardcoded credentials detected",
        "Use environment variables or secure configuration management",
        ignore_case=True,
    )
    for key in ("password", "api_key", "secret", "token")
)

CODE_LOOP_RULES = tuple(
    _code_rule(
        name,
        pattern,
        "code_loop",
        "Potential infinite loop detected",
        "Ensure proper exit conditions are in place",
    )
    for name, pattern in (
        ("while-true", r"while\s*\(\s*true\s*\)"),
        ("for-ever", r"for\s*\(\s*;\s*;\s*\)"),
        ("while-one", r"while\s*\(\s*1\s*\)"),
        ("python-while-true", r"^\s*while\s+(True|1)\s*:"),
    )
)

STRUCTURE_RULES = tuple(
    _code_rule(
        name,
        pattern,
        "structure",
        "Important code patterns may have been removed",
        "Review the refactored code for completeness",
    )
    for name, pattern in (
        ("export", r"export\s+"),
        ("import", r"import\s+"),
        ("function", r"function\s+"),
        ("def", r"\bdef\s+"),
        ("class", r"class\s+"),
        ("return", r"return\s+"),
        ("throw", r"throw\s+"),
        ("raise", r"\braise\s+"),
    )
)


@dataclass
class SafetyPolicy:
    """Swappable rule table plus thresholds."""

    rules: tuple[SafetyRule, ...] = (
        DANGEROUS_COMMAND_RULES
        + SENSITIVE_PATH_RULES
        + RECURSIVE_GLOB_RULES
        + CODE_SECURITY_RULES
        + CODE_CREDENTIAL_RULES
        + CODE_LOOP_RULES
        + STRUCTURE_RULES
    )
    sensitive_operations: frozenset[FileOperation] = field(
        default_factory=lambda: frozenset({FileOperation.DELETE, FileOperation.REPLACE})
    )
    max_content_size: int = 1_000_000  # characters
    max_line_divergence: float = 0.5  # fraction of original line count

    def rules_for(self, scope: str) -> list[SafetyRule]:
        return [rule for rule in self.rules if rule.scope == scope]


class SafetyValidator:
    """Applies a SafetyPolicy to steps and generated code."""

    def __init__(self, policy: SafetyPolicy | None = None):
        self.policy = policy or SafetyPolicy()

    def _apply(
        self,
        validation: SafetyValidation,
        scope: str,
        text: str,
        reason: Callable[[SafetyRule], str],
    ) -> None:
        """Run a scope's rules over text; the first match wins and, if blocking, sets the reason."""
        for rule in self.policy.rules_for(scope):
            if not rule.matches(text):
                continue
            if rule.blocking and validation.safe:
                validation.safe = False
                validation.reason = reason(rule)
            if rule.message and rule.message not in validation.warnings:
                validation.warnings.append(rule.message)
            if rule.recommendation and rule.recommendation not in validation.recommendations:
                validation.recommendations.append(rule.recommendation)
            logger.debug(f"Safety rule '{rule.name}' matched in scope {scope}")
            return

    @staticmethod
    def _path_for_matching(resolved: str, workspace_root: str | None) -> str:
        """Workspace-relative form of an inside path, absolute otherwise, with forward slashes."""
        if workspace_root and is_within_workspace(resolved, workspace_root):
            resolved = os.path.relpath(resolved, os.path.abspath(workspace_root))
        return resolved.replace("\\", "/")

    def is_sensitive(self, path: str, context: TaskContext) -> bool:
        """True if any sensitive-path rule matches the resolved path."""
        resolved = resolve_workspace_path(path, context.workspace_root)
        text = self._path_for_matching(resolved, context.workspace_root)
        return any(rule.matches(text) for rule in self.policy.rules_for("sensitive_path"))

    def _check_boundary(self, validation: SafetyValidation, path: str, context: TaskContext) -> None:
        if not context.workspace_root or is_within_workspace(path, context.workspace_root):
            return
        if validation.safe:
            validation.safe = False
            validation.reason = f"Operation outside workspace boundary: {path}"
        validation.warnings.append("This operation targets files outside the current workspace")
        validation.recommendations.append("Ensure the file path is within the workspace")

    def validate_step(self, step: TaskStep, context: TaskContext) -> SafetyValidation:
        """
        Screen a step before execution.

        Args:
            step: Step about to run
            context: The task's context snapshot

        Returns:
            SafetyValidation; safe=False means the step must not run
        """
        validation = SafetyValidation()
        params = step.parameters

        if step.type == StepType.TERMINAL_COMMAND and isinstance(params, TerminalCommandParams):
            command = params.command or ""
            if command:
                self._apply(
                    validation,
                    "command",
                    command,
                    lambda rule: f"Dangerous command detected ({rule.name}): {command}",
                )
                self._apply(validation, "command_glob", command, lambda rule: "Recursive operation detected")
            if params.cwd:
                self._check_boundary(validation, params.cwd, context)

        if step.type == StepType.FILE_OPERATION and isinstance(params, FileOperationParams):
            # Same fallback the executor uses when the step names no path
            file_path = params.file_path or context.current_file or ""
            if file_path:
                resolved = resolve_workspace_path(file_path, context.workspace_root)
                operation = infer_file_operation(params.operation, resolved)
                if operation in self.policy.sensitive_operations:
                    self._apply(
                        validation,
                        "sensitive_path",
                        self._path_for_matching(resolved, context.workspace_root),
                        lambda rule: f"Attempting to modify sensitive file: {file_path}",
                    )
                self._check_boundary(validation, file_path, context)

            if context.git_info and context.git_info.has_uncommitted_changes:
                validation.warnings.append("There are uncommitted changes in the git repository")
                validation.recommendations.append(
                    "Consider committing or stashing changes before proceeding"
                )

            if params.content and len(params.content) > self.policy.max_content_size:
                validation.warnings.append("Large file operation detected")
                validation.recommendations.append("Consider breaking this into smaller operations")

        if step.type == StepType.DOCUMENTATION and isinstance(params, DocumentationParams):
            self._check_boundary(validation, params.file_path, context)

        if not validation.safe:
            logger.warning(f"Step {step.id} blocked: {validation.reason}")

        return validation

    def validate_code_generation(self, code: str, context: TaskContext | None = None) -> SafetyValidation:
        """Advisory scan of generated code. Never blocks."""
        validation = SafetyValidation()
        for scope in ("code_security", "code_credentials", "code_loop"):
            for rule in self.policy.rules_for(scope):
                if rule.matches(code):
                    validation.warnings.append(rule.message)
                    validation.recommendations.append(rule.recommendation)
                    break
        return validation

    def validate_refactoring(self, original: str, refactored: str) -> SafetyValidation:
        """Advisory comparison of code before and after a refactor. Never blocks."""
        validation = SafetyValidation()

        original_lines = len(original.split("\n"))
        refactored_lines = len(refactored.split("\n"))
        if abs(original_lines - refactored_lines) > original_lines * self.policy.max_line_divergence:
            validation.warnings.append("Significant code structure change detected")
            validation.recommendations.append("Verify that functionality is preserved")

        for rule in self.policy.rules_for("structure"):
            if rule.count(original) > 0 and rule.count(refactored) == 0:
                validation.warnings.append(rule.message)
                validation.recommendations.append(rule.recommendation)
                break

        return validation
