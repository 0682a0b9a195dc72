"""
Prompt templates for Code Companion

- Planning: turn a task type + parameters into a JSON step plan
- Code generation: produce a code snippet for one step
- Chat: one-shot assistant reply
"""

import json
from typing import Any

from companion.state import TaskContext, TaskType

# =============================================================================
# PLANNING
# =============================================================================

PLANNING_PROMPT = """You are a task planning AI. Create a detailed execution plan for a coding task.

Task Type: {task_type}
Parameters: {params}

Context:
- Workspace: {workspace}
- Language: {language}
- Project Type: {project_type}

Create a JSON response with the following structure:
{{
  "steps": [
    {{
      "id": "step_1",
      "name": "Step name",
      "description": "Detailed description",
      "type": "code_generation|file_operation|terminal_command|analysis|design|test|documentation",
      "parameters": {{}}
    }}
  ],
  "estimatedDuration": 300
}}

Parameter shapes by step type:
- file_operation: {{"operation": "create|modify|delete|replace", "file_path": "...", "content": "..."}}
- terminal_command: {{"command": "...", "cwd": "..."}}
- code_generation: {{"goal": "...", "code": "...", "language": "..."}}

Focus on practical, executable steps. For {task_type} tasks, consider:
{considerations}

Respond only with valid JSON."""

TASK_CONSIDERATIONS: dict[TaskType, list[str]] = {
    TaskType.REFACTOR: [
        "Analyze existing code structure",
        "Identify refactoring opportunities",
        "Generate improved code",
        "Update related files if needed",
        "Run tests to ensure functionality",
    ],
    TaskType.IMPLEMENT: [
        "Analyze requirements",
        "Design solution architecture",
        "Generate implementation code",
        "Create tests",
        "Update documentation",
    ],
    TaskType.FIX: [
        "Analyze error messages",
        "Identify root cause",
        "Generate fix",
        "Test the solution",
        "Verify no regressions",
    ],
    TaskType.REVIEW: [
        "Analyze code quality",
        "Check for security issues",
        "Review performance",
        "Suggest improvements",
        "Provide detailed feedback",
    ],
    TaskType.TEST: [
        "Analyze code to test",
        "Design test cases",
        "Generate test code",
        "Run tests",
        "Report results",
    ],
    TaskType.DOCUMENT: [
        "Analyze code structure",
        "Generate documentation",
        "Update README files",
        "Create examples",
        "Ensure completeness",
    ],
}


def build_planning_prompt(task_type: TaskType, params: dict[str, Any], context: TaskContext) -> str:
    considerations = "\n".join(f"- {item}" for item in TASK_CONSIDERATIONS.get(task_type, []))
    return PLANNING_PROMPT.format(
        task_type=task_type.value,
        params=json.dumps(params, indent=2, default=str),
        workspace=context.workspace_root or "Unknown",
        language=context.language or "Unknown",
        project_type=context.project_type or "Unknown",
        considerations=considerations,
    )


# =============================================================================
# CODE GENERATION
# =============================================================================

CODE_GENERATION_PROMPT = """You are an expert developer AI. Generate ONLY the necessary code snippet to accomplish the following step in the workspace. Do not include explanations or markdown fences.

Step name: {name}
Step description: {description}
Parameters: {params}
Context: {context}

Return just the code."""


def build_code_generation_prompt(
    name: str, description: str, params: dict[str, Any], context: TaskContext
) -> str:
    return CODE_GENERATION_PROMPT.format(
        name=name,
        description=description or "N/A",
        params=json.dumps(params, indent=2, default=str),
        context=context.summary(),
    )


# =============================================================================
# CHAT
# =============================================================================

CHAT_PROMPT = """You are CodeCompanion, an AI coding assistant. Help the user with their request: "{message}"

{context}Provide a helpful, actionable response. If the request involves code changes, explain what you would do and ask for confirmation before proceeding."""


def build_chat_prompt(message: str, context: TaskContext | None = None) -> str:
    lines = []
    if context is not None:
        lines.append("Context:")
        if context.current_file:
            lines.append(f"- Current file: {context.current_file}")
        if context.workspace_root:
            lines.append(f"- Workspace: {context.workspace_root}")
        if context.language:
            lines.append(f"- Language: {context.language}")
        lines.append("")
        lines.append("")
    return CHAT_PROMPT.format(message=message, context="\n".join(lines))
