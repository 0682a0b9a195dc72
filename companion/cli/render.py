"""
Rich rendering helpers for the Companion CLI.
"""

import json

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from companion.orchestrator import OrchestratorCallbacks
from companion.state import Plan, StepStatus, Task, TaskResult, TaskStatus, TaskStep

console = Console()

STATUS_STYLES = {
    TaskStatus.PLANNING: "cyan",
    TaskStatus.ANALYZING: "cyan",
    TaskStatus.EXECUTING: "blue",
    TaskStatus.AWAITING_CONFIRMATION: "yellow",
    TaskStatus.COMPLETED: "green",
    TaskStatus.FAILED: "red",
    TaskStatus.CANCELLED: "yellow",
}

STEP_ICONS = {
    StepStatus.PENDING: "[dim]·[/dim]",
    StepStatus.RUNNING: "[blue]>[/blue]",
    StepStatus.COMPLETED: "[green]✓[/green]",
    StepStatus.FAILED: "[red]✗[/red]",
}


def show_plan(plan: Plan) -> None:
    table = Table(show_header=True, header_style="bold", title="Execution plan")
    table.add_column("#", style="dim", width=3)
    table.add_column("Step", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Description")
    for index, step in enumerate(plan.steps, start=1):
        table.add_row(str(index), step.name, step.type_name, step.description)
    console.print(table)
    console.print(f"[dim]Estimated duration: {plan.estimated_duration}s[/dim]")


def show_diff(file_path: str, operation: str, diff: str) -> None:
    body = Syntax(diff or "(no textual changes)", "diff", theme="ansi_dark", word_wrap=True)
    console.print(Panel(body, title=f"{operation}: {file_path}", border_style="yellow"))


def _format_step_result(step: TaskStep) -> str | None:
    result = step.result
    if not isinstance(result, dict):
        return None
    if "generated_code" in result:
        return result["generated_code"]
    if result.get("cancelled"):
        return f"change to {result.get('file_path')} declined"
    if "operation" in result:
        return f"{result['operation']} {result.get('file_path', '')}"
    if "stdout" in result:
        return result["stdout"].strip() or None
    if "analysis" in result:
        return result["analysis"]
    return json.dumps(result)


def show_result(result: TaskResult, verbose: bool = False) -> None:
    style = STATUS_STYLES.get(result.status, "white")
    lines = [
        f"[bold]Task:[/bold] {result.task_id}",
        f"[bold]Type:[/bold] {result.type.value}",
        f"[bold]Status:[/bold] [{style}]{result.status.value}[/{style}]",
        f"[bold]Duration:[/bold] {result.duration}ms",
    ]
    if result.error:
        lines.append(f"[bold red]Error:[/bold red] {result.error}")
    console.print(Panel("\n".join(lines), border_style=style))

    for step in result.steps:
        icon = STEP_ICONS.get(step.status, "?")
        console.print(f"  {icon} {step.name} [dim]({step.type_name})[/dim]")
        if step.validation and step.validation.warnings:
            for warning in step.validation.warnings:
                console.print(f"      [yellow]! {warning}[/yellow]")
        if step.error:
            console.print(f"      [red]{step.error}[/red]")
        elif verbose:
            summary = _format_step_result(step)
            if summary:
                console.print(f"      [dim]{summary[:2000]}[/dim]")


def show_history(results: list[TaskResult]) -> None:
    if not results:
        console.print("[dim]No tasks in history[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Task ID", style="cyan")
    table.add_column("Type", style="magenta")
    table.add_column("Status")
    table.add_column("Steps", justify="right")
    table.add_column("Duration", justify="right", style="dim")
    table.add_column("Error", style="red")

    for result in reversed(results):
        style = STATUS_STYLES.get(result.status, "white")
        done = sum(1 for s in result.steps if s.status == StepStatus.COMPLETED)
        table.add_row(
            result.task_id,
            result.type.value,
            f"[{style}]{result.status.value}[/{style}]",
            f"{done}/{len(result.steps)}",
            f"{result.duration / 1000:.1f}s",
            (result.error or "")[:60],
        )
    console.print(table)


def progress_callbacks() -> OrchestratorCallbacks:
    """Callbacks that print status changes and step progress."""
    last_status: dict[str, TaskStatus] = {}

    def on_task_update(task: Task) -> None:
        if last_status.get(task.id) == task.status:
            return
        last_status[task.id] = task.status
        style = STATUS_STYLES.get(task.status, "white")
        console.print(f"[{style}]{task.status.value}[/{style}] [dim]{task.id}[/dim]")

    def on_step_update(task: Task, step: TaskStep) -> None:
        if step.status == StepStatus.RUNNING:
            console.print(f"  {STEP_ICONS[step.status]} {step.name}")
        elif step.status == StepStatus.FAILED:
            console.print(f"  {STEP_ICONS[step.status]} {step.name}: [red]{step.error}[/red]")

    return OrchestratorCallbacks(on_task_update=on_task_update, on_step_update=on_step_update)
