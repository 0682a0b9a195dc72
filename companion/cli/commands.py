"""
Companion CLI - Typer Commands

Every command builds its collaborators explicitly (provider, context
analyzer, executor, store) and runs inside a single asyncio.run() call.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import typer

from companion.agent.context import ContextAnalyzer
from companion.agent.executor import Executor
from companion.cli.prompt import ask_path, confirm_change, create_chat_session
from companion.cli.render import console, progress_callbacks, show_history, show_plan, show_result
from companion.config import CompanionConfig, load_config
from companion.exceptions import CompanionError, ConfigError, TaskNotFoundError
from companion.llm import create_provider
from companion.orchestrator import TaskHistory, TaskOrchestrator
from companion.persistence import KeyValueStore
from companion.state import TaskType

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="companion",
    help="Plan, screen and execute coding tasks with a local or hosted language model",
    add_completion=False,
    no_args_is_help=True,
)


def _load_config() -> CompanionConfig:
    try:
        return load_config()
    except ConfigError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        raise typer.Exit(1)


def _build_orchestrator(
    config: CompanionConfig,
    workspace: Path,
    current_file: str | None = None,
    confirm: bool = True,
) -> TaskOrchestrator:
    try:
        llm = create_provider(config)
    except ConfigError as e:
        console.print(f"[bold red]Provider initialization failed:[/bold red] {e}")
        raise typer.Exit(1)

    confirm_changes = config.confirm_changes and confirm
    analyzer = ContextAnalyzer(
        workspace,
        current_file=current_file,
        preferences=config.user_preferences,
    )
    executor = Executor(llm, confirm_changes=confirm_changes, path_prompt=ask_path)
    return TaskOrchestrator(
        llm,
        analyzer,
        executor=executor,
        store=KeyValueStore(Path(config.history_db_path)),
        callbacks=progress_callbacks(),
        confirmation_channel=confirm_change,
        confirm_changes=confirm_changes,
        confirmation_timeout=config.confirmation_timeout,
        history_limit=config.history_limit,
    )


def _task_params(
    description: str | None,
    code: str | None,
    file: str | None,
    error_message: str | None,
    stack_trace: str | None,
    workspace: Path,
) -> dict[str, Any]:
    params: dict[str, Any] = {}
    if description:
        params["description"] = description
    if file:
        params["filePath"] = file
        path = Path(file) if Path(file).is_absolute() else workspace / file
        if code is None and path.is_file():
            code = path.read_text(encoding="utf-8", errors="replace")
    if code is not None:
        params["code"] = code
    if error_message:
        params["errorMessage"] = error_message
    if stack_trace:
        params["stackTrace"] = stack_trace
    return params


async def _run_and_dispose(orchestrator: TaskOrchestrator, coro) -> Any:
    try:
        return await coro
    finally:
        await orchestrator.dispose()


def _report_failure(orchestrator: TaskOrchestrator, error: CompanionError) -> None:
    history = orchestrator.get_task_history()
    if history:
        show_result(history[-1])
    console.print(f"[bold red]Task failed:[/bold red] {error.message}")


@app.command()
def run(
    task_type: TaskType = typer.Argument(..., help="Task type"),
    description: str = typer.Option(None, "--description", "-d", help="What to do"),
    file: str = typer.Option(None, "--file", "-f", help="Target file (relative to the workspace)"),
    code: str = typer.Option(None, "--code", help="Code to work on (default: contents of --file)"),
    error_message: str = typer.Option(None, "--error", help="Error message (fix tasks)"),
    stack_trace: str = typer.Option(None, "--stack-trace", help="Stack trace (fix tasks)"),
    workspace: Path = typer.Option(Path("."), "--workspace", "-w", help="Workspace root"),
    plan_only: bool = typer.Option(False, "--plan-only", help="Print the plan without executing"),
    no_confirm: bool = typer.Option(False, "--no-confirm", help="Apply file changes without asking"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show step results"),
) -> None:
    """Plan and run a task."""
    config = _load_config()
    workspace = workspace.resolve()
    params = _task_params(description, code, file, error_message, stack_trace, workspace)
    orchestrator = _build_orchestrator(config, workspace, current_file=file, confirm=not no_confirm)

    if plan_only:
        async def plan():
            context = await orchestrator.context_provider.analyze(params)
            return await orchestrator.planner.create_plan(task_type, params, context)

        with console.status("[bold blue]Planning...[/bold blue]"):
            result = asyncio.run(_run_and_dispose(orchestrator, plan()))
        show_plan(result)
        return

    try:
        result = asyncio.run(_run_and_dispose(orchestrator, orchestrator.submit_task(task_type, params)))
    except CompanionError as e:
        _report_failure(orchestrator, e)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Task cancelled[/yellow]")
        raise typer.Exit(130)

    show_result(result, verbose=verbose)


@app.command(name="run-plan")
def run_plan(
    plan_file: Path = typer.Argument(..., help="JSON file with steps"),
    task_type: TaskType = typer.Option(None, "--type", "-t", help="Task type (overrides the file)"),
    workspace: Path = typer.Option(Path("."), "--workspace", "-w", help="Workspace root"),
    no_confirm: bool = typer.Option(False, "--no-confirm", help="Apply file changes without asking"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show step results"),
) -> None:
    """
    Run a custom plan, skipping the planner.

    The file holds either a list of steps or
    {"type": "...", "params": {...}, "steps": [...]}.
    """
    try:
        data = json.loads(plan_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[bold red]Cannot read plan:[/bold red] {e}")
        raise typer.Exit(1)

    if isinstance(data, list):
        data = {"steps": data}
    if not isinstance(data, dict) or not isinstance(data.get("steps"), list):
        console.print("[bold red]Plan file must contain a list of steps[/bold red]")
        raise typer.Exit(1)

    resolved_type = task_type or data.get("type") or TaskType.IMPLEMENT
    config = _load_config()
    orchestrator = _build_orchestrator(config, workspace.resolve(), confirm=not no_confirm)

    try:
        result = asyncio.run(
            _run_and_dispose(
                orchestrator,
                orchestrator.run_custom_plan(resolved_type, data.get("params") or {}, data["steps"]),
            )
        )
    except CompanionError as e:
        _report_failure(orchestrator, e)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Task cancelled[/yellow]")
        raise typer.Exit(130)

    show_result(result, verbose=verbose)


@app.command()
def history(
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """Show finished tasks, most recent first."""
    config = _load_config()
    with KeyValueStore(Path(config.history_db_path)) as store:
        results = TaskHistory(store, limit=config.history_limit).snapshot()

    if as_json:
        console.print_json(json.dumps([r.to_dict() for r in results], default=str))
    else:
        show_history(results)


@app.command()
def retry(
    task_id: str = typer.Argument(..., help="Task ID from history"),
    workspace: Path = typer.Option(Path("."), "--workspace", "-w", help="Workspace root"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show step results"),
) -> None:
    """Re-plan and re-run a task from history."""
    config = _load_config()
    orchestrator = _build_orchestrator(config, workspace.resolve())

    try:
        result = asyncio.run(_run_and_dispose(orchestrator, orchestrator.retry_task(task_id)))
    except TaskNotFoundError as e:
        console.print(f"[bold red]{e.message}:[/bold red] {task_id}")
        raise typer.Exit(1)
    except CompanionError as e:
        _report_failure(orchestrator, e)
        raise typer.Exit(1)

    show_result(result, verbose=verbose)


@app.command()
def chat(
    message: str = typer.Argument(None, help="Message (omit for an interactive session)"),
    workspace: Path = typer.Option(Path("."), "--workspace", "-w", help="Workspace root"),
    file: str = typer.Option(None, "--file", "-f", help="Current file for context"),
) -> None:
    """Ask the assistant a question."""
    config = _load_config()
    orchestrator = _build_orchestrator(config, workspace.resolve(), current_file=file)

    async def one_shot() -> str:
        context = await orchestrator.get_current_context()
        return await orchestrator.chat(message, context)

    async def interactive() -> None:
        session = create_chat_session()
        context = await orchestrator.get_current_context()
        console.print("[dim]Type /quit to exit[/dim]")
        while True:
            try:
                text = await session.prompt_async("you> ")
            except (EOFError, KeyboardInterrupt):
                break
            text = text.strip()
            if not text:
                continue
            if text in ("/quit", "/exit", "/q"):
                break
            with console.status("[bold blue]Thinking...[/bold blue]"):
                reply = await orchestrator.chat(text, context)
            console.print(reply)

    try:
        if message:
            with console.status("[bold blue]Thinking...[/bold blue]"):
                reply = asyncio.run(_run_and_dispose(orchestrator, one_shot()))
            console.print(reply)
        else:
            asyncio.run(_run_and_dispose(orchestrator, interactive()))
    except CompanionError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def models() -> None:
    """List models available on the configured provider."""
    config = _load_config()
    try:
        llm = create_provider(config)
    except ConfigError as e:
        console.print(f"[bold red]Provider initialization failed:[/bold red] {e}")
        raise typer.Exit(1)

    async def fetch() -> list[str]:
        try:
            return await llm.list_models()
        finally:
            await llm.dispose()

    try:
        with console.status(f"[bold blue]Querying {llm.name}...[/bold blue]"):
            names = asyncio.run(fetch())
    except CompanionError as e:
        console.print(f"[bold red]{llm.name} failed:[/bold red] {e}")
        raise typer.Exit(1)

    if not names:
        console.print("[dim]No models reported[/dim]")
        return
    for name in names:
        console.print(f"  {name}")
