"""
Interactive input for the Companion CLI.

Uses prompt_toolkit for line input:
- File path prompts with path completion
- Chat input with persistent history

Change confirmations show the diff with rich and ask with Confirm.
"""

from __future__ import annotations

import asyncio

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.completion import PathCompleter
from prompt_toolkit.history import FileHistory
from rich.prompt import Confirm

from companion.agent.executor import ConfirmationRequest
from companion.cli.render import console, show_diff
from companion.config import CONFIG_DIR

CHAT_HISTORY_FILE = CONFIG_DIR / "chat_history"


def create_chat_session() -> PromptSession:
    """Prompt session for chat with history persisted across runs."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    return PromptSession(
        history=FileHistory(str(CHAT_HISTORY_FILE)),
        auto_suggest=AutoSuggestFromHistory(),
    )


async def ask_path(suggestion: str | None) -> str | None:
    """Ask for a file path; empty input means none."""
    session: PromptSession = PromptSession(completer=PathCompleter(expanduser=True))
    try:
        answer = await session.prompt_async(
            "File path for this operation: ",
            default=suggestion or "",
        )
    except (EOFError, KeyboardInterrupt):
        return None
    return answer.strip() or None


async def confirm_change(request: ConfirmationRequest) -> bool:
    """Show the pending change and ask whether to apply it."""
    show_diff(request.file_path, request.operation, request.diff)
    # Confirm.ask blocks on stdin; keep the event loop free for timeouts and cancellation
    approved = await asyncio.to_thread(Confirm.ask, "Apply the displayed changes?", default=False)
    if not approved:
        console.print("[yellow]Change declined[/yellow]")
    return approved
