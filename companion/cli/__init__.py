"""
Companion CLI components.

- commands.py: Typer entry points (run, run-plan, history, retry, chat, models)
- render.py: rich tables, panels and progress callbacks
- prompt.py: path prompts, chat input and change confirmation
"""

from companion.cli.commands import app, chat, history, models, retry, run, run_plan

__all__ = [
    "app",
    "chat",
    "history",
    "models",
    "retry",
    "run",
    "run_plan",
]
