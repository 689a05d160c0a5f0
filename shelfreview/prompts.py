"""Operator input and narration helpers shared by the review loop and the reorganizer."""
from __future__ import annotations

from typing import Optional, Sequence

import typer
from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt

from .config import ReviewConfig, console as default_console


class TerminalOperator:
    """Reads the operator's answers from the terminal.

    Anything with the same three methods can stand in for it, which is how the
    tests script a review session.
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or default_console

    def keystroke(self) -> str:
        """Read a single key without waiting for Enter."""
        return typer.getchar()

    def ask(self, prompt: str, default: str = "") -> str:
        answer = Prompt.ask(
            prompt, default=default, show_default=bool(default), console=self.console
        )
        return (answer or "").strip()

    def choose(self, prompt: str, choices: Sequence[str], default: str) -> str:
        return Prompt.ask(prompt, choices=list(choices), default=default, console=self.console)


def narrate(message: str, config: ReviewConfig, console: Optional[Console] = None) -> None:
    """Print a diagnostic line, only in verbose mode. ``message`` is plain text."""
    if config.verbose:
        (console or default_console).print(f"[dim]{escape(message)}[/dim]")
