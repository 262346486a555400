"""Pretty formatting and interactive prompts for CLI output."""

import shutil
import sys
from typing import IO, List, Optional

import click

from ..errors import CancelledByUser

def get_term_width() -> int:
    """Get terminal width, default to 80 if can't detect."""
    try:
        return shutil.get_terminal_size().columns
    except Exception:
        return 80


def header(text: str, use_emoji: bool = True) -> str:
    """Create a boxed header with optional emoji."""
    width = min(get_term_width(), 100)
    h_line = "─" * (width - 2)
    v_line = "│"
    emoji = "🚂 " if use_emoji else ""
    body = f" {emoji}{text}"
    pad = max(width - 2 - len(body), 0)

    result = [
        f"┌{h_line}┐",
        f"{v_line}{body}{' ' * pad}{v_line}",
        f"└{h_line}┘"
    ]
    return "\n".join(result)


def print_header(text: str, use_emoji: bool = True, file: Optional[IO[str]] = None) -> None:
    """Print a header to file (default stdout)."""
    if file is None:
        file = sys.stdout
    print(header(text, use_emoji), file=file)


class Prompter:
    """Interactive channel to the user.

    `interactive` is False when stdin is not a terminal, in which case
    callers must not expect answers and should fail with a hint instead.
    Ctrl+C or EOF inside a prompt becomes CancelledByUser.
    """

    def __init__(self, interactive: Optional[bool] = None):
        self.interactive = sys.stdin.isatty() if interactive is None else interactive

    def confirm(self, message: str, default: bool = False) -> bool:
        try:
            return click.confirm(message, default=default)
        except click.Abort as e:
            raise CancelledByUser(message) from e

    def prompt(self, message: str, default: Optional[str] = None) -> str:
        try:
            return click.prompt(message, default=default)
        except click.Abort as e:
            raise CancelledByUser(message) from e

    def choose(self, message: str, choices: List[str], default: Optional[str] = None) -> str:
        """Ask the user to pick one of `choices` by number."""
        for i, choice in enumerate(choices, start=1):
            click.echo(f"  {i}. {choice}")
        numbers = [str(i) for i in range(1, len(choices) + 1)]
        default_number = str(choices.index(default) + 1) if default in choices else None
        try:
            picked = click.prompt(message, type=click.Choice(numbers), default=default_number,
                                  show_choices=False)
        except click.Abort as e:
            raise CancelledByUser(message) from e
        return choices[int(picked) - 1]

    def edit_file(self, path: str, editor: str) -> None:
        """Open `path` in `editor` and wait for it to exit."""
        click.edit(filename=path, editor=editor)
