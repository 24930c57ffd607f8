"""Interactive prompts for fields left empty on the command line."""

import sys

import click
from prompt_toolkit import prompt


def has_terminal() -> bool:
    return sys.stdin.isatty() and sys.stdout.isatty()


def ask_field(label: str, default: str) -> str:
    """Ask for one request field. An empty answer keeps the default."""
    try:
        return prompt(f"{label} (default: {default}): ")
    except (EOFError, KeyboardInterrupt):
        click.echo("")
        raise click.Abort()


__all__ = [
    "has_terminal",
    "ask_field",
]
