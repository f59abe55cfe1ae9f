"""
Shared rich consoles.

Status lines, rules and tables go to stdout; warnings and errors go to
stderr so they survive output redirection of the report tables.
"""

from rich.console import Console
from rich.markup import escape

console = Console()
err_console = Console(stderr=True)


def warn(message: str):
    err_console.print(f"  [yellow][WARNING][/yellow] {escape(message)}")


def error(message: str):
    err_console.print(f"  [red][ERROR][/red] {escape(message)}")
