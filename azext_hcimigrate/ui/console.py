"""Terminal output for az hcimigrate.

Rich renders the styled text, tables and spinners; prompt_toolkit asks the
yes/no questions in front of destructive commands.  Replication states and
health values share one colour map so tables, ``get`` and ``replicate``
show them the same way.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator

from prompt_toolkit import PromptSession
from prompt_toolkit.styles import Style as PTStyle
from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

THEME = Theme({
    "dim": "#888888",
    "muted": "#666666",
    "success": "bright_green",
    "warning": "bright_yellow",
    "info": "bright_cyan",
    "heading": "bright_magenta bold",
    "border": "#555555",
    "path": "bright_cyan",
    "state.initial": "bright_yellow",
    "state.replicating": "bright_cyan",
    "state.protected": "bright_green",
    "state.critical": "bright_red bold",
})

STATE_STYLES = {
    "InitialReplicationInProgress": "state.initial",
    "Replicating": "state.replicating",
    "Protected": "state.protected",
    "ProtectedCritical": "state.critical",
    "Normal": "state.protected",
    "Warning": "warning",
    "Critical": "state.critical",
}

# init plan: + create, ~ update, = unchanged
PLAN_MARKERS = {
    "create": "[success]+[/success]",
    "update": "[warning]~[/warning]",
    "no-op": "[muted]=[/muted]",
}

PROMPT_STYLE = PTStyle.from_dict({"": "#ffffff", "question": "bold"})


class Console:
    """Thin wrapper over a themed Rich console."""

    def __init__(self, rich_console: RichConsole | None = None):
        self._console = rich_console or RichConsole(theme=THEME, highlight=False)

    def print(self, message: str = "", style: str | None = None, **kwargs):
        self._console.print(message, style=style, **kwargs)

    def print_dim(self, message: str):
        self._console.print(message, style="dim")

    def print_success(self, message: str):
        self._console.print(f"[success]✓[/success] {message}")

    def print_warning(self, message: str):
        self._console.print(f"[warning]![/warning] {message}")

    def print_info(self, message: str):
        self._console.print(f"[info]→[/info] {message}")

    def print_header(self, title: str):
        self._console.print()
        self._console.rule(f"[heading]{title}[/heading]", style="border", align="left")

    def styled_state(self, value: str) -> str:
        """Markup *value* with its state/health colour; other text is returned as is."""
        style = STATE_STYLES.get(value)
        return f"[{style}]{value}[/{style}]" if style else value

    def print_plan(self, plan: list[dict]):
        width = max((len(step["resource"]) for step in plan), default=0)
        for step in plan:
            marker = PLAN_MARKERS.get(step["action"], " ")
            self._console.print(f"  {marker} {step['resource']:<{width}}  [path]{step['id']}[/path]")
        if all(step["action"] == "no-op" for step in plan):
            self._console.print("[muted]No changes.[/muted]")

    def print_table(self, title: str, columns: list[str], rows: list[list]):
        table = Table(title=title, title_style="heading", border_style="border")
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*(self.styled_state(str(cell)) for cell in row))
        self._console.print(table)

    def panel(self, content: str, title: str | None = None):
        self._console.print(Panel(content, title=title, border_style="border", padding=(0, 1)))

    @contextmanager
    def spinner(self, message: str) -> Iterator[None]:
        """Spin while the block runs, then leave a line with the elapsed time.

        Nothing is printed on failure; the error is reported by the CLI.
        """
        started = time.monotonic()
        with self._console.status(message, spinner="dots"):
            yield
        elapsed = int(time.monotonic() - started)
        self._console.print(f"[success]✓[/success] {message} [dim]({elapsed // 60}m {elapsed % 60:02d}s)[/dim]")

    def confirm(self, message: str, default: bool = False) -> bool:
        """Ask a yes/no question.  End of input or Ctrl+C means no."""
        hint = "[Y/n]" if default else "[y/N]"
        try:
            answer = PromptSession(style=PROMPT_STYLE).prompt([("class:question", f"{message} {hint} ")])
        except (EOFError, KeyboardInterrupt):
            self._console.print()
            return False
        answer = answer.strip().lower()
        return default if not answer else answer in ("y", "yes")


console = Console()
