# SPDX-FileCopyrightText: 2025-present William Born <william.born.git@gmail.com>

#
# SPDX-License-Identifier: MIT

"""Generic table renderer for the Xanthus CLI."""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

_GOOD = ("running", "deployed", "yes")
_BUSY = ("pending", "deploying", "upgrading")
_BAD = ("error", "failed", "stopped", "off")


def status_style(status: str) -> str:
    """Color for a deployment or server status."""
    value = (status or "").lower()
    if value in _GOOD:
        return "green"
    if value in _BUSY:
        return "yellow"
    if value in _BAD:
        return "red"
    return "white"


class TableRenderer:
    """
    Declarative interface to render tabular data.

    Args:
        console (Console | None): Rich console instance for output
            (optional, creates default if None)
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def render_list(
        self, headers: list[str], rows: list[dict[str, Any]], *, empty: str = "No data to display"
    ) -> None:
        """Render rows keyed by header; a ``Status`` column is color-coded."""
        if not rows:
            self.console.print(f"[dim]{empty}[/dim]")
            return

        table = Table(show_header=True, header_style="bold blue", box=None)
        for header in headers:
            table.add_column(header, style="cyan" if header == headers[0] else "white")

        for row in rows:
            cells = []
            for header in headers:
                value = str(row.get(header, "") if row.get(header) is not None else "-")
                style = status_style(value) if header == "Status" else None
                cells.append(Text(value, style=style) if style else value)
            table.add_row(*cells)

        self.console.print(table)

    def render_key_values(self, title: str, data: dict[str, Any]) -> None:
        """Render a key/value panel view."""
        table = Table(show_header=False, box=None, pad_edge=False)
        for key, value in data.items():
            table.add_row(Text(key, style="bold cyan"), Text(str(value), style="white"))

        panel = Panel(
            table, title=f"[bold blue]{title}[/bold blue]", border_style="blue", padding=(1, 2)
        )
        self.console.print(panel)
