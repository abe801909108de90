# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Terminal rendering of provider usage cards.

Reads ProviderState values from a UsageClient and draws them with rich.
No probing logic lives here.
"""

import os
import time
from datetime import datetime
from typing import TYPE_CHECKING, Dict, List, Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from openusage.core.errors import ErrorKind
from openusage.core.types import BadgeLine, MetricLine, ProgressLine, ProviderState, TextLine

if TYPE_CHECKING:
    from openusage.usage_client import UsageClient


# =============================================================================
# DISPLAY CONFIGURATION
# =============================================================================

TABLE_PROVIDER_WIDTH = 12
TABLE_PLAN_WIDTH = 10
TABLE_USAGE_WIDTH = 60
LINE_LABEL_WIDTH = 12
BAR_WIDTH = 20

# Error kinds the user can fix by signing in, shown in yellow instead of red
SIGN_IN_KINDS = {
    ErrorKind.NOT_AUTHENTICATED,
    ErrorKind.REAUTH_REQUIRED,
    ErrorKind.AUTH_RETRY_EXHAUSTED,
}

# =============================================================================


def clear_screen():
    """Clear the terminal screen."""
    os.system("cls" if os.name == "nt" else "clear")


def format_reset_time(iso_time: Optional[str]) -> str:
    """Format ISO time string for display."""
    if not iso_time:
        return "-"
    try:
        dt = datetime.fromisoformat(iso_time.replace("Z", "+00:00"))
        return dt.astimezone().strftime("%b %d %H:%M")
    except (ValueError, AttributeError):
        return iso_time[:16]


def format_cooldown(seconds: int) -> str:
    """Format cooldown seconds as human-readable string."""
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        mins = seconds // 60
        secs = seconds % 60
        return f"{mins}m {secs}s" if secs > 0 else f"{mins}m"
    hours = seconds // 3600
    mins = (seconds % 3600) // 60
    return f"{hours}h {mins}m" if mins > 0 else f"{hours}h"


def create_progress_bar(fraction: Optional[float], width: int = BAR_WIDTH) -> str:
    """Create a text-based progress bar."""
    if fraction is None:
        return "░" * width
    filled = int(max(0.0, min(1.0, fraction)) * width)
    return "▓" * filled + "░" * (width - filled)


def bar_color(fraction: float) -> str:
    if fraction >= 0.9:
        return "red"
    if fraction >= 0.7:
        return "yellow"
    return "green"


def format_amount(value: float, unit: str) -> str:
    if unit == "dollars":
        return f"${value:,.2f}"
    if unit == "percent":
        return f"{value:.0f}%"
    return f"{value:,.0f}"


def format_line(line: MetricLine) -> Text:
    """Render one metric line as a single row of text."""
    text = Text()
    text.append(f"{line.label:<{LINE_LABEL_WIDTH}} ", style="bold")
    if isinstance(line, ProgressLine):
        fraction = line.fraction
        text.append(create_progress_bar(fraction), style=bar_color(fraction))
        if line.unit == "percent":
            text.append(f" {format_amount(line.used, 'percent')}")
        else:
            text.append(
                f" {format_amount(line.used, line.unit)} / {format_amount(line.limit, line.unit)}"
            )
        if line.resets_at:
            text.append(f"  resets {format_reset_time(line.resets_at)}", style="dim")
    elif isinstance(line, BadgeLine):
        text.append(f" {line.text} ", style="reverse")
    elif isinstance(line, TextLine):
        text.append(line.value)
    return text


class UsageViewer:
    """Draws the provider table for a UsageClient."""

    def __init__(self, client: "UsageClient", console: Optional[Console] = None):
        self.client = client
        self.console = console or Console()
        self.last_refresh: Optional[float] = None

    def _usage_cell(self, provider_id: str, state: ProviderState) -> Text:
        cell = Text()
        if state.loading:
            cell.append("Refreshing...", style="cyan")
            return cell
        if state.error is not None:
            style = "yellow" if state.error.kind in SIGN_IN_KINDS else "red"
            cell.append(state.error.message, style=style)
            if state.data is None:
                return cell
            cell.append("\n")
        if state.data is None:
            cell.append("No data yet", style="dim")
            return cell
        rows: List[Text] = [format_line(line) for line in state.data.lines]
        return Text("\n").join(rows)

    def _status_cell(self, provider_id: str) -> Text:
        remaining_ms = self.client.orchestrator.cooldown_remaining_ms(provider_id)
        if remaining_ms > 0:
            return Text(f":stopwatch: {format_cooldown(remaining_ms // 1000)}", style="yellow")
        return Text("ready", style="green")

    def build_table(self, provider_ids: List[str]) -> Table:
        table = Table(box=None, show_header=True, header_style="bold", padding=(0, 1))
        table.add_column("Provider", style="cyan", min_width=TABLE_PROVIDER_WIDTH)
        table.add_column("Plan", min_width=TABLE_PLAN_WIDTH)
        table.add_column("Usage", min_width=TABLE_USAGE_WIDTH)
        table.add_column("Manual", justify="right")

        states: Dict[str, ProviderState] = self.client.states
        for pid in provider_ids:
            state = states.get(pid, ProviderState())
            provider = self.client.runner.get_provider(pid)
            name = provider.display_name if provider else pid
            plan = state.data.plan if state.data and state.data.plan else "-"
            table.add_row(name, plan, self._usage_cell(pid, state), self._status_cell(pid))
        return table

    def show(self, provider_ids: Optional[List[str]] = None, clear: bool = True) -> None:
        """Display the usage summary screen."""
        if clear:
            clear_screen()
        ids = provider_ids if provider_ids is not None else self.client.enabled_ids()

        self.console.print("━" * 78)
        self.console.print("[bold cyan]:chart_with_upwards_trend: AI Tool Usage[/bold cyan]")
        self.console.print("━" * 78)
        if self.last_refresh:
            age_seconds = int(time.time() - self.last_refresh)
            self.console.print(f"[dim]Data age: {age_seconds}s[/dim]")
        self.console.print()

        if not ids:
            self.console.print("[yellow]No providers enabled.[/yellow]")
            return
        self.console.print(self.build_table(ids))
        self.console.print()

    def mark_refreshed(self) -> None:
        self.last_refresh = time.time()
