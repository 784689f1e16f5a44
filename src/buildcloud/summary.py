"""
End-of-run report.

One panel: how long it took, which cloud was touched, which image it
now serves, the install account for emergencies, and what to do next.
Reporting is best effort; a failure here never fails the run.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from .provision import ProvisionOutcome

logger = logging.getLogger(__name__)


def format_elapsed(seconds: float) -> str:
    """Wall-clock duration as H:MM:SS."""
    total = max(0, int(round(seconds)))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}:{minutes:02d}:{secs:02d}"


def print_summary(console: Console, outcome: "ProvisionOutcome", elapsed: float) -> None:
    """Print the run summary. Never raises."""
    try:
        _render(console, outcome, elapsed)
    except Exception as exc:
        logger.warning("Could not print summary: %s", exc)


def _render(console: Console, outcome: "ProvisionOutcome", elapsed: float) -> None:
    result = outcome.reconcile

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("", style="dim")
    table.add_column("")
    table.add_row("Elapsed", format_elapsed(elapsed))
    table.add_row("Build cloud", f"[bold]{result.cloud_name}[/] (id {result.cloud_id})")
    table.add_row("Action", result.outcome.value)
    table.add_row("Image", f"{outcome.image.name} ({outcome.image.os_type.value})")
    table.add_row("Disk", outcome.image.vhd_path)
    if outcome.switch_name:
        table.add_row("Switch", outcome.switch_name)
    if outcome.credentials is not None:
        table.add_row("Install user", outcome.credentials.install_user)
        table.add_row("Install password", outcome.credentials.install_password)

    console.print()
    console.print(
        Panel(
            table,
            title="[bold green]Build cloud ready[/]",
            border_style="green",
            padding=(1, 2),
        )
    )
    console.print()
    console.print("  [bold]Next steps[/]")
    console.print(
        f"    1. Open the build cloud [cyan]{result.cloud_name}[/] on the service "
        "and check that the host agent is online."
    )
    console.print(
        f"    2. Set [cyan]image: {outcome.image.name}[/] and the cloud name in your "
        "build configuration to run jobs here."
    )
    if outcome.credentials is not None:
        console.print(
            "    3. Keep the install password somewhere safe; it is not stored anywhere else."
        )
    console.print()
