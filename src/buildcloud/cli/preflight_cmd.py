"""preflight command: show which host tools are present."""

from __future__ import annotations

import click
from rich.table import Table

from ..preflight import run_preflight
from ._common import console


def register_preflight_commands(main: click.Group) -> None:
    """Register the preflight command."""

    @main.command("preflight")
    @click.option("--vhd-path", is_flag=True, help="Check for a run that reuses an existing disk.")
    def preflight(vhd_path: bool):
        """Check that this host has the tools a run needs."""
        result = run_preflight(build_image=not vhd_path)

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Tool", width=12)
        table.add_column("Status", width=12)
        table.add_column("Details")

        for check in result.checks:
            if check.installed:
                status_str = "[green]found[/]"
                detail = check.version or ""
            elif check.required:
                status_str = "[red]missing[/]"
                detail = check.install_cmd or check.install_note
            else:
                status_str = "[dim]not found[/]"
                detail = "[dim]optional[/]"
            table.add_row(f"  {check.name}", status_str, detail)

        console.print()
        console.print(table)
        console.print()

        if not result.all_ok:
            for check in result.required_missing:
                if check.download_url:
                    console.print(f"  [bold]{check.name}[/]: {check.download_url}")
            raise SystemExit(1)
        console.print("  [green]Everything looks good![/]\n")
