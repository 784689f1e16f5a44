"""
buildcloud CLI.

The main Click group is defined here and every subcommand is
registered from its own module.

Entry point: buildcloud.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="buildcloud")
def main():
    """buildcloud — turn this Hyper-V host into a build cloud."""


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .connect import register_connect_commands
from .preflight_cmd import register_preflight_commands

register_connect_commands(main)
register_preflight_commands(main)
