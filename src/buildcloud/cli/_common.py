"""Shared utilities for all CLI command modules."""

from __future__ import annotations

import logging

from rich.console import Console

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Route library logging to stderr; DEBUG with --verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )
