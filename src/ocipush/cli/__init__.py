"""Command-line interface for ocipush."""

from __future__ import annotations

from ocipush.cli.main import cli, main

__all__ = ["cli", "main"]
