"""Logging and trace correlation for ocipush."""

from __future__ import annotations

from ocipush.telemetry.logging import add_trace_context, configure_logging

__all__ = ["add_trace_context", "configure_logging"]
