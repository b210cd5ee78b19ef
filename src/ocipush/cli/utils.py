"""CLI output helpers and error reporting.

Errors are printed as plain text on stderr and the process exits with the
error's exit code so CI pipelines can branch on the failure class.

Example:
    from ocipush.cli.utils import error_exit, ExitCode

    error_exit("Registry unavailable", exit_code=ExitCode.NETWORK_ERROR)
"""

from __future__ import annotations

import sys
from enum import IntEnum
from typing import TYPE_CHECKING

import click

from ocipush.oci.errors import OCIError

if TYPE_CHECKING:
    from typing import NoReturn


class ExitCode(IntEnum):
    """Exit codes for CLI commands, one per error class."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    USAGE_ERROR = 2
    """Bad reference, matcher, digest or ambiguous selection."""
    AUTHENTICATION_ERROR = 3
    NOT_FOUND = 4
    NETWORK_ERROR = 5
    """Registry unreachable, write rejected or operation cancelled."""
    ARTIFACT_ERROR = 6
    """Unreadable tarball, invalid layout or unsupported media type."""
    DIGEST_MISMATCH = 7
    RECORD_ERROR = 8


def error(message: str, **context: str | int | bool | None) -> None:
    """Print an error message to stderr.

    Example:
        error("Layout not found", path="/path/to/layout")
        # Output: Error: Layout not found (path=/path/to/layout)
    """
    if context:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items() if v is not None)
        full_message = f"Error: {message} ({context_str})"
    else:
        full_message = f"Error: {message}"

    click.echo(full_message, err=True)


def error_exit(
    message: str,
    exit_code: ExitCode | int = ExitCode.GENERAL_ERROR,
    **context: str | int | bool | None,
) -> NoReturn:
    """Print an error message to stderr and exit with ``exit_code``."""
    error(message, **context)
    sys.exit(int(exit_code))


def fail(e: OCIError) -> NoReturn:
    """Report an OCIError and exit with its exit code."""
    error_exit(str(e), exit_code=e.exit_code)


def success(message: str) -> None:
    """Print a result to stdout."""
    click.echo(message)


__all__: list[str] = [
    "ExitCode",
    "error",
    "error_exit",
    "fail",
    "success",
]
