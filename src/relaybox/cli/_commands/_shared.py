# pyright: reportExplicitAny=false
"""Shared CLI utilities for commands.

This module provides common utilities used across CLI command implementations:
- Standardized exit codes and their mapping from operation failures
- JSON output formatting
- Console utilities for error handling
"""

from __future__ import annotations

from enum import IntEnum
from typing import TYPE_CHECKING, Any, Never

import orjson
from rich.console import Console

from relaybox.exceptions import ErrorKind

if TYPE_CHECKING:
    from relaybox.result import OperationResult

FormattableData = dict[str, Any] | list[Any]

__all__ = [
    "ExitCode",
    "FormattableData",
    "exit_code_for",
    "exit_with_error",
    "exit_with_success",
    "format_json",
    "get_console",
    "get_error_console",
    "print_json",
    "report_result",
]


class ExitCode(IntEnum):
    """Standard exit codes for relaybox CLI commands."""

    SUCCESS = 0
    FAILURE = 1
    NOT_FOUND = 3
    NETWORK_ERROR = 4
    INVALID_STATE = 5
    TIMEOUT = 6


_KIND_EXIT_CODES: dict[ErrorKind, ExitCode] = {
    ErrorKind.NOT_FOUND: ExitCode.NOT_FOUND,
    ErrorKind.NETWORK_ERROR: ExitCode.NETWORK_ERROR,
    ErrorKind.DOWNLOAD_FAILURE: ExitCode.NETWORK_ERROR,
    ErrorKind.INVALID_STATE: ExitCode.INVALID_STATE,
    ErrorKind.ALREADY_IN_PROGRESS: ExitCode.INVALID_STATE,
    ErrorKind.TIMEOUT: ExitCode.TIMEOUT,
}


def exit_code_for(kind: ErrorKind | None) -> ExitCode:
    """Map a failure kind to a process exit code."""
    if kind is None:
        return ExitCode.FAILURE
    return _KIND_EXIT_CODES.get(kind, ExitCode.FAILURE)


def format_json(data: FormattableData, *, indent: bool = True) -> str:
    """Format data as JSON.

    Dataclasses, enums and paths are serialized by orjson directly.

    Args:
        data: Data to format as JSON.
        indent: Whether to pretty-print with indentation.

    Returns:
        JSON-formatted string representation.
    """
    options = orjson.OPT_INDENT_2 if indent else 0
    return orjson.dumps(data, option=options, default=str).decode("utf-8")


def get_console() -> Console:
    """Get a Rich console writing to stdout."""
    return Console()


def get_error_console() -> Console:
    """Get a Rich console configured for error output to stderr."""
    return Console(stderr=True)


def print_json(data: FormattableData) -> None:
    """Write data as indented JSON to stdout."""
    print(format_json(data))  # noqa: T201


def exit_with_error(
    message: str,
    code: ExitCode = ExitCode.FAILURE,
    *,
    console: Console | None = None,
) -> Never:
    """Print an error message and exit with the specified code.

    Raises:
        SystemExit: Always raised with the specified exit code.
    """
    if console is None:
        console = get_error_console()
    console.print(f"[red]Error:[/red] {message}")
    raise SystemExit(code)


def exit_with_success(
    message: str | None = None,
    *,
    console: Console | None = None,
) -> Never:
    """Print an optional success message and exit with SUCCESS code.

    Raises:
        SystemExit: Always raised with ExitCode.SUCCESS (0).
    """
    if message is not None:
        if console is None:
            console = get_error_console()
        console.print(message)
    raise SystemExit(ExitCode.SUCCESS)


def report_result(result: OperationResult, success_message: str) -> Never:
    """Exit according to an operation result."""
    if result.success:
        exit_with_success(f"[green]{success_message}[/green]")
    exit_with_error(result.error or "Operation failed", exit_code_for(result.kind))
