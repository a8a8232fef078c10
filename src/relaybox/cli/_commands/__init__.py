"""relaybox CLI commands."""
# pyright: reportUnusedCallResult=false

from __future__ import annotations

from typing import TYPE_CHECKING

from ._connections import connections_app, mode_app, node_app
from ._context import CLIContext
from ._kernel import app as kernel_app
from ._proxy import app as proxy_app
from ._run import app as run_app
from ._shared import (
    ExitCode,
    FormattableData,
    exit_code_for,
    exit_with_error,
    exit_with_success,
    format_json,
    get_error_console,
)

if TYPE_CHECKING:
    from cyclopts import App

__all__ = [
    "CLIContext",
    "ExitCode",
    "FormattableData",
    "connections_app",
    "exit_code_for",
    "exit_with_error",
    "exit_with_success",
    "format_json",
    "get_error_console",
    "kernel_app",
    "mode_app",
    "node_app",
    "proxy_app",
    "register_commands",
    "run_app",
]


def register_commands(app: App) -> None:
    app.command(run_app)
    app.command(kernel_app)
    app.command(proxy_app)
    app.command(connections_app)
    app.command(node_app)
    app.command(mode_app)

    @app.command(name="--home")
    def _home() -> None:  # pyright: ignore[reportUnusedFunction]
        """Show the relaybox home directory."""
        from relaybox.utils import get_relaybox_home  # noqa: PLC0415

        print(get_relaybox_home())  # noqa: T201
