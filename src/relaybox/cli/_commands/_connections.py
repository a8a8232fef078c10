# pyright: reportUnusedCallResult=false
# ruff: noqa: FBT002
"""Commands talking to a running engine's control API."""

from __future__ import annotations

from dataclasses import asdict
from typing import TYPE_CHECKING, Annotated

import anyio
from cyclopts import App, Parameter
from rich.table import Table

from relaybox.supervisor import ProxyMode
from relaybox.telemetry import ControlApiClient

from ._context import CLIContext
from ._shared import (
    ExitCode,
    exit_with_error,
    exit_with_success,
    get_console,
    print_json,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from relaybox.telemetry import ConnectionInfo

connections_app = App(
    name="connections", help="Inspect and close engine connections", help_on_error=True
)
node_app = App(name="node", help="Select the active outbound node", help_on_error=True)
mode_app = App(name="mode", help="Change the engine routing mode", help_on_error=True)


def create_client() -> ControlApiClient:
    """Build a control API client for the configured engine."""
    ctx = CLIContext.get_current()
    config = ctx.config
    return ControlApiClient(
        config.to_engine_config().api_url,
        secret=config.engine.control_api_secret,
        request_timeout=config.telemetry.request_timeout,
        logger=ctx.logger,
    )


def _run_command(action: Callable[[ControlApiClient], Awaitable[bool]]) -> bool:
    async def run() -> bool:
        async with create_client() as client:
            return await action(client)

    return anyio.run(run)


def _format_bytes(count: int) -> str:
    size = float(count)
    for unit in ("B", "KiB", "MiB"):
        if size < 1024:  # noqa: PLR2004
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GiB"


@connections_app.command(name="list")
def list_connections(
    *,
    json: Annotated[bool, Parameter(help="Output as JSON.")] = False,
) -> None:
    """List the engine's live connections."""

    async def fetch() -> tuple[bool, list[ConnectionInfo]]:
        async with create_client() as client:
            if not await client.ping():
                return False, []
            return True, await client.get_connections()

    reachable, found = anyio.run(fetch)
    if not reachable:
        exit_with_error("Engine control API is not reachable", ExitCode.NETWORK_ERROR)
    if json:
        print_json([asdict(info) for info in found])
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", style="dim", max_width=10, overflow="ellipsis")
    table.add_column("Network")
    table.add_column("Destination")
    table.add_column("Rule", style="cyan")
    table.add_column("Chain")
    table.add_column("Up", justify="right")
    table.add_column("Down", justify="right")
    for info in found:
        table.add_row(
            info.id,
            info.network,
            info.host or info.destination,
            f"{info.matched_rule} {info.rule_payload}".strip(),
            " > ".join(reversed(info.chains)),
            _format_bytes(info.upload_bytes),
            _format_bytes(info.download_bytes),
        )
    get_console().print(table)


@connections_app.command(name="close")
def close_connection(connection_id: str, /) -> None:
    """Close one connection by ID."""
    if not _run_command(lambda client: client.close_connection(connection_id)):
        exit_with_error(f"Failed to close connection {connection_id}", ExitCode.NETWORK_ERROR)
    exit_with_success("[green]Connection closed[/green]")


@connections_app.command(name="close-all")
def close_all_connections() -> None:
    """Close every connection."""
    if not _run_command(lambda client: client.close_all_connections()):
        exit_with_error("Failed to close connections", ExitCode.NETWORK_ERROR)
    exit_with_success("[green]All connections closed[/green]")


@node_app.command(name="switch")
def switch_node(
    tag: str,
    /,
    *,
    group: Annotated[str | None, Parameter(help="Selector group.")] = None,
) -> None:
    """Make TAG the active outbound of the selector group."""
    selector = group or CLIContext.get_current().config.telemetry.selector_group
    if not _run_command(lambda client: client.select_outbound(tag, selector)):
        exit_with_error(f"Failed to select {tag} in {selector}", ExitCode.NETWORK_ERROR)
    exit_with_success(f"[green]{selector} now uses {tag}[/green]")


@mode_app.command(name="set")
def set_mode(mode: ProxyMode, /) -> None:
    """Apply a routing mode to the running engine."""
    if not _run_command(lambda client: client.set_mode(mode.value)):
        exit_with_error(f"Failed to set mode {mode.value}", ExitCode.NETWORK_ERROR)
    exit_with_success(f"[green]Mode set to {mode.value}[/green]")
