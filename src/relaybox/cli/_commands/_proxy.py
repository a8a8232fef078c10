# pyright: reportUnusedCallResult=false
# ruff: noqa: FBT002
"""System proxy commands."""

from __future__ import annotations

from dataclasses import asdict
from typing import Annotated

import anyio
from cyclopts import App, Parameter
from rich.table import Table

from relaybox.sysproxy import SystemProxyCoordinator, create_settings_store

from ._context import CLIContext
from ._shared import ExitCode, exit_with_error, exit_with_success, get_console, print_json

app = App(name="proxy", help="Control the host system proxy", help_on_error=True)


def create_coordinator() -> SystemProxyCoordinator:
    """Build a SystemProxyCoordinator from the active CLI configuration."""
    ctx = CLIContext.get_current()
    config = ctx.config
    try:
        store = create_settings_store(
            config.proxy.settings_backend,
            config.settings_path,
            logger=ctx.logger,
        )
    except (OSError, ValueError) as e:
        exit_with_error(f"Settings store unavailable: {e}", ExitCode.FAILURE)
    return SystemProxyCoordinator(store, bypass_list=config.proxy.bypass_list, logger=ctx.logger)


@app.command(name="enable")
def enable(
    *,
    host: Annotated[str | None, Parameter(help="Proxy host.")] = None,
    port: Annotated[int | None, Parameter(help="Proxy port.")] = None,
) -> None:
    """Point the system proxy at the engine's inbound."""
    config = CLIContext.get_current().config
    coordinator = create_coordinator()
    target_host = host or config.proxy.host
    target_port = port or config.proxy.port

    async def run_enable() -> bool:
        return await coordinator.enable(target_host, target_port)

    if not anyio.run(run_enable):
        exit_with_error("Failed to enable the system proxy")
    exit_with_success(f"[green]System proxy set to {target_host}:{target_port}[/green]")


@app.command(name="disable")
def disable() -> None:
    """Turn the system proxy off."""
    coordinator = create_coordinator()
    if not anyio.run(coordinator.disable):
        exit_with_error("Failed to disable the system proxy")
    exit_with_success("[green]System proxy disabled[/green]")


@app.command(name="status")
def status(
    *,
    json: Annotated[bool, Parameter(help="Output as JSON.")] = False,
) -> None:
    """Show the stored system proxy settings."""
    coordinator = create_coordinator()
    settings = anyio.run(coordinator.get_status)

    if json:
        print_json(asdict(settings))
        return

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("Enabled", "[green]yes[/green]" if settings.enabled else "no")
    table.add_row("Server", f"{settings.server_host}:{settings.server_port}")
    table.add_row("Bypass", "; ".join(settings.bypass_list))
    get_console().print(table)
