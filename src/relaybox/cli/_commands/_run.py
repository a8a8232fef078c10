# pyright: reportUnusedCallResult=false
# ruff: noqa: TC003  # Path needed at runtime for cyclopts parameter parsing
"""Run command: start the engine under the orchestrator until interrupted."""

from __future__ import annotations

import signal
import sys
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import anyio
from cyclopts import App, Parameter

from relaybox.service import ProxyService
from relaybox.supervisor import ConsoleEventSink, ServiceEventType, ServiceState, StartOptions

from ._context import CLIContext
from ._shared import exit_code_for, exit_with_error, get_console

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from relaybox.config import Config
    from relaybox.result import OperationResult
    from relaybox.supervisor import ServiceEvent

app = App(name="run", help="Run the engine until interrupted", help_on_error=True)


async def run_service(
    config: Config,
    options: StartOptions,
    *,
    auto_system_proxy: bool,
    show_output: bool,
    logger: FilteringBoundLogger | None = None,
) -> OperationResult:
    """Start the engine and block until a signal arrives or it gives up.

    The engine is stopped, the system proxy cleared and stray processes
    swept before returning.

    Returns:
        The result of the initial start.
    """
    console = get_console()
    sink = ConsoleEventSink(console, show_output=show_output)
    service = ProxyService.from_config(config, logger=logger)
    shutdown = anyio.Event()

    async def on_event(event: ServiceEvent) -> None:
        await sink.write_event(event)
        if event.event_type is ServiceEventType.STATE_CHANGED and event.state is ServiceState.ERROR:
            shutdown.set()

    async def handle_signals() -> None:
        if sys.platform == "win32":
            # No signal receiver on Windows; Ctrl-C surfaces as KeyboardInterrupt.
            await anyio.sleep_forever()
        with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
            async for _signum in signals:
                shutdown.set()
                break

    service.events.subscribe(on_event)
    async with service:
        await service.set_auto_system_proxy(auto_system_proxy)
        result = await service.start(options)
        if not result:
            return result

        console.print(
            f"[green]Engine running[/green] (pid {service.get_status().pid}, "
            f"control API {service.api_url}). Press Ctrl-C to stop."
        )
        async with anyio.create_task_group() as tg:
            tg.start_soon(handle_signals)
            await shutdown.wait()
            tg.cancel_scope.cancel()
        console.print("Shutting down...")
    return result


@app.default
def run(
    *,
    engine_config: Annotated[
        Path | None,
        Parameter(name=["--engine-config", "-c"], help="Engine JSON config file."),
    ] = None,
    clean_cache: Annotated[
        bool,
        Parameter(help="Delete the engine cache database before starting."),
    ] = False,
    system_proxy: Annotated[
        bool | None,
        Parameter(help="Follow the engine state with the system proxy."),
    ] = None,
) -> None:
    """Start the engine and keep it running until Ctrl-C.

    The engine config defaults to the file written by the previous run in
    the engine config directory.
    """
    ctx = CLIContext.get_current()
    config = ctx.config
    config_path = engine_config or (
        config.to_engine_config().config_directory
        / config.to_supervisor_settings().config_file_name
    )
    options = StartOptions(config_path=config_path, clean_cache=clean_cache)
    auto = config.proxy.auto_system_proxy if system_proxy is None else system_proxy

    result = anyio.run(
        partial(
            run_service,
            config,
            options,
            auto_system_proxy=auto,
            show_output=ctx.verbose,
            logger=ctx.logger,
        )
    )
    if not result:
        exit_with_error(result.error or "Engine failed to start", exit_code_for(result.kind))
