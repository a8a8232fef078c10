"""Orchestrator wiring the supervisor, system proxy and telemetry together."""

from __future__ import annotations

from contextlib import AsyncExitStack
from typing import TYPE_CHECKING, Self, final

from relaybox.exceptions import ErrorKind
from relaybox.result import OperationResult
from relaybox.supervisor import (
    EngineSupervisor,
    ProcessSweeper,
    ProxyMode,
    ServiceEvent,
    ServiceEventType,
    ServiceState,
    ServiceStatus,
    StartOptions,
    StopOptions,
)
from relaybox.sysproxy import (
    DEFAULT_PROXY_HOST,
    DEFAULT_PROXY_PORT,
    SystemProxyCoordinator,
    create_settings_store,
)
from relaybox.telemetry import ControlApiClient, TrafficPoller, TrafficSnapshot
from relaybox.utils import EventHub, create_null_logger

if TYPE_CHECKING:
    from collections.abc import Mapping
    from types import TracebackType

    from structlog.typing import FilteringBoundLogger

    from relaybox.config import Config
    from relaybox.supervisor import StraySweeper
    from relaybox.telemetry import ConnectionInfo

CLEANUP_STOP_TIMEOUT = 3.0


@final
class ProxyService:
    """Runs the engine and keeps the host proxy and telemetry in step with it.

    When the engine reaches RUNNING the service enables the system proxy
    (in auto mode) and starts the traffic poller. When it reaches IDLE or
    ERROR the poller stops and the proxy is disabled (in auto mode).

    Every supervisor event is forwarded unchanged through ``events`` and
    every traffic sample through ``traffic``.

    Attributes:
        events: Hub republishing supervisor ServiceEvents.
        traffic: Hub republishing poller TrafficSnapshots.
    """

    __slots__ = (
        "_auto_system_proxy",
        "_client",
        "_coordinator",
        "_keep_proxy",
        "_logger",
        "_poller",
        "_proxy_host",
        "_proxy_port",
        "_selector_group",
        "_stack",
        "_supervisor",
        "_sweeper",
        "events",
        "traffic",
    )

    def __init__(  # noqa: PLR0913
        self,
        supervisor: EngineSupervisor,
        coordinator: SystemProxyCoordinator,
        poller: TrafficPoller,
        client: ControlApiClient,
        *,
        auto_system_proxy: bool = True,
        proxy_host: str = DEFAULT_PROXY_HOST,
        proxy_port: int = DEFAULT_PROXY_PORT,
        selector_group: str = "PROXY",
        sweeper: StraySweeper | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the service from already-built components.

        Args:
            supervisor: Engine process supervisor.
            coordinator: System proxy coordinator.
            poller: Traffic poller reading from ``client``.
            client: Control API client.
            auto_system_proxy: Follow the engine state with the system proxy.
            proxy_host: Host written to the system proxy.
            proxy_port: Port written to the system proxy.
            selector_group: Selector group targeted by ``switch_node``.
            sweeper: Kills stray engine processes during cleanup.
            logger: Logger; the service binds ``component="service"``.
        """
        self._supervisor = supervisor
        self._coordinator = coordinator
        self._poller = poller
        self._client = client
        self._auto_system_proxy = auto_system_proxy
        self._proxy_host = proxy_host
        self._proxy_port = proxy_port
        self._selector_group = selector_group
        self._logger = (logger or create_null_logger()).bind(component="service")
        self._sweeper: StraySweeper = sweeper or ProcessSweeper(
            settle_delay=supervisor.settings.settle_delay, logger=logger
        )
        self._keep_proxy = False
        self._stack: AsyncExitStack | None = None
        self.events: EventHub[ServiceEvent] = EventHub("service", logger=self._logger)
        self.traffic: EventHub[TrafficSnapshot] = EventHub("traffic", logger=self._logger)

    @classmethod
    def from_config(
        cls,
        config: Config,
        *,
        logger: FilteringBoundLogger | None = None,
    ) -> Self:
        """Build the service and all of its components from configuration."""
        supervisor = EngineSupervisor(
            config.to_engine_config(),
            config.to_supervisor_settings(),
            logger=logger,
        )
        store = create_settings_store(
            config.proxy.settings_backend,
            config.settings_path,
            logger=logger,
        )
        coordinator = SystemProxyCoordinator(
            store,
            bypass_list=config.proxy.bypass_list,
            logger=logger,
        )
        client = ControlApiClient(
            supervisor.api_url,
            secret=config.engine.control_api_secret,
            request_timeout=config.telemetry.request_timeout,
            logger=logger,
        )
        poller = TrafficPoller(client, interval=config.telemetry.poll_interval, logger=logger)
        return cls(
            supervisor,
            coordinator,
            poller,
            client,
            auto_system_proxy=config.proxy.auto_system_proxy,
            proxy_host=config.proxy.host,
            proxy_port=config.proxy.port,
            selector_group=config.telemetry.selector_group,
            logger=logger,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def init(self) -> None:
        """Enter the components and subscribe to their events.

        Raises:
            RuntimeError: If the service is already initialized.
        """
        if self._stack is not None:
            msg = "ProxyService is already initialized"
            raise RuntimeError(msg)
        stack = AsyncExitStack()
        _ = await stack.enter_async_context(self._client)
        _ = await stack.enter_async_context(self._supervisor)
        _ = await stack.enter_async_context(self._poller)
        stack.callback(self._supervisor.events.subscribe(self._on_service_event))
        stack.callback(self._poller.snapshots.subscribe(self.traffic.publish))
        self._stack = stack
        self._logger.debug("service_initialized")

    async def shutdown(self) -> None:
        """Run cleanup and release every component. No-op if not initialized."""
        stack = self._stack
        if stack is None:
            return
        try:
            await self.cleanup()
        finally:
            self._stack = None
            await stack.aclose()
        self._logger.debug("service_shut_down")

    async def __aenter__(self) -> Self:
        await self.init()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    # -------------------------------------------------------------------------
    # Event wiring
    # -------------------------------------------------------------------------

    async def _on_service_event(self, event: ServiceEvent) -> None:
        await self.events.publish(event)
        if event.event_type is not ServiceEventType.STATE_CHANGED:
            return
        if event.state is ServiceState.RUNNING:
            await self._on_running()
        elif event.state in (ServiceState.IDLE, ServiceState.ERROR):
            await self._on_halted(event.state)

    async def _on_running(self) -> None:
        if self._auto_system_proxy:
            _ = await self._coordinator.enable(self._proxy_host, self._proxy_port)
        await self._client.configure(
            self._supervisor.api_url,
            secret=self._supervisor.config.control_api_secret,
        )
        self._poller.start()

    async def _on_halted(self, state: ServiceState | None) -> None:
        self._poller.stop()
        # A stop that keeps the proxy only covers the IDLE it produces; ERROR always clears.
        keep = self._keep_proxy and state is ServiceState.IDLE
        if self._auto_system_proxy and not keep:
            _ = await self._coordinator.disable()

    # -------------------------------------------------------------------------
    # Engine control
    # -------------------------------------------------------------------------

    @property
    def supervisor(self) -> EngineSupervisor:
        """Return the engine supervisor."""
        return self._supervisor

    @property
    def auto_system_proxy(self) -> bool:
        """Return whether the system proxy follows the engine state."""
        return self._auto_system_proxy

    @property
    def api_url(self) -> str:
        """Return the base URL of the engine control API."""
        return self._supervisor.api_url

    def get_status(self) -> ServiceStatus:
        """Return a snapshot of the engine runtime status."""
        return self._supervisor.get_status()

    def get_state(self) -> ServiceState:
        """Return the engine lifecycle state."""
        return self._supervisor.state

    def is_running(self) -> bool:
        """Check whether the engine is confirmed running."""
        return self._supervisor.is_running()

    async def start(self, options: StartOptions | None = None) -> OperationResult:
        """Start the engine."""
        return await self._supervisor.start(options)

    async def stop(self, options: StopOptions | None = None) -> OperationResult:
        """Stop the poller, then the engine, then optionally the system proxy.

        The system proxy is disabled only in auto mode and when
        ``options.clear_proxy`` is set.
        """
        options = options or StopOptions()
        self._poller.stop()
        self._keep_proxy = True
        try:
            result = await self._supervisor.stop(options)
        finally:
            self._keep_proxy = False
        if options.clear_proxy and self._auto_system_proxy:
            _ = await self._coordinator.disable()
        return result

    async def restart(self, options: StartOptions | None = None) -> OperationResult:
        """Restart the engine, leaving the system proxy in place."""
        self._keep_proxy = True
        try:
            return await self._supervisor.restart(options)
        finally:
            self._keep_proxy = False

    async def cleanup(self) -> None:
        """Tear everything down before exit.

        Stops the poller, force-stops the engine, disables the system proxy
        and kills stray engine processes. Each step is best-effort.
        """
        self._logger.info("service_cleanup_started")
        self._poller.stop()
        try:
            _ = await self._supervisor.stop(
                StopOptions(force=True, timeout=CLEANUP_STOP_TIMEOUT)
            )
        except Exception as e:  # noqa: BLE001
            self._logger.warning("cleanup_stop_failed", error=str(e))
        try:
            _ = await self._coordinator.disable()
        except Exception as e:  # noqa: BLE001
            self._logger.warning("cleanup_proxy_disable_failed", error=str(e))
        try:
            _ = await self._sweeper.sweep(self._supervisor.config.process_name)
        except Exception as e:  # noqa: BLE001
            self._logger.warning("cleanup_sweep_failed", error=str(e))
        self._logger.info("service_cleanup_completed")

    async def set_mode(self, mode: ProxyMode) -> OperationResult:
        """Store the proxy mode and apply it to the running engine.

        Returns:
            Failure with kind ``network_error`` if the running engine
            rejected the mode; the mode is stored either way.
        """
        await self._supervisor.set_mode(mode)
        if not self._supervisor.is_running():
            return OperationResult.ok()
        if await self._client.set_mode(mode.value):
            return OperationResult.ok()
        return OperationResult.fail(ErrorKind.NETWORK_ERROR, "Engine rejected mode change")

    async def switch_node(self, tag: str) -> OperationResult:
        """Select the active outbound of the configured selector group."""
        if not self._supervisor.is_running():
            return OperationResult.fail(ErrorKind.INVALID_STATE, "Engine is not running")
        if await self._client.select_outbound(tag, self._selector_group):
            self._logger.info("node_switched", tag=tag, group=self._selector_group)
            return OperationResult.ok()
        return OperationResult.fail(ErrorKind.NETWORK_ERROR, f"Failed to select node {tag}")

    # -------------------------------------------------------------------------
    # System proxy
    # -------------------------------------------------------------------------

    async def enable_system_proxy(self, host: str | None = None, port: int | None = None) -> bool:
        """Enable the system proxy, defaulting to the configured address."""
        return await self._coordinator.enable(host or self._proxy_host, port or self._proxy_port)

    async def disable_system_proxy(self) -> bool:
        """Disable the system proxy."""
        return await self._coordinator.disable()

    def is_system_proxy_enabled(self) -> bool:
        """Return whether the system proxy was last enabled by this service."""
        return self._coordinator.is_enabled()

    async def set_auto_system_proxy(self, enabled: bool) -> None:  # noqa: FBT001
        """Turn auto mode on or off; turning it off clears an enabled proxy."""
        self._auto_system_proxy = enabled
        if not enabled and self._coordinator.is_enabled():
            _ = await self._coordinator.disable()

    async def update_config(
        self,
        *,
        engine: Mapping[str, object] | None = None,
        auto_system_proxy: bool | None = None,
        proxy_port: int | None = None,
    ) -> None:
        """Update engine, auto-proxy and proxy-port settings.

        Engine changes take effect on the next start; the control API
        client follows the new address immediately.

        Args:
            engine: EngineConfig field names and their new values.
            auto_system_proxy: New auto mode flag.
            proxy_port: New port written to the system proxy.
        """
        if engine:
            self._supervisor.set_config(**engine)
            await self._client.configure(
                self._supervisor.api_url,
                secret=self._supervisor.config.control_api_secret,
            )
        if auto_system_proxy is not None:
            self._auto_system_proxy = auto_system_proxy
        if proxy_port is not None:
            self._proxy_port = proxy_port

    # -------------------------------------------------------------------------
    # Telemetry
    # -------------------------------------------------------------------------

    def get_traffic_snapshot(self) -> TrafficSnapshot:
        """Return the latest traffic sample."""
        return self._poller.get_snapshot()

    async def get_connections(self) -> list[ConnectionInfo]:
        """Return the engine's live connections."""
        return await self._client.get_connections()

    async def close_connection(self, connection_id: str) -> bool:
        """Close one engine connection."""
        return await self._client.close_connection(connection_id)

    async def close_all_connections(self) -> bool:
        """Close every engine connection."""
        return await self._client.close_all_connections()
