"""Engine process supervisor.

This module provides the EngineSupervisor class that owns the engine
process handle and drives it through the lifecycle state machine:

    IDLE -> STARTING -> RUNNING -> STOPPING -> IDLE
    STARTING -> ERROR
    RUNNING -> STARTING (crash, restart scheduled) | ERROR (budget exhausted)
    ERROR -> STARTING

State changes are applied synchronously before any await so concurrent
callers observe them immediately; the matching events are published
afterwards through ``EngineSupervisor.events``.
"""

from __future__ import annotations

import subprocess
from typing import TYPE_CHECKING, Self, final

import anyio
from anyio.streams.text import TextReceiveStream

from relaybox.exceptions import (
    AlreadyInProgressError,
    EngineNotFoundError,
    ErrorKind,
    ProcessCrashError,
    RelayboxError,
    StartupTimeoutError,
)
from relaybox.result import OperationResult
from relaybox.utils import EventHub, create_null_logger, utc_now_iso

from ._backoff import LinearBackoff
from ._models import (
    EngineConfig,
    ProxyMode,
    ServiceEvent,
    ServiceEventType,
    ServiceState,
    ServiceStatus,
    StartOptions,
    StopOptions,
    SupervisorSettings,
)
from ._probe import ReadinessProbe
from ._sweeper import ProcessSweeper

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence
    from pathlib import Path
    from types import TracebackType

    import httpx
    from anyio.abc import ByteReceiveStream, TaskGroup
    from structlog.typing import FilteringBoundLogger

    from ._protocol import EngineProcess, ProcessFactory, StraySweeper


async def open_engine_process(command: Sequence[str], *, cwd: Path) -> EngineProcess:
    """Spawn the engine with piped stdout/stderr and no stdin."""
    return await anyio.open_process(
        list(command),
        cwd=cwd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )


async def _iter_lines(stream: ByteReceiveStream) -> AsyncIterator[str]:
    """Yield decoded lines from a byte stream until it ends."""
    pending = ""
    try:
        async for chunk in TextReceiveStream(stream, errors="replace"):
            pending += chunk
            *lines, pending = pending.split("\n")
            for line in lines:
                yield line.rstrip("\r")
    except (anyio.ClosedResourceError, anyio.BrokenResourceError):
        pass
    if pending:
        yield pending.rstrip("\r")


def _line_level(line: str) -> str:
    if "ERROR" in line or "FATAL" in line:
        return "error"
    if "WARN" in line:
        return "warning"
    return "info"


@final
class EngineSupervisor:
    """Owns one engine process and its lifecycle state machine.

    The supervisor must be entered as an async context manager; the
    context owns the task group running output readers, the exit watcher
    and scheduled crash restarts. Leaving the context kills any live
    process.

    Public operations return an ``OperationResult`` instead of raising.

    Attributes:
        events: Hub publishing every ServiceEvent in emission order.
    """

    __slots__ = (
        "_backoff",
        "_config",
        "_logger",
        "_process",
        "_restart_scope",
        "_settings",
        "_spawn",
        "_status",
        "_sweeper",
        "_task_group",
        "_transport",
        "events",
    )

    def __init__(
        self,
        config: EngineConfig,
        settings: SupervisorSettings | None = None,
        *,
        process_factory: ProcessFactory | None = None,
        sweeper: StraySweeper | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the supervisor.

        Args:
            config: Spawn configuration.
            settings: Timing and retry constants. Uses defaults if None.
            process_factory: Spawns engine processes. Uses anyio.open_process if None.
            sweeper: Kills stray engine processes. Uses ProcessSweeper if None.
            transport: httpx transport for the readiness probe, used by tests.
            logger: Logger; the supervisor binds ``component="supervisor"``.
        """
        self._config = config
        self._settings = settings or SupervisorSettings()
        self._logger = (logger or create_null_logger()).bind(component="supervisor")
        self._spawn: ProcessFactory = process_factory or open_engine_process
        self._sweeper: StraySweeper = sweeper or ProcessSweeper(
            settle_delay=self._settings.settle_delay, logger=logger
        )
        self._transport = transport
        self._backoff = LinearBackoff(
            base=self._settings.restart_delay,
            max_attempts=self._settings.max_restarts,
        )
        self._status = ServiceStatus()
        self._process: EngineProcess | None = None
        self._restart_scope: anyio.CancelScope | None = None
        self._task_group: TaskGroup | None = None
        self.events: EventHub[ServiceEvent] = EventHub("supervisor", logger=self._logger)

    # -------------------------------------------------------------------------
    # Context management
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Self:
        task_group = anyio.create_task_group()
        _ = await task_group.__aenter__()
        self._task_group = task_group
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        task_group = self._task_group
        self._cancel_pending_restart()
        with anyio.CancelScope(shield=True):
            await self._destroy()
        self._task_group = None
        if task_group is None:
            return None
        task_group.cancel_scope.cancel()
        return await task_group.__aexit__(exc_type, exc_val, exc_tb)

    def _require_task_group(self) -> TaskGroup:
        if self._task_group is None:
            msg = "EngineSupervisor must be entered with 'async with' before use"
            raise RuntimeError(msg)
        return self._task_group

    # -------------------------------------------------------------------------
    # Properties and queries
    # -------------------------------------------------------------------------

    @property
    def config(self) -> EngineConfig:
        """Return the spawn configuration used by the next start."""
        return self._config

    @property
    def settings(self) -> SupervisorSettings:
        """Return the timing and retry constants."""
        return self._settings

    @property
    def state(self) -> ServiceState:
        """Return the current lifecycle state."""
        return self._status.state

    @property
    def api_url(self) -> str:
        """Return the base URL of the engine control API."""
        return self._config.api_url

    def get_status(self) -> ServiceStatus:
        """Return a snapshot of the runtime status."""
        return self._status.snapshot()

    def is_running(self) -> bool:
        """Check whether the engine is confirmed running."""
        return self._status.state is ServiceState.RUNNING and self._process is not None

    def set_config(self, **changes: object) -> None:
        """Replace fields of the spawn configuration.

        Changes take effect on the next start.

        Args:
            **changes: EngineConfig field names and their new values.
        """
        self._config = self._config.replace(**changes)
        self._logger.debug("engine_config_updated", fields=sorted(changes))

    async def set_mode(self, mode: ProxyMode) -> None:
        """Record a new proxy mode and publish a mode_changed event.

        The engine is not restarted.
        """
        if self._status.mode is mode:
            return
        self._status.mode = mode
        self._logger.info("proxy_mode_changed", mode=mode.value)
        await self._publish(ServiceEventType.MODE_CHANGED, mode=mode)

    # -------------------------------------------------------------------------
    # Events and state
    # -------------------------------------------------------------------------

    async def _publish(
        self,
        event_type: ServiceEventType,
        **fields: object,
    ) -> None:
        fields.setdefault("pid", self._status.pid)
        event = ServiceEvent(
            event_type=event_type,
            timestamp=utc_now_iso(),
            **fields,  # pyright: ignore[reportArgumentType]
        )
        await self.events.publish(event)

    def _set_state(
        self,
        new_state: ServiceState,
        error: str | None = None,
    ) -> ServiceState | None:
        """Apply a state change without suspending.

        Returns:
            The previous state, or None if the state did not change.
        """
        if error:
            self._status.last_error = error
        old_state = self._status.state
        if old_state is new_state:
            return None
        self._status.state = new_state
        self._logger.info(
            "state_changed",
            previous=old_state.value,
            state=new_state.value,
            error=error,
        )
        return old_state

    async def _announce(
        self,
        old_state: ServiceState | None,
        new_state: ServiceState,
        error: str | None = None,
    ) -> None:
        if old_state is None:
            return
        await self._publish(
            ServiceEventType.STATE_CHANGED,
            state=new_state,
            previous_state=old_state,
            message=error,
        )
        if new_state is ServiceState.ERROR:
            await self._publish(ServiceEventType.ERROR, message=error)

    async def _transition(self, new_state: ServiceState, error: str | None = None) -> None:
        old_state = self._set_state(new_state, error)
        await self._announce(old_state, new_state, error)

    async def _fail(self, error: RelayboxError) -> OperationResult:
        self._logger.error("engine_start_failed", error=str(error), kind=error.kind.value)
        await self._transition(ServiceState.ERROR, str(error))
        return OperationResult.from_error(error)

    def _clear_process(self) -> None:
        self._process = None
        self._status.pid = None
        self._status.started_at = None

    # -------------------------------------------------------------------------
    # Start
    # -------------------------------------------------------------------------

    async def start(self, options: StartOptions | None = None) -> OperationResult:
        """Start the engine.

        Returns immediately with success if the engine is already running.

        Args:
            options: Config source and cache handling. Defaults to the
                config path of the previous start.

        Returns:
            The operation result. Failures carry kind ``already_in_progress``,
            ``not_found``, ``timeout``, ``process_crash`` or ``interrupted``.
        """
        _ = self._require_task_group()
        state = self._status.state
        if state is ServiceState.RUNNING:
            return OperationResult.ok()
        if state is ServiceState.STARTING:
            return OperationResult.from_error(AlreadyInProgressError("Already starting"))
        if state is ServiceState.STOPPING:
            return OperationResult.from_error(AlreadyInProgressError("Stop in progress"))

        old_state = self._set_state(ServiceState.STARTING)
        await self._announce(old_state, ServiceState.STARTING)
        if options is None:
            options = StartOptions(config_path=self._status.config_path)
        return await self._run_start(options, automatic=False)

    def _materialize_config(self, options: StartOptions) -> Path | None:
        if options.config_content is None:
            return options.config_path
        config_dir = self._config.config_directory
        config_dir.mkdir(parents=True, exist_ok=True)
        config_path = config_dir / self._settings.config_file_name
        _ = config_path.write_text(options.config_content, encoding="utf-8")
        self._logger.debug("engine_config_written", path=str(config_path))
        return config_path

    def _clean_cache(self) -> None:
        cache_file = self._config.working_directory / self._settings.cache_file_name
        try:
            cache_file.unlink(missing_ok=True)
        except OSError as e:
            self._logger.warning("cache_clean_failed", path=str(cache_file), error=str(e))
        else:
            self._logger.info("cache_cleaned", path=str(cache_file))

    async def _sweep_strays(self, exclude: int | None = None) -> None:
        try:
            _ = await self._sweeper.sweep(self._config.process_name, exclude=exclude)
        except Exception as e:  # noqa: BLE001
            self._logger.warning("stray_sweep_failed", error=str(e))

    def _interrupted(self) -> OperationResult:
        self._logger.info("engine_start_interrupted", state=self._status.state.value)
        return OperationResult.fail(ErrorKind.INTERRUPTED, "Start interrupted by stop")

    async def _run_start(self, options: StartOptions, *, automatic: bool) -> OperationResult:
        """Run a start attempt with the state already set to STARTING."""
        await self._sweep_strays()
        if self._status.state is not ServiceState.STARTING:
            return self._interrupted()

        executable = self._config.executable_path
        if not executable.is_file():
            self._logger.error("engine_executable_missing", path=str(executable))
            return await self._fail(
                EngineNotFoundError("executable not found", path=executable)
            )

        try:
            config_path = self._materialize_config(options)
        except OSError as e:
            return await self._fail(
                EngineNotFoundError(f"Config could not be written: {e}")
            )
        if config_path is None or not config_path.is_file():
            return await self._fail(
                EngineNotFoundError(f"Config not found: {config_path}", path=config_path)
            )
        self._status.config_path = config_path

        if options.clean_cache:
            self._clean_cache()

        command = (str(executable), "run", "-c", str(config_path))
        try:
            process = await self._spawn(command, cwd=self._config.working_directory)
        except OSError as e:
            return await self._fail(ProcessCrashError(f"Failed to spawn engine: {e}"))

        if self._status.state is not ServiceState.STARTING:
            await self._kill(process)
            return self._interrupted()

        self._attach(process)
        self._logger.info("engine_spawned", pid=process.pid, config=str(config_path))

        ready = await self._probe().wait_ready(lambda: self._starting_with(process))

        if self._starting_with(process):
            if ready:
                return await self._confirm_running(automatic=automatic)
            await self._discard(process)
            timeout = self._settings.probe_timeout
            return await self._fail(
                StartupTimeoutError(
                    f"Engine did not become ready within {timeout:g}s",
                    timeout=timeout,
                )
            )

        if self._status.state is ServiceState.ERROR:
            if self._process is process:
                await self._discard(process)
            return OperationResult.fail(
                ErrorKind.PROCESS_CRASH,
                self._status.last_error or "Engine failed to start",
            )
        return self._interrupted()

    def _starting_with(self, process: EngineProcess) -> bool:
        return (
            self._process is process
            and process.returncode is None
            and self._status.state is ServiceState.STARTING
        )

    def _probe(self) -> ReadinessProbe:
        headers: dict[str, str] = {}
        if self._config.control_api_secret:
            headers["Authorization"] = f"Bearer {self._config.control_api_secret}"
        return ReadinessProbe(
            f"{self._config.api_url}/",
            interval=self._settings.probe_interval,
            timeout=self._settings.probe_timeout,
            request_timeout=self._settings.probe_request_timeout,
            headers=headers,
            transport=self._transport,
        )

    def _attach(self, process: EngineProcess) -> None:
        task_group = self._require_task_group()
        self._process = process
        self._status.pid = process.pid
        if process.stdout is not None:
            task_group.start_soon(self._read_output, process, process.stdout, "stdout")
        if process.stderr is not None:
            task_group.start_soon(self._read_output, process, process.stderr, "stderr")
        task_group.start_soon(self._watch_exit, process)

    async def _confirm_running(self, *, automatic: bool) -> OperationResult:
        self._status.started_at = utc_now_iso()
        if not automatic:
            self._status.restart_count = 0
        old_state = self._set_state(ServiceState.RUNNING)
        self._logger.info("engine_started", pid=self._status.pid)
        await self._announce(old_state, ServiceState.RUNNING)
        await self._publish(ServiceEventType.STARTED)
        return OperationResult.ok()

    # -------------------------------------------------------------------------
    # Process observation
    # -------------------------------------------------------------------------

    async def _read_output(
        self,
        process: EngineProcess,
        stream: ByteReceiveStream,
        stream_name: str,
    ) -> None:
        async for raw_line in _iter_lines(stream):
            line = raw_line.strip()
            if not line:
                continue
            level = _line_level(line)
            getattr(self._logger, level)("engine_output", stream=stream_name, line=line)
            await self._publish(
                ServiceEventType.OUTPUT,
                pid=process.pid,
                stream=stream_name,
                message=line,
            )
            if self._starting_with(process) and any(
                marker in line for marker in self._settings.fatal_markers
            ):
                await self._transition(ServiceState.ERROR, line)

    async def _watch_exit(self, process: EngineProcess) -> None:
        exit_code = await process.wait()
        if self._process is not process:
            # Discarded or replaced; whoever did that owns the transition.
            return
        state = self._status.state
        self._clear_process()
        self._logger.info("engine_exited", exit_code=exit_code, state=state.value)

        if state is ServiceState.STOPPING:
            return
        if state is ServiceState.STARTING:
            await self._transition(
                ServiceState.ERROR,
                f"Engine exited during startup (code {exit_code})",
            )
            return
        if state is ServiceState.RUNNING:
            await self._handle_crash(exit_code)

    async def _handle_crash(self, exit_code: int | None) -> None:
        """Schedule a restart or give up after an unexpected exit."""
        completed = self._status.restart_count
        can_retry = self._backoff.allows(completed) and self._status.config_path is not None

        delay: float | None = None
        if can_retry:
            self._status.restart_count = completed + 1
            delay = self._backoff.delay(self._status.restart_count)
            old_state = self._set_state(ServiceState.STARTING)
            self._schedule_restart(delay)
            error = None
        else:
            error = "Process crashed too many times"
            old_state = self._set_state(ServiceState.ERROR, error)

        self._logger.warning(
            "engine_exited_unexpectedly",
            exit_code=exit_code,
            restart_count=self._status.restart_count,
            retry_delay=delay,
        )
        await self._publish(
            ServiceEventType.UNEXPECTED_EXIT,
            exit_code=exit_code,
            message=f"Engine exited unexpectedly (code {exit_code})",
        )
        new_state = ServiceState.STARTING if can_retry else ServiceState.ERROR
        await self._announce(old_state, new_state, error)
        if delay is not None:
            attempt = self._status.restart_count
            await self._publish(
                ServiceEventType.RESTARTING,
                retry_delay=delay,
                message=f"Restart attempt {attempt}/{self._settings.max_restarts}",
            )

    def _schedule_restart(self, delay: float) -> None:
        scope = anyio.CancelScope()
        self._restart_scope = scope
        self._require_task_group().start_soon(self._delayed_restart, scope, delay)

    def _cancel_pending_restart(self) -> None:
        if self._restart_scope is not None:
            self._restart_scope.cancel()
            self._restart_scope = None

    async def _delayed_restart(self, scope: anyio.CancelScope, delay: float) -> None:
        with scope:
            await anyio.sleep(delay)
        if scope.cancel_called or self._restart_scope is not scope:
            return
        self._restart_scope = None
        if self._status.state is not ServiceState.STARTING:
            return
        self._logger.info("engine_auto_restart", attempt=self._status.restart_count)
        result = await self._run_start(
            StartOptions(config_path=self._status.config_path),
            automatic=True,
        )
        if not result:
            self._logger.error("engine_auto_restart_failed", error=result.error)

    # -------------------------------------------------------------------------
    # Stop
    # -------------------------------------------------------------------------

    async def _kill(self, process: EngineProcess) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        with anyio.move_on_after(self._settings.stop_timeout):
            _ = await process.wait()

    async def _discard(self, process: EngineProcess) -> None:
        """Forget a process handle and make sure the process is gone."""
        if self._process is process:
            self._clear_process()
        await self._kill(process)

    async def _terminate(self, process: EngineProcess, *, force: bool, timeout: float) -> None:
        try:
            if force:
                process.kill()
            else:
                process.terminate()
        except ProcessLookupError:
            return
        with anyio.move_on_after(timeout):
            _ = await process.wait()
        if process.returncode is None:
            self._logger.warning("engine_stop_timeout", timeout=timeout)
            await self._kill(process)

    async def stop(self, options: StopOptions | None = None) -> OperationResult:
        """Stop the engine.

        Succeeds without side effects when no process is alive. A stop that
        hits an unexpected error still sweeps stray processes and ends in
        IDLE.

        Args:
            options: Force and timeout settings.

        Returns:
            The operation result; fails only with ``already_in_progress``.
        """
        options = options or StopOptions()
        self._cancel_pending_restart()

        process = self._process
        if process is None or process.returncode is not None:
            if process is not None:
                self._clear_process()
            await self._transition(ServiceState.IDLE)
            return OperationResult.ok()

        if self._status.state is ServiceState.STOPPING:
            return OperationResult.from_error(AlreadyInProgressError("Already stopping"))

        old_state = self._set_state(ServiceState.STOPPING)
        await self._announce(old_state, ServiceState.STOPPING)
        pid = process.pid

        timeout = options.timeout if options.timeout is not None else self._settings.stop_timeout
        try:
            await self._terminate(process, force=options.force, timeout=timeout)
        except Exception as e:  # noqa: BLE001
            self._logger.exception("engine_stop_failed", error=str(e))
            await self._sweep_strays()

        if self._process is process:
            self._clear_process()
        old_state = self._set_state(ServiceState.IDLE)
        self._logger.info("engine_stopped", pid=pid)
        await self._announce(old_state, ServiceState.IDLE)
        await self._publish(
            ServiceEventType.STOPPED,
            pid=pid,
            exit_code=process.returncode,
            message="Stopped by request",
        )
        return OperationResult.ok()

    async def restart(self, options: StartOptions | None = None) -> OperationResult:
        """Stop the engine, pause briefly, and start it again.

        Args:
            options: Start options. Defaults to the previous config path.
        """
        self._logger.info("engine_restarting")
        _ = await self.stop(StopOptions(clear_proxy=False))
        await anyio.sleep(self._settings.restart_pause)
        return await self.start(options)

    async def _destroy(self) -> None:
        process = self._process
        if process is None:
            return
        self._clear_process()
        await self._kill(process)
        await self._transition(ServiceState.IDLE)
