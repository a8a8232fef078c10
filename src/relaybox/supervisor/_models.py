"""Data models for the engine supervisor.

This module defines the core data types for engine process management:
- ServiceState: Lifecycle states of the supervised engine
- ProxyMode: Routing mode forwarded to the engine
- ServiceEventType / ServiceEvent: Lifecycle event records
- EngineConfig: Immutable spawn configuration
- StartOptions / StopOptions: Per-call options
- SupervisorSettings: Timing and retry constants
- ServiceStatus: Mutable runtime status
"""

import dataclasses
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path  # noqa: TC003 - Used in runtime type annotations
from typing import Literal


class ServiceState(StrEnum):
    """Engine lifecycle states.

    - IDLE: No engine process is running
    - STARTING: A process was spawned and is not confirmed healthy yet
    - RUNNING: The control API answered the readiness probe
    - STOPPING: Termination was requested and is in progress
    - ERROR: Start failed or the crash budget was exhausted
    """

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


class ProxyMode(StrEnum):
    """Routing mode of the engine."""

    RULE = "rule"
    GLOBAL = "global"
    DIRECT = "direct"


class ServiceEventType(StrEnum):
    """Types of engine lifecycle events."""

    STATE_CHANGED = "state_changed"
    STARTED = "started"
    STOPPED = "stopped"
    ERROR = "error"
    UNEXPECTED_EXIT = "unexpected_exit"
    RESTARTING = "restarting"
    OUTPUT = "output"
    MODE_CHANGED = "mode_changed"


@dataclass(frozen=True, slots=True)
class ServiceEvent:
    """Immutable engine lifecycle event.

    Attributes:
        event_type: Type of lifecycle event.
        timestamp: ISO 8601 formatted timestamp.
        pid: Process ID if applicable.
        exit_code: Exit code if the process terminated.
        message: Optional human-readable message.
        state: State after the change, for state_changed events.
        previous_state: State before the change, for state_changed events.
        retry_delay: Seconds until the scheduled restart, for restarting events.
        stream: Output stream name, for output events.
        mode: New proxy mode, for mode_changed events.
    """

    event_type: ServiceEventType
    timestamp: str
    pid: int | None = None
    exit_code: int | None = None
    message: str | None = None
    state: ServiceState | None = None
    previous_state: ServiceState | None = None
    retry_delay: float | None = None
    stream: Literal["stdout", "stderr"] | None = None
    mode: ProxyMode | None = None


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Immutable snapshot used to spawn the engine.

    Replacing it with ``EngineSupervisor.set_config`` takes effect on the
    next start.

    Attributes:
        executable_path: Path to the engine binary.
        config_directory: Directory inline config content is written to.
        working_directory: Working directory of the engine process.
        control_api_host: Host the engine control API listens on.
        control_api_port: Port the engine control API listens on.
        control_api_secret: Bearer secret for the control API, empty for none.
    """

    executable_path: Path
    config_directory: Path
    working_directory: Path
    control_api_host: str = "127.0.0.1"
    control_api_port: int = 9090
    control_api_secret: str = ""

    @property
    def api_url(self) -> str:
        """Return the base URL of the engine control API."""
        return f"http://{self.control_api_host}:{self.control_api_port}"

    @property
    def process_name(self) -> str:
        """Return the executable file name used to find stray processes."""
        return self.executable_path.name

    def replace(self, **changes: object) -> "EngineConfig":  # noqa: UP037
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **changes)  # pyright: ignore[reportArgumentType]


@dataclass(frozen=True, slots=True)
class StartOptions:
    """Options for a single start request.

    Attributes:
        config_path: Existing engine config file to run with.
        config_content: Inline config written to the config directory first.
            Takes precedence over config_path.
        clean_cache: Delete the engine's cache database before spawning.
    """

    config_path: Path | None = None
    config_content: str | None = None
    clean_cache: bool = False


@dataclass(frozen=True, slots=True)
class StopOptions:
    """Options for a single stop request.

    Attributes:
        force: Kill immediately instead of requesting graceful termination.
        timeout: Seconds to wait for graceful exit. None uses the default.
        clear_proxy: Whether the orchestrator should also clear the host proxy.
    """

    force: bool = False
    timeout: float | None = None
    clear_proxy: bool = True


@dataclass(frozen=True, slots=True)
class SupervisorSettings:
    """Timing and retry constants for the supervisor.

    Attributes:
        settle_delay: Seconds to wait after sweeping stray processes.
        probe_interval: Seconds between readiness probe attempts.
        probe_timeout: Total seconds the readiness probe may take.
        probe_request_timeout: Timeout of a single probe request.
        stop_timeout: Default seconds to wait for graceful exit.
        restart_pause: Seconds between stop and start during restart.
        max_restarts: Crash restarts allowed before giving up.
        restart_delay: Base delay of the linear crash-restart backoff.
        cache_file_name: Engine cache database deleted on clean starts.
        config_file_name: File name inline config content is written to.
        fatal_markers: Output fragments that fail a start in progress.
    """

    settle_delay: float = 0.3
    probe_interval: float = 0.2
    probe_timeout: float = 3.0
    probe_request_timeout: float = 0.5
    stop_timeout: float = 5.0
    restart_pause: float = 0.5
    max_restarts: int = 3
    restart_delay: float = 1.0
    cache_file_name: str = "cache.db"
    config_file_name: str = "config.json"
    fatal_markers: tuple[str, ...] = ("FATAL", "panic")


@dataclass(slots=True)
class ServiceStatus:
    """Mutable runtime status of the engine.

    Mutated only by the supervisor; callers receive copies from
    ``snapshot``.

    Attributes:
        state: Current lifecycle state.
        pid: Process ID of the engine, if any.
        started_at: ISO 8601 timestamp of the last confirmed start.
        last_error: Message of the last failure.
        config_path: Config file of the last start attempt.
        mode: Current proxy mode.
        restart_count: Crash restarts since the last confirmed start.
    """

    state: ServiceState = ServiceState.IDLE
    pid: int | None = None
    started_at: str | None = None
    last_error: str | None = None
    config_path: Path | None = None
    mode: ProxyMode = ProxyMode.RULE
    restart_count: int = 0

    def snapshot(self) -> "ServiceStatus":  # noqa: UP037
        """Return an independent copy of this status."""
        return dataclasses.replace(self)
