"""Supervision of the external proxy engine process.

Key Components:
    - EngineConfig: Immutable spawn configuration
    - ServiceState / ServiceStatus: Lifecycle state and runtime status
    - ServiceEvent: Lifecycle event records
    - EngineSupervisor: Owns the process and its state machine
    - ReadinessProbe: Bounded health polling of the control API
    - ProcessSweeper: Kills leftover engine processes
    - LinearBackoff: Crash restart delay calculator
    - ConsoleEventSink: Rich console rendering of events

Example:
    >>> from relaybox.supervisor import EngineConfig, EngineSupervisor, StartOptions
    >>> async with EngineSupervisor(config) as supervisor:
    ...     result = await supervisor.start(StartOptions(config_path=path))
"""

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
from ._output import ConsoleEventSink
from ._probe import ReadinessProbe
from ._protocol import EngineProcess, EventSink, ProcessFactory, StraySweeper
from ._supervisor import EngineSupervisor, open_engine_process
from ._sweeper import ProcessSweeper

__all__ = [
    "ConsoleEventSink",
    "EngineConfig",
    "EngineProcess",
    "EngineSupervisor",
    "EventSink",
    "LinearBackoff",
    "ProcessFactory",
    "ProcessSweeper",
    "ProxyMode",
    "ReadinessProbe",
    "ServiceEvent",
    "ServiceEventType",
    "ServiceState",
    "ServiceStatus",
    "StartOptions",
    "StopOptions",
    "StraySweeper",
    "SupervisorSettings",
    "open_engine_process",
]
