"""Protocol definitions for the supervisor.

These interfaces decouple the supervisor from the operating system so the
state machine can be driven by real subprocesses or by test doubles:
- EngineProcess: A spawned engine process handle
- ProcessFactory: Spawns engine processes
- StraySweeper: Terminates leftover engine processes
- EventSink: Consumes supervisor events
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from anyio.abc import ByteReceiveStream

    from ._models import ServiceEvent


@runtime_checkable
class EngineProcess(Protocol):
    """Minimal process handle used by the supervisor.

    ``anyio.abc.Process`` satisfies this protocol.
    """

    @property
    def pid(self) -> int:
        """Return the operating system process ID."""
        ...

    @property
    def returncode(self) -> int | None:
        """Return the exit code, or None while the process is alive."""
        ...

    @property
    def stdout(self) -> ByteReceiveStream | None:
        """Return the standard output stream."""
        ...

    @property
    def stderr(self) -> ByteReceiveStream | None:
        """Return the standard error stream."""
        ...

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        ...

    def terminate(self) -> None:
        """Request graceful termination."""
        ...

    def kill(self) -> None:
        """Terminate the process immediately."""
        ...


class ProcessFactory(Protocol):
    """Callable that spawns an engine process."""

    async def __call__(
        self,
        command: Sequence[str],
        *,
        cwd: Path,
    ) -> EngineProcess:
        """Spawn ``command`` in ``cwd`` with piped output streams.

        Raises:
            OSError: If the process cannot be spawned.
        """
        ...


class StraySweeper(Protocol):
    """Terminates engine processes not owned by the supervisor."""

    async def sweep(self, process_name: str, *, exclude: int | None = None) -> int:
        """Kill processes named ``process_name``.

        Args:
            process_name: Executable file name to match.
            exclude: Process ID that must be left alone.

        Returns:
            The number of processes terminated.
        """
        ...


@runtime_checkable
class EventSink(Protocol):
    """Consumer of supervisor events, such as a console renderer."""

    async def write_event(self, event: ServiceEvent) -> None:
        """Record a lifecycle or output event."""
        ...
