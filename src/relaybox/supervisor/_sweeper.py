"""Termination of leftover engine processes."""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, final

import anyio
import anyio.to_thread
import psutil

from relaybox.utils import create_null_logger

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger


def _matches(proc: psutil.Process, process_name: str) -> bool:
    name = proc.info.get("name") or ""  # pyright: ignore[reportAttributeAccessIssue]
    if sys.platform == "win32":
        return name.lower() == process_name.lower()
    return name == process_name


@final
class ProcessSweeper:
    """Kills engine processes left behind by a previous session.

    Matching is by executable file name. The sweeper never touches the
    current interpreter or an explicitly excluded process.
    """

    __slots__ = ("_logger", "_settle_delay")

    def __init__(
        self,
        *,
        settle_delay: float = 0.3,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the sweeper.

        Args:
            settle_delay: Seconds to wait after killing processes so the
                operating system releases their ports and files.
            logger: Logger for sweep results.
        """
        self._settle_delay = settle_delay
        self._logger = (logger or create_null_logger()).bind(component="sweeper")

    def _kill_matching(self, process_name: str, exclude: int | None) -> int:
        own_pid = os.getpid()
        killed = 0
        for proc in psutil.process_iter(["pid", "name"]):
            if proc.pid in (own_pid, exclude) or not _matches(proc, process_name):
                continue
            try:
                proc.kill()
                killed += 1
            except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
                self._logger.debug("stray_kill_skipped", pid=proc.pid, reason=str(e))
        return killed

    async def sweep(self, process_name: str, *, exclude: int | None = None) -> int:
        """Kill every process named ``process_name``.

        Args:
            process_name: Executable file name to match.
            exclude: Process ID that must be left alone.

        Returns:
            The number of processes terminated.
        """
        killed = await anyio.to_thread.run_sync(
            self._kill_matching, process_name, exclude
        )
        if killed:
            self._logger.info("stray_processes_killed", name=process_name, count=killed)
            await anyio.sleep(self._settle_delay)
        return killed
