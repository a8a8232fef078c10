"""Periodic traffic sampling."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Self, final

import anyio

from relaybox.exceptions import NetworkError
from relaybox.utils import EventHub, create_null_logger

from ._models import TrafficSnapshot

if TYPE_CHECKING:
    from types import TracebackType

    from anyio.abc import TaskGroup
    from structlog.typing import FilteringBoundLogger

    from ._client import ControlApiClient


@dataclass(slots=True)
class TrafficMeter:
    """Turns cumulative counters into per-interval speeds.

    The first sample after construction or ``reset`` has no baseline and
    reports speed 0. A counter that goes backwards (engine restarted)
    reports speed 0 instead of a negative value.
    """

    last_upload: int | None = None
    last_download: int | None = None

    def sample(self, upload_total: int, download_total: int, connection_count: int) -> TrafficSnapshot:
        """Record new totals and return the derived snapshot."""
        if self.last_upload is None or self.last_download is None:
            upload_speed = download_speed = 0
        else:
            upload_speed = max(0, upload_total - self.last_upload)
            download_speed = max(0, download_total - self.last_download)
        self.last_upload = upload_total
        self.last_download = download_total
        return TrafficSnapshot(
            upload_speed=upload_speed,
            download_speed=download_speed,
            upload_total=max(0, upload_total),
            download_total=max(0, download_total),
            connection_count=max(0, connection_count),
        )

    def reset(self) -> None:
        """Forget the baseline."""
        self.last_upload = None
        self.last_download = None


@final
class TrafficPoller:
    """Samples the control API on a fixed interval while started.

    ``pause``/``resume`` suspend the interval but keep the baseline;
    ``stop`` also discards it so the next ``start`` begins fresh. A failed
    sample is skipped without stopping the poller.

    Attributes:
        snapshots: Hub publishing every TrafficSnapshot.
    """

    __slots__ = (
        "_client",
        "_interval",
        "_latest",
        "_logger",
        "_loop_scope",
        "_meter",
        "_running",
        "_task_group",
        "snapshots",
    )

    def __init__(
        self,
        client: ControlApiClient,
        *,
        interval: float = 1.0,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the poller.

        Args:
            client: Control API client.
            interval: Seconds between samples.
            logger: Logger; the poller binds ``component="telemetry"``.
        """
        self._client = client
        self._interval = interval
        self._logger = (logger or create_null_logger()).bind(component="telemetry")
        self._meter = TrafficMeter()
        self._latest: TrafficSnapshot | None = None
        self._running = False
        self._loop_scope: anyio.CancelScope | None = None
        self._task_group: TaskGroup | None = None
        self.snapshots: EventHub[TrafficSnapshot] = EventHub("telemetry", logger=self._logger)

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
        self.stop()
        task_group = self._task_group
        self._task_group = None
        if task_group is None:
            return None
        task_group.cancel_scope.cancel()
        return await task_group.__aexit__(exc_type, exc_val, exc_tb)

    @property
    def interval(self) -> float:
        """Return the sampling interval in seconds."""
        return self._interval

    def is_running(self) -> bool:
        """Check whether the poller is started (paused counts as started)."""
        return self._running

    def is_paused(self) -> bool:
        """Check whether the poller is started but not sampling."""
        return self._running and self._loop_scope is None

    def _spawn_loop(self) -> None:
        if self._task_group is None:
            msg = "TrafficPoller must be entered with 'async with' before use"
            raise RuntimeError(msg)
        scope = anyio.CancelScope()
        self._loop_scope = scope
        self._task_group.start_soon(self._loop, scope)

    def _cancel_loop(self) -> None:
        if self._loop_scope is not None:
            self._loop_scope.cancel()
            self._loop_scope = None

    async def _loop(self, scope: anyio.CancelScope) -> None:
        with scope:
            while True:
                await anyio.sleep(self._interval)
                _ = await self.poll_once()

    def start(self) -> None:
        """Begin sampling with a fresh baseline. No-op if already started."""
        if self._running:
            return
        self._running = True
        self._meter.reset()
        self._latest = None
        self._spawn_loop()
        self._logger.info("traffic_poller_started", interval=self._interval)

    def stop(self) -> None:
        """Stop sampling and discard the baseline and totals."""
        if not self._running:
            return
        self._cancel_loop()
        self._running = False
        self._meter.reset()
        self._latest = None
        self._logger.info("traffic_poller_stopped")

    def pause(self) -> None:
        """Suspend sampling, keeping the baseline."""
        self._cancel_loop()

    def resume(self) -> None:
        """Resume sampling after ``pause``."""
        if self._running and self._loop_scope is None:
            self._spawn_loop()

    async def poll_once(self) -> TrafficSnapshot | None:
        """Take one sample and publish it.

        Returns:
            The snapshot, or None if the control API could not be read.
        """
        try:
            payload = await self._client.fetch_connections()
        except NetworkError as e:
            self._logger.debug("traffic_sample_skipped", error=str(e))
            return None
        snapshot = self._meter.sample(
            payload.upload_total,
            payload.download_total,
            len(payload.connection_list),
        )
        self._latest = snapshot
        await self.snapshots.publish(snapshot)
        return snapshot

    def get_snapshot(self) -> TrafficSnapshot:
        """Return the latest sample, or an all-zero snapshot before the first."""
        return self._latest or TrafficSnapshot()
