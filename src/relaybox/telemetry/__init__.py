"""Engine telemetry: control API client and traffic poller.

The engine exposes one combined endpoint, ``GET /connections``, returning
cumulative ``uploadTotal``/``downloadTotal`` counters and the live
connection list. Both the traffic totals and the connection count are
taken from it.
"""

from ._client import ControlApiClient
from ._models import (
    ConnectionInfo,
    ConnectionMetadataPayload,
    ConnectionPayload,
    ConnectionsPayload,
    TrafficSnapshot,
)
from ._poller import TrafficMeter, TrafficPoller

__all__ = [
    "ConnectionInfo",
    "ConnectionMetadataPayload",
    "ConnectionPayload",
    "ConnectionsPayload",
    "ControlApiClient",
    "TrafficMeter",
    "TrafficPoller",
    "TrafficSnapshot",
]
