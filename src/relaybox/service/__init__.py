"""Service orchestration: engine, system proxy and telemetry."""

from ._service import CLEANUP_STOP_TIMEOUT, ProxyService

__all__ = ["CLEANUP_STOP_TIMEOUT", "ProxyService"]
