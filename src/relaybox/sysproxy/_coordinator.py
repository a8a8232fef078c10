"""Host system-proxy coordinator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, final

import anyio.to_thread

from relaybox.utils import create_null_logger

from ._protocol import PROXY_ENABLE, PROXY_OVERRIDE, PROXY_SERVER

if TYPE_CHECKING:
    from collections.abc import Sequence

    from structlog.typing import FilteringBoundLogger

    from ._protocol import SettingsStore

DEFAULT_PROXY_HOST = "127.0.0.1"
DEFAULT_PROXY_PORT = 7890
DEFAULT_BYPASS_LIST: tuple[str, ...] = (
    "localhost",
    "127.*",
    "10.*",
    *(f"172.{octet}.*" for octet in range(16, 32)),
    "192.168.*",
    "<local>",
)


@dataclass(frozen=True, slots=True)
class ProxySettings:
    """Host proxy settings as read back from the settings store.

    Attributes:
        enabled: Whether traffic is redirected through the proxy.
        server_host: Proxy host.
        server_port: Proxy port.
        bypass_list: Host patterns excluded from redirection.
    """

    enabled: bool = False
    server_host: str = DEFAULT_PROXY_HOST
    server_port: int = DEFAULT_PROXY_PORT
    bypass_list: tuple[str, ...] = field(default=DEFAULT_BYPASS_LIST)


def parse_server(value: object) -> tuple[str, int]:
    """Split a ``host:port`` string, falling back to the defaults.

    Example:
        >>> parse_server("127.0.0.1:1080")
        ('127.0.0.1', 1080)
        >>> parse_server("garbage")
        ('127.0.0.1', 7890)
    """
    if not isinstance(value, str):
        return DEFAULT_PROXY_HOST, DEFAULT_PROXY_PORT
    host, sep, port_text = value.strip().rpartition(":")
    if not sep or not host:
        return DEFAULT_PROXY_HOST, DEFAULT_PROXY_PORT
    try:
        port = int(port_text)
    except ValueError:
        return DEFAULT_PROXY_HOST, DEFAULT_PROXY_PORT
    if not 0 < port < 65536:  # noqa: PLR2004
        return DEFAULT_PROXY_HOST, DEFAULT_PROXY_PORT
    return host, port


def parse_bypass(value: object) -> tuple[str, ...]:
    """Split a semicolon-separated bypass list, falling back to the default."""
    if not isinstance(value, str):
        return DEFAULT_BYPASS_LIST
    return tuple(item.strip() for item in value.split(";") if item.strip())


@final
class SystemProxyCoordinator:
    """Enables and disables host-level traffic redirection.

    Writes go through a SettingsStore in a worker thread. A failing
    "settings changed" notification is logged and otherwise ignored.
    """

    __slots__ = ("_bypass_list", "_enabled", "_logger", "_store")

    def __init__(
        self,
        store: SettingsStore,
        *,
        bypass_list: Sequence[str] = DEFAULT_BYPASS_LIST,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store: Settings store holding the proxy settings.
            bypass_list: Host patterns written on enable.
            logger: Logger; the coordinator binds ``component="sysproxy"``.
        """
        self._store = store
        self._bypass_list = tuple(bypass_list)
        self._enabled = False
        self._logger = (logger or create_null_logger()).bind(component="sysproxy")

    @property
    def bypass_list(self) -> tuple[str, ...]:
        """Return the bypass list written on enable."""
        return self._bypass_list

    def set_bypass(self, bypass_list: Sequence[str]) -> None:
        """Replace the bypass list used by subsequent enables."""
        self._bypass_list = tuple(bypass_list)

    def is_enabled(self) -> bool:
        """Return whether this coordinator last enabled the proxy."""
        return self._enabled

    def _notify(self) -> None:
        try:
            self._store.notify_changed()
        except Exception as e:  # noqa: BLE001
            self._logger.warning("proxy_change_notify_failed", error=str(e))

    def _enable_sync(self, server: str) -> None:
        self._store.set(PROXY_ENABLE, 1)
        self._store.set(PROXY_SERVER, server)
        self._store.set(PROXY_OVERRIDE, ";".join(self._bypass_list))
        self._notify()

    def _disable_sync(self) -> None:
        self._store.set(PROXY_ENABLE, 0)
        try:
            _ = self._store.delete(PROXY_SERVER)
        except Exception as e:  # noqa: BLE001
            self._logger.debug("proxy_server_not_removed", error=str(e))
        self._notify()

    def _status_sync(self) -> ProxySettings:
        enabled = self._store.get(PROXY_ENABLE)
        host, port = parse_server(self._store.get(PROXY_SERVER))
        return ProxySettings(
            enabled=enabled in (1, "1"),
            server_host=host,
            server_port=port,
            bypass_list=parse_bypass(self._store.get(PROXY_OVERRIDE)),
        )

    async def enable(self, host: str = DEFAULT_PROXY_HOST, port: int = DEFAULT_PROXY_PORT) -> bool:
        """Redirect host traffic to ``host:port``.

        Returns:
            True if the settings were written.
        """
        server = f"{host}:{port}"
        try:
            await anyio.to_thread.run_sync(self._enable_sync, server)
        except Exception as e:  # noqa: BLE001
            self._logger.error("system_proxy_enable_failed", server=server, error=str(e))
            return False
        self._enabled = True
        self._logger.info("system_proxy_enabled", server=server)
        return True

    async def disable(self) -> bool:
        """Stop redirecting host traffic.

        Returns:
            True if the settings were written.
        """
        try:
            await anyio.to_thread.run_sync(self._disable_sync)
        except Exception as e:  # noqa: BLE001
            self._logger.error("system_proxy_disable_failed", error=str(e))
            return False
        self._enabled = False
        self._logger.info("system_proxy_disabled")
        return True

    async def get_status(self) -> ProxySettings:
        """Read the current proxy settings back from the store.

        Returns:
            The stored settings; defaults with ``enabled=False`` if the
            store cannot be read.
        """
        try:
            return await anyio.to_thread.run_sync(self._status_sync)
        except Exception as e:  # noqa: BLE001
            self._logger.warning("system_proxy_status_failed", error=str(e))
            return ProxySettings()
