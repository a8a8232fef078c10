"""Settings store interface for host proxy settings.

The store holds three values mirroring the Windows Internet Settings
keys: the enabled flag, the ``host:port`` server string and the
semicolon-separated bypass list.
"""

from typing import Protocol, TypeAlias, runtime_checkable

PROXY_ENABLE = "ProxyEnable"
PROXY_SERVER = "ProxyServer"
PROXY_OVERRIDE = "ProxyOverride"

SettingValue: TypeAlias = str | int


@runtime_checkable
class SettingsStore(Protocol):
    """Key/value persistence for host proxy settings.

    Methods block; callers run them in a worker thread.
    """

    def get(self, name: str) -> SettingValue | None:
        """Return a setting, or None if it is absent."""
        ...

    def set(self, name: str, value: SettingValue) -> None:
        """Create or replace a setting."""
        ...

    def delete(self, name: str) -> bool:
        """Remove a setting.

        Returns:
            True if the setting existed.
        """
        ...

    def notify_changed(self) -> None:
        """Tell the host that proxy settings changed and should be reloaded."""
        ...
