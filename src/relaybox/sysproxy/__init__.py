"""Host system-proxy coordination.

Key Components:
    - SystemProxyCoordinator: Enables, disables and reads the host proxy
    - SettingsStore: Protocol for proxy settings persistence
    - MemorySettingsStore / SQLiteSettingsStore / WindowsRegistrySettingsStore
    - create_settings_store: Backend factory
"""

from ._coordinator import (
    DEFAULT_BYPASS_LIST,
    DEFAULT_PROXY_HOST,
    DEFAULT_PROXY_PORT,
    ProxySettings,
    SystemProxyCoordinator,
    parse_bypass,
    parse_server,
)
from ._protocol import PROXY_ENABLE, PROXY_OVERRIDE, PROXY_SERVER, SettingsStore, SettingValue
from ._stores import (
    MemorySettingsStore,
    SettingsBackend,
    SQLiteSettingsStore,
    WindowsRegistrySettingsStore,
    create_settings_store,
)

__all__ = [
    "DEFAULT_BYPASS_LIST",
    "DEFAULT_PROXY_HOST",
    "DEFAULT_PROXY_PORT",
    "PROXY_ENABLE",
    "PROXY_OVERRIDE",
    "PROXY_SERVER",
    "MemorySettingsStore",
    "ProxySettings",
    "SQLiteSettingsStore",
    "SettingValue",
    "SettingsBackend",
    "SettingsStore",
    "SystemProxyCoordinator",
    "WindowsRegistrySettingsStore",
    "create_settings_store",
    "parse_bypass",
    "parse_server",
]
