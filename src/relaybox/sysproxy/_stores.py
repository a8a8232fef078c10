"""Settings store implementations."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING, Literal, TypeAlias, final

from relaybox.utils import create_null_logger, utc_now_iso
from relaybox.utils.database import connect, upsert

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from ._protocol import SettingsStore, SettingValue

SettingsBackend: TypeAlias = Literal["auto", "registry", "sqlite", "memory"]

INTERNET_SETTINGS_KEY = r"Software\Microsoft\Windows\CurrentVersion\Internet Settings"
INTERNET_OPTION_SETTINGS_CHANGED = 39
INTERNET_OPTION_REFRESH = 37


@final
class MemorySettingsStore:
    """In-memory settings store for tests and hosts without a native backend.

    Attributes:
        notify_count: Number of notify_changed calls.
    """

    __slots__ = ("_values", "notify_count")

    def __init__(self, values: dict[str, SettingValue] | None = None) -> None:
        self._values: dict[str, SettingValue] = dict(values or {})
        self.notify_count = 0

    def get(self, name: str) -> SettingValue | None:
        return self._values.get(name)

    def set(self, name: str, value: SettingValue) -> None:
        self._values[name] = value

    def delete(self, name: str) -> bool:
        return self._values.pop(name, None) is not None

    def notify_changed(self) -> None:
        self.notify_count += 1

    def snapshot(self) -> dict[str, SettingValue]:
        """Return a copy of all stored values."""
        return dict(self._values)


_SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS proxy_settings (
    name TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    is_int INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL
)
"""


@final
class SQLiteSettingsStore:
    """SQLite-backed settings store.

    Persists the proxy settings to a database file so they survive
    restarts on hosts without a native proxy settings API. Integer values
    round-trip as integers.
    """

    __slots__ = ("_db_path", "_logger")

    def __init__(
        self,
        db_path: str | Path,
        *,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the store, creating the database and schema if needed.

        Args:
            db_path: Path to the SQLite database file.
            logger: Optional logger for debug-level operation logging.
        """
        self._db_path = str(db_path)
        self._logger = logger
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        with connect(self._db_path) as conn:
            _ = conn.execute(_SQLITE_SCHEMA)

    def get(self, name: str) -> SettingValue | None:
        with connect(self._db_path) as conn:
            row = conn.execute(
                "SELECT value, is_int FROM proxy_settings WHERE name = ?", (name,)
            ).fetchone()
        if row is None:
            return None
        value = str(row["value"])
        return int(value) if row["is_int"] else value

    def set(self, name: str, value: SettingValue) -> None:
        with connect(self._db_path) as conn:
            upsert(
                conn,
                "proxy_settings",
                {
                    "name": name,
                    "value": str(value),
                    "is_int": int(isinstance(value, int)),
                    "updated_at": utc_now_iso(),
                },
                conflict_columns=["name"],
            )
        if self._logger:
            self._logger.debug("setting_stored", name=name, value=value)

    def delete(self, name: str) -> bool:
        with connect(self._db_path) as conn:
            cursor = conn.execute("DELETE FROM proxy_settings WHERE name = ?", (name,))
            deleted = cursor.rowcount > 0
        if self._logger:
            self._logger.debug("setting_deleted", name=name, deleted=deleted)
        return deleted

    def notify_changed(self) -> None:
        # Nothing watches the database; readers pick up changes on next read.
        if self._logger:
            self._logger.debug("settings_changed", db_path=self._db_path)


@final
class WindowsRegistrySettingsStore:
    r"""Settings store backed by ``HKCU\...\Internet Settings``.

    Uses the native ``winreg`` API for values and ``InternetSetOptionW``
    from wininet for change notification. Only usable on Windows.
    """

    __slots__ = ("_key_path",)

    def __init__(self, key_path: str = INTERNET_SETTINGS_KEY) -> None:
        if sys.platform != "win32":
            msg = "The registry settings store is only available on Windows"
            raise OSError(msg)
        self._key_path = key_path

    def get(self, name: str) -> SettingValue | None:
        import winreg  # noqa: PLC0415

        try:
            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, self._key_path) as key:
                value, _kind = winreg.QueryValueEx(key, name)
        except FileNotFoundError:
            return None
        return value if isinstance(value, int) else str(value)

    def set(self, name: str, value: SettingValue) -> None:
        import winreg  # noqa: PLC0415

        kind = winreg.REG_DWORD if isinstance(value, int) else winreg.REG_SZ
        with winreg.CreateKeyEx(
            winreg.HKEY_CURRENT_USER, self._key_path, 0, winreg.KEY_SET_VALUE
        ) as key:
            winreg.SetValueEx(key, name, 0, kind, value)

    def delete(self, name: str) -> bool:
        import winreg  # noqa: PLC0415

        try:
            with winreg.OpenKey(
                winreg.HKEY_CURRENT_USER, self._key_path, 0, winreg.KEY_SET_VALUE
            ) as key:
                winreg.DeleteValue(key, name)
        except FileNotFoundError:
            return False
        return True

    def notify_changed(self) -> None:
        import ctypes  # noqa: PLC0415

        wininet = ctypes.WinDLL("wininet", use_last_error=True)  # pyright: ignore[reportAttributeAccessIssue]
        for option in (INTERNET_OPTION_SETTINGS_CHANGED, INTERNET_OPTION_REFRESH):
            if not wininet.InternetSetOptionW(None, option, None, 0):
                raise ctypes.WinError(ctypes.get_last_error())  # pyright: ignore[reportAttributeAccessIssue]


def create_settings_store(
    backend: SettingsBackend = "auto",
    path: str | Path | None = None,
    *,
    logger: FilteringBoundLogger | None = None,
) -> SettingsStore:
    """Create a settings store for the requested backend.

    ``auto`` selects the registry on Windows and SQLite elsewhere.

    Args:
        backend: Backend name.
        path: Database path for the SQLite backend.
        logger: Logger passed to stores that log.

    Returns:
        The settings store.

    Raises:
        ValueError: If the backend name is unknown or SQLite has no path.
    """
    if backend == "auto":
        backend = "registry" if sys.platform == "win32" else "sqlite"

    match backend:
        case "memory":
            return MemorySettingsStore()
        case "registry":
            return WindowsRegistrySettingsStore()
        case "sqlite":
            if path is None:
                msg = "The sqlite settings backend requires a database path"
                raise ValueError(msg)
            return SQLiteSettingsStore(path, logger=logger or create_null_logger())
        case _:
            msg = f"Unknown settings backend: {backend}"
            raise ValueError(msg)
