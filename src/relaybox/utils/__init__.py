"""Shared utilities: logging, events, paths and SQLite helpers."""

from ._events import EventHub, Listener, Unsubscribe
from ._logging import LogFormatType, create_logger, create_null_logger
from ._paths import (
    get_download_cache_dir,
    get_engine_config_dir,
    get_kernel_dir,
    get_relaybox_home,
    get_settings_db,
    get_user_config_path,
)
from ._time import utc_now_iso

__all__ = [
    "EventHub",
    "Listener",
    "LogFormatType",
    "Unsubscribe",
    "create_logger",
    "create_null_logger",
    "get_download_cache_dir",
    "get_engine_config_dir",
    "get_kernel_dir",
    "get_relaybox_home",
    "get_settings_db",
    "get_user_config_path",
    "utc_now_iso",
]
