"""Filesystem locations used by relaybox.

Every location honors the ``RELAYBOX_HOME`` environment variable. When it
is unset, platform conventions from platformdirs apply.
"""

import os
from pathlib import Path

import platformdirs

_APP_NAME = "relaybox"


def get_relaybox_home() -> Path:
    """Get the data directory holding binaries, caches and state."""
    override = os.environ.get("RELAYBOX_HOME")
    if override:
        return Path(override)
    return platformdirs.user_data_path(_APP_NAME)


def get_user_config_path() -> Path:
    r"""Get platform-specific user config file path.

    - Linux: ``~/.config/relaybox/config.toml``
    - macOS: ``~/Library/Application Support/relaybox/config.toml``
    - Windows: ``%APPDATA%\relaybox\config.toml``

    With ``RELAYBOX_HOME`` set, the file lives directly inside that
    directory instead.
    """
    override = os.environ.get("RELAYBOX_HOME")
    if override:
        return Path(override) / "config.toml"
    return platformdirs.user_config_path(_APP_NAME) / "config.toml"


def get_kernel_dir() -> Path:
    """Get the directory engine binaries are installed into."""
    return get_relaybox_home() / "kernel"


def get_download_cache_dir() -> Path:
    """Get the directory downloaded release archives are cached in."""
    return get_relaybox_home() / "cache"


def get_engine_config_dir() -> Path:
    """Get the directory the generated engine config is written to."""
    return get_relaybox_home() / "config"


def get_settings_db() -> Path:
    """Get the path to the SQLite proxy settings database."""
    return get_relaybox_home() / "settings.db"
