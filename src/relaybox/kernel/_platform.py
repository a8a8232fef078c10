"""Platform naming for engine release assets and binaries."""

import platform
import sys

from ._models import Channel

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "armv7",
}

_OS_NAMES = {
    "win32": "windows",
    "darwin": "darwin",
    "linux": "linux",
}


def detect_platform() -> str:
    """Return the release platform identifier, e.g. ``windows-amd64``."""
    os_name = _OS_NAMES.get(sys.platform, sys.platform)
    machine = platform.machine().lower()
    return f"{os_name}-{_ARCH_ALIASES.get(machine, machine)}"


def is_windows_platform(platform_id: str) -> bool:
    """Check whether a platform identifier names a Windows target."""
    return platform_id.startswith("windows-")


def archive_suffix(platform_id: str) -> str:
    """Return the archive extension published for a platform."""
    return ".zip" if is_windows_platform(platform_id) else ".tar.gz"


def asset_name(product: str, version: str, platform_id: str) -> str:
    """Return the expected archive file name of a release.

    Example:
        >>> asset_name("sing-box", "1.9.0", "windows-amd64")
        'sing-box-1.9.0-windows-amd64.zip'
    """
    return f"{product}-{version}-{platform_id}{archive_suffix(platform_id)}"


def executable_name(product: str, platform_id: str) -> str:
    """Return the engine executable file name inside release archives."""
    suffix = ".exe" if is_windows_platform(platform_id) else ""
    return f"{product}{suffix}"


def binary_name(product: str, channel: Channel, platform_id: str) -> str:
    """Return the installed binary file name for a channel.

    The stable channel keeps the product name; other channels append
    their name, e.g. ``sing-box-alpha.exe``.
    """
    stem = product if channel is Channel.STABLE else f"{product}-{channel.value}"
    return executable_name(stem, platform_id)
