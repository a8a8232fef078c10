"""Engine binary version management.

Key Components:
    - VersionManager: Local versions, remote discovery, install, rollback, cache
    - ReleaseFeed: Client for the GitHub-style release feed
    - Channel: Stable and alpha installation tracks
    - InstallEvent: Download and install notifications
"""

from ._archive import extract_archive, find_executable
from ._feed import (
    DEFAULT_LATEST_RELEASE_URL,
    DEFAULT_RECENT_RELEASES_URL,
    DEFAULT_USER_AGENT,
    ReleaseFeed,
)
from ._manager import VersionManager, parse_version_output
from ._models import (
    CacheClearResult,
    Channel,
    DownloadProgress,
    InstallEvent,
    InstallEventType,
    KernelVersion,
    ReleaseAssetPayload,
    ReleasePayload,
    RemoteRelease,
)
from ._platform import asset_name, binary_name, detect_platform, executable_name

__all__ = [
    "DEFAULT_LATEST_RELEASE_URL",
    "DEFAULT_RECENT_RELEASES_URL",
    "DEFAULT_USER_AGENT",
    "CacheClearResult",
    "Channel",
    "DownloadProgress",
    "InstallEvent",
    "InstallEventType",
    "KernelVersion",
    "ReleaseAssetPayload",
    "ReleaseFeed",
    "ReleasePayload",
    "RemoteRelease",
    "VersionManager",
    "asset_name",
    "binary_name",
    "detect_platform",
    "executable_name",
    "extract_archive",
    "find_executable",
    "parse_version_output",
]
