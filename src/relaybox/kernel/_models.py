"""Data models for engine version management.

This module defines:
- Channel: Installation tracks with their own binary and backup
- KernelVersion / RemoteRelease: Local and remote version records
- DownloadProgress / InstallEvent: Install progress notifications
- CacheClearResult: Outcome of a cache purge
- ReleaseAssetPayload / ReleasePayload: Release feed schema
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field


class Channel(StrEnum):
    """Installation track of the engine binary."""

    STABLE = "stable"
    ALPHA = "alpha"


@dataclass(frozen=True, slots=True)
class KernelVersion:
    """Version reported by an installed engine binary.

    Attributes:
        version: Parsed semantic version, or "unknown".
        raw_output: Full output of the version subcommand.
        channel: Channel the binary is installed in.
    """

    version: str
    raw_output: str
    channel: Channel


@dataclass(frozen=True, slots=True)
class RemoteRelease:
    """A downloadable release for the current platform.

    Attributes:
        version: Version without the leading "v".
        tag: Release tag as published.
        published_at: ISO 8601 publish time.
        is_prerelease: Whether the release is flagged as a prerelease.
        download_url: URL of the platform archive.
        asset_name: File name of the platform archive.
    """

    version: str
    tag: str
    published_at: str
    is_prerelease: bool
    download_url: str
    asset_name: str


@dataclass(frozen=True, slots=True)
class DownloadProgress:
    """Byte progress of an archive download.

    Attributes:
        downloaded: Bytes received so far.
        total: Declared content length.
    """

    downloaded: int
    total: int

    @property
    def percent(self) -> int:
        """Return the rounded completion percentage."""
        if self.total <= 0:
            return 0
        return round(self.downloaded / self.total * 100)


class InstallEventType(StrEnum):
    """Types of install notifications."""

    DOWNLOAD_START = "download_start"
    DOWNLOAD_PROGRESS = "download_progress"
    EXTRACT_START = "extract_start"
    DOWNLOAD_COMPLETE = "download_complete"
    DOWNLOAD_ERROR = "download_error"


@dataclass(frozen=True, slots=True)
class InstallEvent:
    """Immutable install notification.

    Attributes:
        event_type: Type of notification.
        timestamp: ISO 8601 formatted timestamp.
        channel: Channel being installed.
        release: Release being installed.
        progress: Byte progress, for download_progress events.
        message: Failure message, for download_error events.
    """

    event_type: InstallEventType
    timestamp: str
    channel: Channel
    release: RemoteRelease
    progress: DownloadProgress | None = None
    message: str | None = None


@dataclass(frozen=True, slots=True)
class CacheClearResult:
    """Outcome of ``VersionManager.clear_cache``.

    Attributes:
        success: False if any individual deletion failed.
        freed_bytes: Total size of everything deleted.
    """

    success: bool
    freed_bytes: int


class ReleaseAssetPayload(BaseModel):
    """Downloadable file attached to a release."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    name: str
    browser_download_url: str


class ReleasePayload(BaseModel):
    """Release resource returned by the release feed."""

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True, extra="ignore")

    tag_name: str
    published_at: str | None = None
    prerelease: bool = False
    assets: list[ReleaseAssetPayload] = Field(default_factory=list)

    @property
    def version(self) -> str:
        """Return the tag without its leading "v"."""
        return self.tag_name.removeprefix("v")
