"""Discovery, installation and rollback of engine binaries."""

from __future__ import annotations

import os
import re
import shutil
import subprocess
from typing import TYPE_CHECKING, final

import anyio
import anyio.to_thread
import httpx

from relaybox.exceptions import (
    DownloadError,
    EngineNotFoundError,
    ExtractError,
    InstallError,
    NetworkError,
    RelayboxError,
)
from relaybox.result import OperationResult
from relaybox.utils import EventHub, create_null_logger, utc_now_iso

from ._archive import extract_archive, find_executable, make_executable, path_size, remove_path
from ._feed import ReleaseFeed
from ._models import (
    CacheClearResult,
    Channel,
    DownloadProgress,
    InstallEvent,
    InstallEventType,
    KernelVersion,
    RemoteRelease,
)
from ._platform import asset_name, binary_name, detect_platform, executable_name, is_windows_platform

if TYPE_CHECKING:
    from pathlib import Path

    from structlog.typing import FilteringBoundLogger

    from ._models import ReleasePayload

_VERSION_RE = re.compile(r"version\s+(\S+)")
_EXTRACT_DIR_NAME = "extract_temp"


def parse_version_output(output: str) -> str:
    """Extract the version from ``<engine> version`` output.

    Example:
        >>> parse_version_output("sing-box version 1.9.3\\n\\nEnvironment: go1.22")
        '1.9.3'
    """
    match = _VERSION_RE.search(output)
    return match.group(1) if match else "unknown"


@final
class VersionManager:
    """Manages one engine binary per channel plus a ``.bak`` backup.

    Installs are guarded: the new executable is located in the extracted
    archive before the current binary is moved to its backup path, and any
    failure after that point moves the backup back. A channel that had a
    working binary before an install therefore always has one afterwards.

    Because an archive without the executable fails before the backup step,
    installing v1, then v2, then a broken v3 leaves v2 in place with v1 as
    the backup, so a rollback yields v1. A failure after the backup step
    (moving the new binary in) restores v2 from the backup and leaves no
    backup behind.

    Attributes:
        events: Hub publishing InstallEvent notifications.
    """

    __slots__ = (
        "_cache_dir",
        "_feed",
        "_install_dir",
        "_logger",
        "_platform",
        "_product",
        "_runtime_cache_name",
        "_version_timeout",
        "events",
    )

    def __init__(
        self,
        install_dir: Path,
        cache_dir: Path,
        *,
        product: str = "sing-box",
        platform_id: str | None = None,
        feed: ReleaseFeed | None = None,
        version_timeout: float = 10.0,
        runtime_cache_name: str = "cache.db",
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            install_dir: Directory holding the channel binaries.
            cache_dir: Directory archives are downloaded and extracted in.
            product: Engine product name used in asset and binary names.
            platform_id: Release platform, e.g. ``windows-amd64``. Detected if None.
            feed: Release feed client. Uses the default feed if None.
            version_timeout: Seconds allowed for the version subcommand.
            runtime_cache_name: Engine cache database next to install_dir
                removed by clear_cache.
            logger: Logger; the manager binds ``component="kernel"``.
        """
        self._install_dir = install_dir
        self._cache_dir = cache_dir
        self._product = product
        self._platform = platform_id or detect_platform()
        self._feed = feed or ReleaseFeed()
        self._version_timeout = version_timeout
        self._runtime_cache_name = runtime_cache_name
        self._logger = (logger or create_null_logger()).bind(component="kernel")
        self.events: EventHub[InstallEvent] = EventHub("kernel", logger=self._logger)

    @property
    def platform(self) -> str:
        """Return the release platform identifier."""
        return self._platform

    def binary_path(self, channel: Channel = Channel.STABLE) -> Path:
        """Return the canonical binary path of a channel."""
        return self._install_dir / binary_name(self._product, channel, self._platform)

    def backup_path(self, channel: Channel = Channel.STABLE) -> Path:
        """Return the backup path of a channel's binary."""
        binary = self.binary_path(channel)
        return binary.with_name(f"{binary.name}.bak")

    def can_rollback(self, channel: Channel = Channel.STABLE) -> bool:
        """Check whether a backup exists for the channel."""
        return self.backup_path(channel).is_file()

    # -------------------------------------------------------------------------
    # Local versions
    # -------------------------------------------------------------------------

    async def get_local_version(self, channel: Channel = Channel.STABLE) -> KernelVersion | None:
        """Query the installed binary of a channel for its version.

        Returns:
            The reported version, or None if the binary is missing or the
            query fails.
        """
        binary = self.binary_path(channel)
        if not binary.is_file():
            return None

        try:
            with anyio.fail_after(self._version_timeout):
                completed = await anyio.run_process([str(binary), "version"])
        except (OSError, subprocess.CalledProcessError, TimeoutError) as e:
            self._logger.warning("version_query_failed", channel=channel.value, error=str(e))
            return None

        output = completed.stdout.decode(errors="replace").strip()
        return KernelVersion(
            version=parse_version_output(output),
            raw_output=output,
            channel=channel,
        )

    async def get_installed_versions(self) -> list[KernelVersion]:
        """Return the versions of all installed channels, stable first."""
        versions: list[KernelVersion] = []
        for channel in Channel:
            version = await self.get_local_version(channel)
            if version is not None:
                versions.append(version)
        return versions

    # -------------------------------------------------------------------------
    # Remote releases
    # -------------------------------------------------------------------------

    def _to_release(self, payload: ReleasePayload, *, is_prerelease: bool) -> RemoteRelease | None:
        expected = asset_name(self._product, payload.version, self._platform)
        asset = next((a for a in payload.assets if a.name == expected), None)
        if asset is None:
            self._logger.debug("release_asset_missing", tag=payload.tag_name, expected=expected)
            return None
        return RemoteRelease(
            version=payload.version,
            tag=payload.tag_name,
            published_at=payload.published_at or "",
            is_prerelease=is_prerelease,
            download_url=asset.browser_download_url,
            asset_name=asset.name,
        )

    async def get_remote_releases(self, *, include_prerelease: bool = True) -> list[RemoteRelease]:
        """Discover installable releases for this platform.

        Returns the latest stable release and, if requested, the newest
        prerelease from the recent releases page. Releases without an asset
        for this platform are skipped.

        Returns:
            The releases found; empty if any feed request fails.
        """
        releases: list[RemoteRelease] = []
        try:
            latest = self._to_release(await self._feed.latest(), is_prerelease=False)
            if latest is not None:
                releases.append(latest)

            if include_prerelease:
                for payload in await self._feed.recent():
                    if not payload.prerelease:
                        continue
                    candidate = self._to_release(payload, is_prerelease=True)
                    if candidate is not None:
                        releases.append(candidate)
                        break
        except RelayboxError as e:
            self._logger.warning("release_discovery_failed", error=str(e))
            return []
        return releases

    # -------------------------------------------------------------------------
    # Install
    # -------------------------------------------------------------------------

    async def _emit(
        self,
        event_type: InstallEventType,
        channel: Channel,
        release: RemoteRelease,
        **fields: object,
    ) -> None:
        event = InstallEvent(
            event_type=event_type,
            timestamp=utc_now_iso(),
            channel=channel,
            release=release,
            **fields,  # pyright: ignore[reportArgumentType]
        )
        await self.events.publish(event)

    async def _download(self, release: RemoteRelease, channel: Channel, target: Path) -> None:
        try:
            async with (
                self._feed.client() as client,
                client.stream(
                    "GET", release.download_url, headers={"Accept-Encoding": "identity"}
                ) as response,
            ):
                if response.status_code != httpx.codes.OK:
                    msg = f"Download failed: HTTP {response.status_code}"
                    raise DownloadError(msg)

                # Content-Length counts encoded bytes; progress is tracked on decoded ones.
                encoding = response.headers.get("content-encoding", "identity")
                total = 0
                if encoding == "identity":
                    total = int(response.headers.get("content-length") or 0)
                downloaded = 0
                async with await anyio.open_file(target, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        _ = await f.write(chunk)
                        downloaded += len(chunk)
                        if total > 0:
                            await self._emit(
                                InstallEventType.DOWNLOAD_PROGRESS,
                                channel,
                                release,
                                progress=DownloadProgress(downloaded=downloaded, total=total),
                            )
        except httpx.HTTPError as e:
            msg = f"Download failed: {e}"
            raise NetworkError(msg, url=release.download_url, cause=e) from e

        self._logger.info("archive_downloaded", path=str(target), size=downloaded)

    def _place_binary(self, extract_dir: Path, channel: Channel) -> bool:
        """Move the extracted executable into place, backing up the current one.

        Returns:
            True if an existing binary was moved to the backup path.

        Raises:
            ExtractError: If the archive does not contain the executable.
            InstallError: If the binary cannot be moved into place.
        """
        exe_name = executable_name(self._product, self._platform)
        extracted = find_executable(extract_dir, exe_name)
        if extracted is None:
            msg = f"{exe_name} not found in archive"
            raise ExtractError(msg)

        binary = self.binary_path(channel)
        backup = self.backup_path(channel)
        backed_up = False
        try:
            if binary.exists():
                _ = os.replace(binary, backup)
                backed_up = True
            _ = shutil.move(extracted, binary)
            if not is_windows_platform(self._platform):
                make_executable(binary)
        except OSError as e:
            if backed_up and not binary.exists():
                _ = os.replace(backup, binary)
            msg = f"Failed to install binary: {e}"
            raise InstallError(msg) from e
        return backed_up

    def _cleanup(self, *paths: Path) -> None:
        for path in paths:
            try:
                remove_path(path)
            except OSError as e:
                self._logger.warning("cleanup_failed", path=str(path), error=str(e))

    async def download_and_install(
        self,
        release: RemoteRelease,
        channel: Channel = Channel.STABLE,
    ) -> OperationResult:
        """Download a release and install it into a channel.

        Publishes download_start, download_progress (when the content length
        is known), extract_start, and finally download_complete or
        download_error.

        Args:
            release: Release to install.
            channel: Target channel.

        Returns:
            The operation result; failures carry kind ``network_error``,
            ``download_failure``, ``extract_failure`` or ``install_failure``.
        """
        archive = self._cache_dir / release.asset_name
        extract_dir = self._cache_dir / _EXTRACT_DIR_NAME
        log = self._logger.bind(version=release.version, channel=channel.value)

        log.info("install_started")
        await self._emit(InstallEventType.DOWNLOAD_START, channel, release)
        try:
            self._cache_dir.mkdir(parents=True, exist_ok=True)
            self._install_dir.mkdir(parents=True, exist_ok=True)
            await self._download(release, channel, archive)

            await self._emit(InstallEventType.EXTRACT_START, channel, release)
            self._cleanup(extract_dir)
            await anyio.to_thread.run_sync(extract_archive, archive, extract_dir)
            backed_up = await anyio.to_thread.run_sync(self._place_binary, extract_dir, channel)
        except RelayboxError as e:
            error: RelayboxError = e
        except OSError as e:
            error = InstallError(f"Install failed: {e}")
        else:
            self._cleanup(extract_dir, archive)
            log.info("install_completed", backed_up=backed_up)
            await self._emit(InstallEventType.DOWNLOAD_COMPLETE, channel, release)
            return OperationResult.ok()

        self._cleanup(extract_dir, archive)
        log.error("install_failed", error=str(error), kind=error.kind.value)
        await self._emit(InstallEventType.DOWNLOAD_ERROR, channel, release, message=str(error))
        return OperationResult.from_error(error)

    async def rollback(self, channel: Channel = Channel.STABLE) -> OperationResult:
        """Replace a channel's binary with its backup.

        Returns:
            The operation result; fails with ``not_found`` if there is no
            backup.
        """
        binary = self.binary_path(channel)
        backup = self.backup_path(channel)
        if not backup.is_file():
            self._logger.info("rollback_unavailable", channel=channel.value)
            return OperationResult.from_error(
                EngineNotFoundError("No backup available for rollback", path=backup)
            )

        try:
            binary.unlink(missing_ok=True)
            _ = os.replace(backup, binary)
        except OSError as e:
            self._logger.error("rollback_failed", channel=channel.value, error=str(e))
            return OperationResult.from_error(InstallError(f"Rollback failed: {e}"))

        self._logger.info("rollback_completed", channel=channel.value)
        return OperationResult.ok()

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------

    def _clear_cache_sync(self) -> CacheClearResult:
        freed = 0
        success = True
        targets: list[Path] = []
        if self._cache_dir.is_dir():
            targets.extend(sorted(self._cache_dir.iterdir()))
        runtime_cache = self._install_dir.parent / self._runtime_cache_name
        if runtime_cache.is_file():
            targets.append(runtime_cache)

        for target in targets:
            try:
                size = path_size(target)
                remove_path(target)
            except OSError as e:
                success = False
                self._logger.warning("cache_entry_not_removed", path=str(target), error=str(e))
            else:
                freed += size
        return CacheClearResult(success=success, freed_bytes=freed)

    async def clear_cache(self) -> CacheClearResult:
        """Delete downloaded archives and the engine runtime cache.

        Deletion is best-effort: failing entries are logged and skipped.

        Returns:
            Whether every entry was removed and the bytes freed.
        """
        result = await anyio.to_thread.run_sync(self._clear_cache_sync)
        self._logger.info(
            "cache_cleared",
            freed_bytes=result.freed_bytes,
            success=result.success,
        )
        return result
