from __future__ import annotations

import gzip
import io
import tarfile
from typing import TYPE_CHECKING

import httpx
import orjson
import pytest

from relaybox.exceptions import ErrorKind
from relaybox.kernel import (
    Channel,
    InstallEvent,
    InstallEventType,
    ReleaseFeed,
    RemoteRelease,
    VersionManager,
    parse_version_output,
)

if TYPE_CHECKING:
    from pathlib import Path

    from pytest_mock import MockerFixture

pytestmark = pytest.mark.anyio

PLATFORM = "linux-amd64"
LATEST_URL = "https://feed.test/releases/latest"
RECENT_URL = "https://feed.test/releases"
DOWNLOAD_BASE = "https://downloads.test"


def make_archive(files: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tf:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mode = 0o644
            tf.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def release_payload(version: str, *, prerelease: bool = False, platform: str = PLATFORM) -> dict[str, object]:
    asset = f"sing-box-{version}-{platform}.tar.gz"
    return {
        "tag_name": f"v{version}",
        "published_at": "2024-05-01T00:00:00Z",
        "prerelease": prerelease,
        "assets": [{"name": asset, "browser_download_url": f"{DOWNLOAD_BASE}/{asset}"}],
    }


def make_release(version: str = "1.9.0") -> RemoteRelease:
    asset = f"sing-box-{version}-{PLATFORM}.tar.gz"
    return RemoteRelease(
        version=version,
        tag=f"v{version}",
        published_at="2024-05-01T00:00:00Z",
        is_prerelease=False,
        download_url=f"{DOWNLOAD_BASE}/{asset}",
        asset_name=asset,
    )


class FakeFeedServer:
    def __init__(self) -> None:
        self.latest: object = release_payload("1.9.0")
        self.recent: object = [
            release_payload("1.10.0-beta.2", prerelease=True),
            release_payload("1.9.0"),
        ]
        self.archives: dict[str, bytes] = {}
        self.fail_download_status: int | None = None
        self.down = False
        self.gzip_archives = False
        self.requests: list[httpx.Request] = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.down:
            msg = "unreachable"
            raise httpx.ConnectError(msg, request=request)
        url = str(request.url)
        if url == LATEST_URL:
            return httpx.Response(200, content=orjson.dumps(self.latest))
        if url == RECENT_URL:
            return httpx.Response(200, content=orjson.dumps(self.recent))
        if self.fail_download_status is not None:
            return httpx.Response(self.fail_download_status)
        name = request.url.path.rsplit("/", 1)[-1]
        if name in self.archives and self.gzip_archives:
            return httpx.Response(
                200,
                content=gzip.compress(self.archives[name]),
                headers={"Content-Encoding": "gzip"},
            )
        if name in self.archives:
            return httpx.Response(200, content=self.archives[name])
        return httpx.Response(404)


@pytest.fixture
def server() -> FakeFeedServer:
    return FakeFeedServer()


@pytest.fixture
def install_dir(tmp_path: Path) -> Path:
    return tmp_path / "home" / "kernel"


@pytest.fixture
def manager(tmp_path: Path, install_dir: Path, server: FakeFeedServer) -> VersionManager:
    feed = ReleaseFeed(
        latest_url=LATEST_URL,
        recent_url=RECENT_URL,
        transport=httpx.MockTransport(server.handle),
    )
    return VersionManager(
        install_dir,
        tmp_path / "cache",
        platform_id=PLATFORM,
        feed=feed,
    )


def record(manager: VersionManager) -> list[InstallEvent]:
    events: list[InstallEvent] = []

    async def listener(event: InstallEvent) -> None:
        events.append(event)

    _ = manager.events.subscribe(listener)
    return events


class TestParseVersionOutput:
    def test_extracts_version(self) -> None:
        assert parse_version_output("sing-box version 1.9.3\n\nEnvironment: go1.22") == "1.9.3"

    def test_prerelease_version(self) -> None:
        assert parse_version_output("sing-box version 1.10.0-beta.2") == "1.10.0-beta.2"

    def test_unknown_without_marker(self) -> None:
        assert parse_version_output("usage: sing-box [command]") == "unknown"


class TestPaths:
    def test_channel_binaries(self, manager: VersionManager, install_dir: Path) -> None:
        assert manager.binary_path(Channel.STABLE) == install_dir / "sing-box"
        assert manager.binary_path(Channel.ALPHA) == install_dir / "sing-box-alpha"
        assert manager.backup_path(Channel.ALPHA) == install_dir / "sing-box-alpha.bak"

    async def test_missing_binary_has_no_version(self, manager: VersionManager) -> None:
        assert await manager.get_local_version(Channel.STABLE) is None
        assert await manager.get_installed_versions() == []


class TestRemoteReleases:
    async def test_latest_and_newest_prerelease(self, manager: VersionManager) -> None:
        releases = await manager.get_remote_releases()

        assert [(r.version, r.is_prerelease) for r in releases] == [
            ("1.9.0", False),
            ("1.10.0-beta.2", True),
        ]
        assert releases[0].asset_name == "sing-box-1.9.0-linux-amd64.tar.gz"
        assert releases[0].download_url.startswith(DOWNLOAD_BASE)

    async def test_stable_only(self, manager: VersionManager) -> None:
        releases = await manager.get_remote_releases(include_prerelease=False)

        assert [r.version for r in releases] == ["1.9.0"]

    async def test_skips_release_without_platform_asset(
        self, manager: VersionManager, server: FakeFeedServer
    ) -> None:
        server.latest = release_payload("1.9.0", platform="windows-amd64")

        releases = await manager.get_remote_releases()

        assert [r.version for r in releases] == ["1.10.0-beta.2"]

    async def test_feed_failure_returns_empty(
        self, manager: VersionManager, server: FakeFeedServer
    ) -> None:
        server.latest = {"unexpected": True}

        assert await manager.get_remote_releases() == []


class TestInstall:
    async def test_installs_binary_and_publishes_events(
        self,
        manager: VersionManager,
        server: FakeFeedServer,
        install_dir: Path,
        tmp_path: Path,
    ) -> None:
        release = make_release()
        server.archives[release.asset_name] = make_archive(
            {"sing-box-1.9.0-linux-amd64/sing-box": b"new-binary"}
        )
        events = record(manager)

        result = await manager.download_and_install(release, Channel.STABLE)

        assert result.success
        binary = install_dir / "sing-box"
        assert binary.read_bytes() == b"new-binary"
        assert binary.stat().st_mode & 0o111
        assert not manager.can_rollback(Channel.STABLE)
        assert list((tmp_path / "cache").iterdir()) == []
        types = [event.event_type for event in events]
        assert types[0] is InstallEventType.DOWNLOAD_START
        assert InstallEventType.DOWNLOAD_PROGRESS in types
        assert types[-2:] == [InstallEventType.EXTRACT_START, InstallEventType.DOWNLOAD_COMPLETE]
        progress = [e.progress for e in events if e.progress is not None]
        assert progress[-1].percent == 100

    async def test_existing_binary_becomes_backup(
        self, manager: VersionManager, server: FakeFeedServer, install_dir: Path
    ) -> None:
        install_dir.mkdir(parents=True)
        _ = (install_dir / "sing-box").write_bytes(b"old-binary")
        release = make_release()
        server.archives[release.asset_name] = make_archive({"sing-box": b"new-binary"})

        result = await manager.download_and_install(release)

        assert result.success
        assert (install_dir / "sing-box").read_bytes() == b"new-binary"
        assert (install_dir / "sing-box.bak").read_bytes() == b"old-binary"
        assert manager.can_rollback()

    async def test_alpha_channel_uses_own_binary(
        self, manager: VersionManager, server: FakeFeedServer, install_dir: Path
    ) -> None:
        release = make_release("1.10.0-beta.2")
        server.archives[release.asset_name] = make_archive({"sing-box": b"alpha"})

        result = await manager.download_and_install(release, Channel.ALPHA)

        assert result.success
        assert (install_dir / "sing-box-alpha").read_bytes() == b"alpha"
        assert not (install_dir / "sing-box").exists()

    async def test_archive_without_executable_keeps_current_binary(
        self, manager: VersionManager, server: FakeFeedServer, install_dir: Path
    ) -> None:
        install_dir.mkdir(parents=True)
        _ = (install_dir / "sing-box").write_bytes(b"old-binary")
        release = make_release()
        server.archives[release.asset_name] = make_archive({"README.md": b"docs"})
        events = record(manager)

        result = await manager.download_and_install(release)

        assert not result.success
        assert result.kind is ErrorKind.EXTRACT_FAILURE
        assert (install_dir / "sing-box").read_bytes() == b"old-binary"
        assert not manager.can_rollback()
        assert events[-1].event_type is InstallEventType.DOWNLOAD_ERROR
        assert events[-1].message is not None

    async def test_corrupt_archive_fails_extract(
        self, manager: VersionManager, server: FakeFeedServer
    ) -> None:
        release = make_release()
        server.archives[release.asset_name] = b"not an archive"

        result = await manager.download_and_install(release)

        assert result.kind is ErrorKind.EXTRACT_FAILURE

    async def test_http_error_fails_download(
        self, manager: VersionManager, server: FakeFeedServer
    ) -> None:
        server.fail_download_status = 503

        result = await manager.download_and_install(make_release())

        assert result.kind is ErrorKind.DOWNLOAD_FAILURE
        assert result.error is not None
        assert "503" in result.error

    async def test_unreachable_host_is_network_error(
        self, manager: VersionManager, server: FakeFeedServer
    ) -> None:
        server.down = True

        result = await manager.download_and_install(make_release())

        assert result.kind is ErrorKind.NETWORK_ERROR

    async def test_requests_identity_encoding(
        self, manager: VersionManager, server: FakeFeedServer
    ) -> None:
        release = make_release()
        server.archives[release.asset_name] = make_archive({"sing-box": b"new-binary"})

        _ = await manager.download_and_install(release)

        download = server.requests[-1]
        assert download.url.path.endswith(release.asset_name)
        assert download.headers["accept-encoding"] == "identity"

    async def test_encoded_body_installs_without_length_progress(
        self, manager: VersionManager, server: FakeFeedServer, install_dir: Path
    ) -> None:
        release = make_release()
        server.archives[release.asset_name] = make_archive({"sing-box": b"new-binary"})
        server.gzip_archives = True
        events = record(manager)

        result = await manager.download_and_install(release)

        assert result.success
        assert (install_dir / "sing-box").read_bytes() == b"new-binary"
        types = [event.event_type for event in events]
        assert InstallEventType.DOWNLOAD_PROGRESS not in types
        assert types[-1] is InstallEventType.DOWNLOAD_COMPLETE


def stage(server: FakeFeedServer, version: str, files: dict[str, bytes]) -> RemoteRelease:
    release = make_release(version)
    server.archives[release.asset_name] = make_archive(files)
    return release


class TestInstallSequence:
    async def test_rollback_after_broken_install_yields_previous_backup(
        self, manager: VersionManager, server: FakeFeedServer, install_dir: Path
    ) -> None:
        v1 = stage(server, "1.8.0", {"sing-box": b"v1"})
        v2 = stage(server, "1.9.0", {"sing-box": b"v2"})
        v3 = stage(server, "1.10.0", {"README.md": b"no binary here"})

        assert (await manager.download_and_install(v1)).success
        assert (await manager.download_and_install(v2)).success
        broken = await manager.download_and_install(v3)

        assert broken.kind is ErrorKind.EXTRACT_FAILURE
        assert (install_dir / "sing-box").read_bytes() == b"v2"
        assert manager.can_rollback()

        result = await manager.rollback()

        assert result.success
        assert (install_dir / "sing-box").read_bytes() == b"v1"
        assert not manager.can_rollback()

    async def test_failed_move_restores_current_binary_without_backup(
        self,
        manager: VersionManager,
        server: FakeFeedServer,
        install_dir: Path,
        mocker: MockerFixture,
    ) -> None:
        v1 = stage(server, "1.8.0", {"sing-box": b"v1"})
        v2 = stage(server, "1.9.0", {"sing-box": b"v2"})
        v3 = stage(server, "1.10.0", {"sing-box": b"v3"})
        assert (await manager.download_and_install(v1)).success
        assert (await manager.download_and_install(v2)).success
        _ = mocker.patch(
            "relaybox.kernel._manager.shutil.move", side_effect=OSError("disk full")
        )

        result = await manager.download_and_install(v3)

        assert result.kind is ErrorKind.INSTALL_FAILURE
        assert (install_dir / "sing-box").read_bytes() == b"v2"
        assert not manager.can_rollback()
        assert (await manager.rollback()).kind is ErrorKind.NOT_FOUND


class TestRollback:
    async def test_restores_backup(self, manager: VersionManager, install_dir: Path) -> None:
        install_dir.mkdir(parents=True)
        _ = (install_dir / "sing-box").write_bytes(b"new")
        _ = (install_dir / "sing-box.bak").write_bytes(b"old")

        result = await manager.rollback()

        assert result.success
        assert (install_dir / "sing-box").read_bytes() == b"old"
        assert not manager.can_rollback()

    async def test_without_backup_is_not_found(self, manager: VersionManager) -> None:
        result = await manager.rollback(Channel.ALPHA)

        assert result.kind is ErrorKind.NOT_FOUND


class TestClearCache:
    async def test_removes_archives_and_runtime_cache(
        self, manager: VersionManager, install_dir: Path, tmp_path: Path
    ) -> None:
        cache = tmp_path / "cache"
        (cache / "extract_temp").mkdir(parents=True)
        _ = (cache / "archive.tar.gz").write_bytes(b"x" * 10)
        _ = (cache / "extract_temp" / "sing-box").write_bytes(b"y" * 5)
        install_dir.mkdir(parents=True)
        _ = (install_dir.parent / "cache.db").write_bytes(b"z" * 7)

        result = await manager.clear_cache()

        assert result.success
        assert result.freed_bytes == 22
        assert list(cache.iterdir()) == []
        assert not (install_dir.parent / "cache.db").exists()

    async def test_empty_cache(self, manager: VersionManager) -> None:
        result = await manager.clear_cache()

        assert result.success
        assert result.freed_bytes == 0
