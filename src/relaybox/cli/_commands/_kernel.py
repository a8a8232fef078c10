# pyright: reportUnusedCallResult=false
# ruff: noqa: FBT002
"""Kernel commands: inspect, install and roll back engine binaries."""

from __future__ import annotations

from dataclasses import asdict
from typing import TYPE_CHECKING, Annotated

import anyio
from cyclopts import App, Parameter
from rich.progress import BarColumn, DownloadColumn, Progress, TextColumn
from rich.table import Table

from relaybox.kernel import Channel, InstallEventType, ReleaseFeed, VersionManager

from ._context import CLIContext
from ._shared import (
    ExitCode,
    exit_with_error,
    exit_with_success,
    get_console,
    print_json,
    report_result,
)

if TYPE_CHECKING:
    from relaybox.kernel import InstallEvent, KernelVersion, RemoteRelease
    from relaybox.result import OperationResult

app = App(name="kernel", help="Manage installed engine binaries", help_on_error=True)


def create_version_manager() -> VersionManager:
    """Build a VersionManager from the active CLI configuration."""
    ctx = CLIContext.get_current()
    config = ctx.config
    kernel = config.kernel
    feed = ReleaseFeed(
        latest_url=kernel.latest_release_url,
        recent_url=kernel.recent_releases_url,
        user_agent=kernel.user_agent,
    )
    return VersionManager(
        config.install_directory,
        config.cache_directory,
        product=kernel.product,
        platform_id=config.platform,
        feed=feed,
        logger=ctx.logger,
    )


@app.command(name="versions")
def versions(
    *,
    json: Annotated[bool, Parameter(help="Output as JSON.")] = False,
) -> None:
    """Show the engine version installed in each channel."""
    manager = create_version_manager()
    installed: list[KernelVersion] = anyio.run(manager.get_installed_versions)

    if json:
        print_json([asdict(version) for version in installed])
        return
    if not installed:
        exit_with_error("No engine binary is installed", ExitCode.NOT_FOUND)

    table = Table(show_header=True, header_style="bold")
    table.add_column("Channel", style="cyan")
    table.add_column("Version")
    table.add_column("Backup")
    for version in installed:
        backup = "yes" if manager.can_rollback(version.channel) else "no"
        table.add_row(version.channel.value, version.version, backup)
    get_console().print(table)


@app.command(name="releases")
def releases(
    *,
    stable_only: Annotated[bool, Parameter(help="Hide prerelease versions.")] = False,
    json: Annotated[bool, Parameter(help="Output as JSON.")] = False,
) -> None:
    """List releases available for this platform."""
    manager = create_version_manager()

    async def fetch() -> list[RemoteRelease]:
        return await manager.get_remote_releases(include_prerelease=not stable_only)

    found = anyio.run(fetch)
    if json:
        print_json([asdict(release) for release in found])
        return
    if not found:
        exit_with_error("No releases found for this platform", ExitCode.NETWORK_ERROR)

    table = Table(show_header=True, header_style="bold")
    table.add_column("Version", style="cyan")
    table.add_column("Published")
    table.add_column("Prerelease")
    table.add_column("Asset", overflow="ellipsis")
    for release in found:
        table.add_row(
            release.version,
            release.published_at[:10],
            "yes" if release.is_prerelease else "",
            release.asset_name,
        )
    get_console().print(table)


def _select_release(found: list[RemoteRelease], version: str | None) -> RemoteRelease | None:
    if version is None:
        stable = [release for release in found if not release.is_prerelease]
        return stable[0] if stable else None
    wanted = version.removeprefix("v")
    return next((release for release in found if release.version == wanted), None)


@app.command(name="install")
def install(
    version: Annotated[
        str | None,
        Parameter(help="Version to install. Defaults to the latest stable release."),
    ] = None,
    *,
    channel: Annotated[Channel, Parameter(help="Channel to install into.")] = Channel.STABLE,
) -> None:
    """Download a release and install it into a channel."""
    manager = create_version_manager()
    console = get_console()

    async def install_release() -> OperationResult | None:
        found = await manager.get_remote_releases(include_prerelease=version is not None)
        release = _select_release(found, version)
        if release is None:
            return None

        with Progress(
            TextColumn("[bold]{task.description}"),
            BarColumn(),
            DownloadColumn(),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task(f"{manager.platform} {release.version}", total=None)

            async def on_event(event: InstallEvent) -> None:
                if event.event_type is InstallEventType.DOWNLOAD_PROGRESS and event.progress:
                    progress.update(
                        task,
                        completed=event.progress.downloaded,
                        total=event.progress.total,
                    )
                elif event.event_type is InstallEventType.EXTRACT_START:
                    progress.update(task, description=f"Extracting {release.asset_name}")

            unsubscribe = manager.events.subscribe(on_event)
            try:
                return await manager.download_and_install(release, channel)
            finally:
                unsubscribe()

    result = anyio.run(install_release)
    if result is None:
        target = version or "latest stable"
        exit_with_error(f"Release {target} not found for {manager.platform}", ExitCode.NOT_FOUND)
    report_result(result, f"Installed into the {channel.value} channel")


@app.command(name="rollback")
def rollback(
    *,
    channel: Annotated[Channel, Parameter(help="Channel to roll back.")] = Channel.STABLE,
) -> None:
    """Restore the binary that was replaced by the last install."""
    manager = create_version_manager()

    async def run_rollback() -> OperationResult:
        return await manager.rollback(channel)

    report_result(anyio.run(run_rollback), f"Rolled back the {channel.value} channel")


@app.command(name="clear-cache")
def clear_cache() -> None:
    """Delete downloaded archives and the engine cache database."""
    manager = create_version_manager()
    result = anyio.run(manager.clear_cache)
    freed = f"{result.freed_bytes / 1024 / 1024:.1f} MiB"
    if not result.success:
        exit_with_error(f"Some cache entries could not be removed ({freed} freed)")
    exit_with_success(f"[green]Freed {freed}[/green]")
