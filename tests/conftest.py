"""Shared test fixtures and engine test doubles for relaybox tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import anyio
import httpx
import pytest
from rich.console import Console

from relaybox.supervisor import EngineConfig, SupervisorSettings

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


# ---------------------------------------------------------------------------
# Engine process doubles
# ---------------------------------------------------------------------------


class FakeProcess:
    """Scriptable stand-in for a spawned engine process."""

    def __init__(self, pid: int, *, exit_on_terminate: bool = True) -> None:
        self.pid: int = pid
        self.returncode: int | None = None
        self.exit_on_terminate: bool = exit_on_terminate
        self.terminated: bool = False
        self.killed: bool = False
        self._exited = anyio.Event()
        self._stdout_send: MemoryObjectSendStream[bytes]
        self.stdout: MemoryObjectReceiveStream[bytes] | None
        self._stdout_send, self.stdout = anyio.create_memory_object_stream[bytes](100)
        self.stderr: MemoryObjectReceiveStream[bytes] | None = None

    def exit(self, code: int) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self._stdout_send.close()
        self._exited.set()

    def emit(self, text: str) -> None:
        self._stdout_send.send_nowait(text.encode())

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        if self.exit_on_terminate:
            self.exit(0)

    def kill(self) -> None:
        self.killed = True
        self.exit(-9)


@dataclass
class FakeProcessFactory:
    """Process factory handing out FakeProcess instances in spawn order."""

    fail_with: OSError | None = None
    exit_on_terminate: bool = True
    processes: list[FakeProcess] = field(default_factory=list)
    commands: list[tuple[str, ...]] = field(default_factory=list)
    cwds: list[Path] = field(default_factory=list)

    async def __call__(self, command: Sequence[str], *, cwd: Path) -> FakeProcess:
        if self.fail_with is not None:
            raise self.fail_with
        self.commands.append(tuple(command))
        self.cwds.append(cwd)
        process = FakeProcess(1000 + len(self.processes), exit_on_terminate=self.exit_on_terminate)
        self.processes.append(process)
        return process

    @property
    def last(self) -> FakeProcess:
        return self.processes[-1]


@dataclass
class FakeSweeper:
    """Stray sweeper that records calls instead of killing processes."""

    calls: list[tuple[str, int | None]] = field(default_factory=list)

    async def sweep(self, process_name: str, *, exclude: int | None = None) -> int:
        self.calls.append((process_name, exclude))
        return 0


@dataclass
class FakeControlApi:
    """In-memory engine control API served through httpx.MockTransport."""

    ready: bool = True
    upload_total: int = 0
    download_total: int = 0
    connections: list[dict[str, object]] = field(default_factory=list)
    fail_connections: bool = False
    command_status: int = 204
    on_probe: Callable[[], None] | None = None
    requests: list[httpx.Request] = field(default_factory=list)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "GET" and path == "/":
            if self.on_probe is not None:
                self.on_probe()
            if not self.ready:
                msg = "connection refused"
                raise httpx.ConnectError(msg, request=request)
            return httpx.Response(200, json={"hello": "engine"})
        if request.method == "GET" and path == "/connections":
            if self.fail_connections:
                msg = "connection refused"
                raise httpx.ConnectError(msg, request=request)
            return httpx.Response(
                200,
                json={
                    "uploadTotal": self.upload_total,
                    "downloadTotal": self.download_total,
                    "connections": self.connections,
                },
            )
        return httpx.Response(self.command_status)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def commands(self) -> list[tuple[str, str]]:
        return [
            (request.method, request.url.path)
            for request in self.requests
            if request.method != "GET"
        ]


@pytest.fixture
def process_factory() -> FakeProcessFactory:
    return FakeProcessFactory()


@pytest.fixture
def sweeper() -> FakeSweeper:
    return FakeSweeper()


@pytest.fixture
def control_api() -> FakeControlApi:
    return FakeControlApi()


@pytest.fixture
def engine_config(tmp_path: Path) -> EngineConfig:
    """EngineConfig pointing at an existing fake binary and config file."""
    kernel_dir = tmp_path / "kernel"
    kernel_dir.mkdir()
    executable = kernel_dir / "sing-box"
    _ = executable.write_text("#!/bin/sh\n")
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    _ = (config_dir / "config.json").write_text("{}")
    return EngineConfig(
        executable_path=executable,
        config_directory=config_dir,
        working_directory=kernel_dir,
    )


@pytest.fixture
def fast_settings() -> SupervisorSettings:
    """Supervisor settings with millisecond timings."""
    return SupervisorSettings(
        settle_delay=0.0,
        probe_interval=0.01,
        probe_timeout=0.5,
        probe_request_timeout=0.1,
        stop_timeout=0.2,
        restart_pause=0.0,
        max_restarts=3,
        restart_delay=0.01,
    )


@pytest.fixture
def console() -> Console:
    return Console(
        width=100,
        force_terminal=True,
        highlight=False,
        color_system=None,
        legacy_windows=False,
    )


@pytest.fixture
def sweeper_factory() -> Callable[[], FakeSweeper]:
    return FakeSweeper
