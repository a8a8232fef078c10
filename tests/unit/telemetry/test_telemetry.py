from __future__ import annotations

from typing import TYPE_CHECKING

import anyio
import httpx
import orjson
import pytest

from relaybox.exceptions import NetworkError
from relaybox.telemetry import (
    ControlApiClient,
    TrafficMeter,
    TrafficPoller,
    TrafficSnapshot,
)

if TYPE_CHECKING:
    from tests.conftest import FakeControlApi

pytestmark = pytest.mark.anyio

API_URL = "http://127.0.0.1:9090"

CONNECTION = {
    "id": "c-1",
    "metadata": {
        "network": "tcp",
        "type": "mixed/in",
        "sourceIP": "127.0.0.1",
        "sourcePort": 51000,
        "destinationIP": "93.184.216.34",
        "destinationPort": "443",
        "host": "example.com",
    },
    "rule": "final",
    "rulePayload": "",
    "chains": ["direct"],
    "upload": 120,
    "download": 4096,
    "start": "2024-05-01T10:00:00+02:00",
}


@pytest.fixture
def client(control_api: FakeControlApi) -> ControlApiClient:
    return ControlApiClient(API_URL, transport=control_api.transport)


class TestTrafficMeter:
    def test_first_sample_has_zero_speed(self) -> None:
        meter = TrafficMeter()

        snapshot = meter.sample(1000, 2000, 3)

        assert snapshot == TrafficSnapshot(
            upload_speed=0,
            download_speed=0,
            upload_total=1000,
            download_total=2000,
            connection_count=3,
        )

    def test_speed_is_delta_between_samples(self) -> None:
        meter = TrafficMeter()
        _ = meter.sample(1000, 2000, 0)

        snapshot = meter.sample(1500, 2600, 0)

        assert (snapshot.upload_speed, snapshot.download_speed) == (500, 600)

    def test_counter_reset_reports_zero(self) -> None:
        meter = TrafficMeter()
        _ = meter.sample(1000, 2000, 0)

        snapshot = meter.sample(10, 2500, 0)

        assert snapshot.upload_speed == 0
        assert snapshot.download_speed == 500

    def test_reset_forgets_baseline(self) -> None:
        meter = TrafficMeter()
        _ = meter.sample(1000, 2000, 0)
        meter.reset()

        snapshot = meter.sample(5000, 5000, 0)

        assert (snapshot.upload_speed, snapshot.download_speed) == (0, 0)


class TestControlApiClient:
    async def test_ping(self, client: ControlApiClient, control_api: FakeControlApi) -> None:
        assert await client.ping()
        control_api.ready = False
        assert not await client.ping()

    async def test_fetch_connections(
        self, client: ControlApiClient, control_api: FakeControlApi
    ) -> None:
        control_api.upload_total = 10
        control_api.download_total = 20
        control_api.connections = [CONNECTION]

        payload = await client.fetch_connections()

        assert (payload.upload_total, payload.download_total) == (10, 20)
        assert len(payload.connection_list) == 1

    async def test_fetch_failure_raises_network_error(
        self, client: ControlApiClient, control_api: FakeControlApi
    ) -> None:
        control_api.fail_connections = True

        with pytest.raises(NetworkError):
            _ = await client.fetch_connections()

    async def test_null_connection_list_is_empty(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200, content=orjson.dumps({"uploadTotal": 1, "downloadTotal": 2, "connections": None})
            )

        client = ControlApiClient(API_URL, transport=httpx.MockTransport(handler))

        assert await client.get_connections() == []
        assert (await client.fetch_connections()).connection_list == []

    async def test_invalid_payload_raises_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"not json")

        client = ControlApiClient(API_URL, transport=httpx.MockTransport(handler))

        with pytest.raises(NetworkError, match="Unexpected connections payload"):
            _ = await client.fetch_connections()

    async def test_get_connections_maps_entries(
        self, client: ControlApiClient, control_api: FakeControlApi
    ) -> None:
        control_api.connections = [CONNECTION]

        [info] = await client.get_connections()

        assert info.id == "c-1"
        assert info.source == "127.0.0.1:51000"
        assert info.destination == "93.184.216.34:443"
        assert info.chains == ("direct",)
        assert info.download_bytes == 4096
        assert info.started_at is not None
        assert info.started_at.startswith("2024-05-01T08:00:00")

    async def test_get_connections_failure_is_empty(
        self, client: ControlApiClient, control_api: FakeControlApi
    ) -> None:
        control_api.fail_connections = True

        assert await client.get_connections() == []

    async def test_commands(self, client: ControlApiClient, control_api: FakeControlApi) -> None:
        assert await client.close_connection("c-1")
        assert await client.close_all_connections()
        assert await client.select_outbound("node-a", "PROXY")
        assert await client.set_mode("global")

        assert control_api.commands() == [
            ("DELETE", "/connections/c-1"),
            ("DELETE", "/connections"),
            ("PUT", "/proxies/PROXY"),
            ("PATCH", "/configs"),
        ]
        assert orjson.loads(control_api.requests[-1].content) == {"mode": "global"}

    @pytest.mark.parametrize(("status", "expected"), [(200, True), (204, True), (404, False), (500, False)])
    async def test_command_status_codes(
        self,
        client: ControlApiClient,
        control_api: FakeControlApi,
        status: int,
        expected: bool,
    ) -> None:
        control_api.command_status = status

        assert await client.select_outbound("node-a") is expected

    async def test_secret_sent_as_bearer(self, control_api: FakeControlApi) -> None:
        client = ControlApiClient(API_URL, secret="s3cret", transport=control_api.transport)

        _ = await client.ping()

        assert control_api.requests[-1].headers["Authorization"] == "Bearer s3cret"

    async def test_configure_switches_base_url(
        self, client: ControlApiClient, control_api: FakeControlApi
    ) -> None:
        await client.configure("http://127.0.0.1:9191", secret="new")

        _ = await client.ping()

        assert client.base_url == "http://127.0.0.1:9191"
        assert control_api.requests[-1].url.port == 9191
        assert control_api.requests[-1].headers["Authorization"] == "Bearer new"


class TestTrafficPoller:
    async def test_poll_once_publishes_snapshot(
        self, client: ControlApiClient, control_api: FakeControlApi
    ) -> None:
        poller = TrafficPoller(client, interval=0.01)
        received: list[TrafficSnapshot] = []

        async def listener(snapshot: TrafficSnapshot) -> None:
            received.append(snapshot)

        _ = poller.snapshots.subscribe(listener)
        control_api.upload_total, control_api.download_total = 1000, 2000
        _ = await poller.poll_once()
        control_api.upload_total, control_api.download_total = 1500, 2600

        snapshot = await poller.poll_once()

        assert snapshot is not None
        assert (snapshot.upload_speed, snapshot.download_speed) == (500, 600)
        assert len(received) == 2
        assert received[-1] == snapshot
        assert poller.get_snapshot() == snapshot

    async def test_failed_sample_is_skipped(
        self, client: ControlApiClient, control_api: FakeControlApi
    ) -> None:
        poller = TrafficPoller(client)
        control_api.upload_total = 100
        first = await poller.poll_once()
        control_api.fail_connections = True

        assert await poller.poll_once() is None
        assert poller.get_snapshot() == first

    async def test_snapshot_before_first_sample_is_zero(self, client: ControlApiClient) -> None:
        assert TrafficPoller(client).get_snapshot() == TrafficSnapshot()

    async def test_start_requires_context(self, client: ControlApiClient) -> None:
        with pytest.raises(RuntimeError, match="async with"):
            TrafficPoller(client).start()

    async def test_samples_on_interval_and_stop_resets(
        self, client: ControlApiClient, control_api: FakeControlApi
    ) -> None:
        control_api.upload_total = 50
        async with TrafficPoller(client, interval=0.01) as poller:
            poller.start()
            with anyio.fail_after(2):
                while poller.get_snapshot().upload_total != 50:
                    await anyio.sleep(0.01)

            poller.stop()

            assert not poller.is_running()
            assert poller.get_snapshot() == TrafficSnapshot()

    async def test_pause_keeps_running_state(self, client: ControlApiClient) -> None:
        async with TrafficPoller(client, interval=0.01) as poller:
            poller.start()
            poller.pause()

            assert poller.is_running()
            assert poller.is_paused()

            poller.resume()

            assert not poller.is_paused()
