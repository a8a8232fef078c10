"""Data models for engine telemetry.

Payload models validate the control API's JSON; the dataclasses are the
shapes handed to callers.
"""

from dataclasses import dataclass
from typing import ClassVar

import pendulum
from pydantic import BaseModel, ConfigDict, Field


class ConnectionMetadataPayload(BaseModel):
    """Metadata block of a connection entry."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    network: str = ""
    type: str = ""
    source_ip: str = Field(default="", alias="sourceIP")
    source_port: str = Field(default="", alias="sourcePort")
    destination_ip: str = Field(default="", alias="destinationIP")
    destination_port: str = Field(default="", alias="destinationPort")
    host: str = ""


class ConnectionPayload(BaseModel):
    """One entry of the control API connection list."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    id: str
    metadata: ConnectionMetadataPayload = Field(default_factory=ConnectionMetadataPayload)
    rule: str = ""
    rule_payload: str = Field(default="", alias="rulePayload")
    chains: list[str] = Field(default_factory=list)
    upload: int = 0
    download: int = 0
    start: str | None = None


class ConnectionsPayload(BaseModel):
    """Response of ``GET /connections``: cumulative totals plus live connections."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    upload_total: int = Field(default=0, alias="uploadTotal", ge=0)
    download_total: int = Field(default=0, alias="downloadTotal", ge=0)
    # The engine reports null instead of [] when nothing is connected.
    connections: list[ConnectionPayload] | None = None

    @property
    def connection_list(self) -> list[ConnectionPayload]:
        """Return the connections, treating null as empty."""
        return self.connections or []


@dataclass(frozen=True, slots=True)
class TrafficSnapshot:
    """One telemetry sample. Every field is non-negative.

    Attributes:
        upload_speed: Bytes uploaded since the previous sample.
        download_speed: Bytes downloaded since the previous sample.
        upload_total: Cumulative bytes uploaded, as reported by the engine.
        download_total: Cumulative bytes downloaded, as reported by the engine.
        connection_count: Number of live connections.
    """

    upload_speed: int = 0
    download_speed: int = 0
    upload_total: int = 0
    download_total: int = 0
    connection_count: int = 0


@dataclass(frozen=True, slots=True)
class ConnectionInfo:
    """A live connection through the engine.

    Attributes:
        id: Engine-assigned connection ID.
        network: Transport network (tcp, udp).
        type: Inbound type that accepted the connection.
        source: ``ip:port`` of the client.
        destination: ``ip:port`` of the target.
        host: Requested host name, if known.
        matched_rule: Routing rule that matched.
        rule_payload: Payload of the matched rule.
        chains: Outbound chain, innermost first.
        upload_bytes: Bytes uploaded on this connection.
        download_bytes: Bytes downloaded on this connection.
        started_at: ISO 8601 UTC start time, or None if unparseable.
    """

    id: str
    network: str
    type: str
    source: str
    destination: str
    host: str
    matched_rule: str
    rule_payload: str
    chains: tuple[str, ...]
    upload_bytes: int
    download_bytes: int
    started_at: str | None

    @classmethod
    def from_payload(cls, payload: ConnectionPayload) -> "ConnectionInfo":  # noqa: UP037
        """Build a ConnectionInfo from a validated API entry."""
        meta = payload.metadata
        return cls(
            id=payload.id,
            network=meta.network,
            type=meta.type,
            source=f"{meta.source_ip}:{meta.source_port}",
            destination=f"{meta.destination_ip}:{meta.destination_port}",
            host=meta.host,
            matched_rule=payload.rule,
            rule_payload=payload.rule_payload,
            chains=tuple(payload.chains),
            upload_bytes=max(0, payload.upload),
            download_bytes=max(0, payload.download),
            started_at=_normalize_timestamp(payload.start),
        )


def _normalize_timestamp(value: str | None) -> str | None:
    if not value:
        return None
    try:
        parsed = pendulum.parse(value)
    except ValueError:
        return None
    if not isinstance(parsed, pendulum.DateTime):
        return None
    return parsed.in_timezone("UTC").to_iso8601_string()
