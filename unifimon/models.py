"""Entity types shown by the dashboard and their parsers for controller JSON.

All entities are frozen dataclasses: the store hands the same objects to
every reader, so nothing outside the store can change them.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Union

from unifimon.errors import MalformedResponseError

# ── Entity kinds & metric kinds ────────────────────────────────────────────

SITE = "site"
DEVICE = "device"
CLIENT = "client"
ENTITY_KINDS: tuple[str, ...] = (SITE, DEVICE, CLIENT)

# Per-device series
CPU = "cpu"
MEM = "mem"
RX = "rx"
TX = "tx"
UPTIME = "uptime"
GRAPH_METRICS: tuple[str, ...] = (CPU, MEM, RX, TX)
DEVICE_METRICS: tuple[str, ...] = (*GRAPH_METRICS, UPTIME)

# Per-site series (client counts)
CLIENTS_TOTAL = "clients"
CLIENTS_WIRELESS = "wireless"
CLIENTS_WIRED = "wired"
SITE_METRICS: tuple[str, ...] = (CLIENTS_TOTAL, CLIENTS_WIRELESS, CLIENTS_WIRED)

UNKNOWN_UPLINK = "unknown/offline"


# ── Data types ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Site:
    id: str
    name: str


@dataclass(frozen=True)
class PortStatus:
    idx: int
    state: str  # "up", "down", ...
    connector: str = ""
    speed_mbps: int | None = None
    max_speed_mbps: int | None = None
    poe: bool = False


@dataclass(frozen=True)
class RadioStatus:
    frequency_ghz: float | None
    channel: int | None = None
    channel_width_mhz: int | None = None
    standard: str = ""
    tx_retries_pct: float | None = None


@dataclass(frozen=True)
class Device:
    id: str
    site_id: str
    name: str
    model: str
    status: str  # lower-cased controller state: "online", "offline", ...
    mac: str = ""
    ip: str = ""
    firmware: str = ""
    uptime_seconds: int | None = None
    cpu_percent: float | None = None
    mem_percent: float | None = None
    throughput_in: float | None = None  # uplink rx, bits/s
    throughput_out: float | None = None  # uplink tx, bits/s
    ports: tuple[PortStatus, ...] = ()
    radios: tuple[RadioStatus, ...] = ()
    uplink_device_id: str | None = None  # only in device details

    @property
    def online(self) -> bool:
        return self.status == "online"


@dataclass(frozen=True)
class Client:
    id: str
    site_id: str
    name: str
    ip: str
    mac: str
    medium: str  # "wired", "wireless", or whatever else the controller reports
    uptime_seconds: int | None = None
    status: str = "connected"
    uplink_device_id: str | None = None


@dataclass(frozen=True)
class MetricSample:
    timestamp: float
    value: float


@dataclass(frozen=True)
class FreshnessInfo:
    last_successful_update: float
    consecutive_miss_count: int = 0
    stale: bool = False


Entity = Union[Site, Device, Client]


def keep_device_details(old: Device, new: Device) -> Device:
    """Refresh overview fields from a device-list entry, keep fetched details.

    The device list carries no ports, radios or utilisation; replacing the
    stored device outright would blank the detail view every list poll.
    """
    return dataclasses.replace(
        old,
        site_id=new.site_id,
        name=new.name,
        model=new.model,
        status=new.status,
        mac=new.mac or old.mac,
        ip=new.ip or old.ip,
    )


# ── Parsing helpers ────────────────────────────────────────────────────────


def _require(raw: Any, key: str) -> Any:
    if not isinstance(raw, dict):
        raise MalformedResponseError(f"expected an object, got {type(raw).__name__}")
    try:
        value = raw[key]
    except KeyError as e:
        raise MalformedResponseError(f"missing field {key!r}") from e
    if value is None:
        raise MalformedResponseError(f"field {key!r} is null")
    return value


def _opt_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _opt_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_timestamp(value: Any) -> float | None:
    """ISO-8601 (``2024-01-31T10:00:00Z``) to epoch seconds, None if unparsable."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


def parse_site(raw: Any) -> Site:
    site_id = str(_require(raw, "id"))
    name = raw.get("name") or raw.get("internalReference") or "Unnamed"
    return Site(id=site_id, name=str(name))


def _parse_port(raw: dict[str, Any]) -> PortStatus:
    poe = raw.get("poe") or {}
    return PortStatus(
        idx=int(_require(raw, "idx")),
        state=str(raw.get("state", "unknown")).lower(),
        connector=str(raw.get("connector") or ""),
        speed_mbps=_opt_int(raw.get("speedMbps")),
        max_speed_mbps=_opt_int(raw.get("maxSpeedMbps")),
        poe=bool(poe.get("enabled")) if isinstance(poe, dict) else False,
    )


def _parse_radio(raw: dict[str, Any]) -> RadioStatus:
    return RadioStatus(
        frequency_ghz=_opt_float(raw.get("frequencyGHz")),
        channel=_opt_int(raw.get("channel")),
        channel_width_mhz=_opt_int(raw.get("channelWidthMHz")),
        standard=str(raw.get("wlanStandard") or ""),
        tx_retries_pct=_opt_float(raw.get("txRetriesPct")),
    )


def parse_device(raw: Any, site_id: str) -> Device:
    """Parse a device-list entry or a device-details document."""
    device_id = str(_require(raw, "id"))
    interfaces = raw.get("interfaces")
    ports: tuple[PortStatus, ...] = ()
    radios: tuple[RadioStatus, ...] = ()
    # The list endpoint returns interface *names*; details return objects.
    if isinstance(interfaces, dict):
        try:
            ports = tuple(_parse_port(p) for p in interfaces.get("ports") or [])
            radios = tuple(_parse_radio(r) for r in interfaces.get("radios") or [])
        except (TypeError, ValueError, AttributeError) as e:
            raise MalformedResponseError(f"device {device_id}: bad interfaces") from e
    uplink = raw.get("uplink")
    uplink_id = uplink.get("deviceId") if isinstance(uplink, dict) else None
    return Device(
        id=device_id,
        site_id=site_id,
        name=str(raw.get("name") or raw.get("macAddress") or device_id),
        model=str(raw.get("model") or ""),
        status=str(raw.get("state") or "unknown").lower(),
        mac=str(raw.get("macAddress") or ""),
        ip=str(raw.get("ipAddress") or ""),
        firmware=str(raw.get("firmwareVersion") or ""),
        ports=ports,
        radios=radios,
        uplink_device_id=str(uplink_id) if uplink_id else None,
    )


def parse_client(raw: Any, site_id: str, now: float) -> Client:
    client_id = str(_require(raw, "id"))
    connected_at = parse_timestamp(raw.get("connectedAt"))
    uptime = int(max(0.0, now - connected_at)) if connected_at is not None else None
    uplink = raw.get("uplinkDeviceId")
    return Client(
        id=client_id,
        site_id=site_id,
        name=str(raw.get("name") or raw.get("macAddress") or client_id),
        ip=str(raw.get("ipAddress") or ""),
        mac=str(raw.get("macAddress") or ""),
        medium=str(raw.get("type") or "unknown").lower(),
        uptime_seconds=uptime,
        uplink_device_id=str(uplink) if uplink else None,
    )


def parse_statistics(raw: Any, observed_at: float) -> dict[str, MetricSample]:
    """Turn a latest-statistics document into ``{metric: sample}``.

    The sample timestamp is the device's last heartbeat when reported,
    otherwise the time the request was issued.
    """
    if not isinstance(raw, dict):
        raise MalformedResponseError("statistics: expected an object")
    ts = parse_timestamp(raw.get("lastHeartbeatAt")) or observed_at
    samples: dict[str, MetricSample] = {}
    for kind, value in (
        (CPU, raw.get("cpuUtilizationPct")),
        (MEM, raw.get("memoryUtilizationPct")),
        (UPTIME, raw.get("uptimeSec")),
    ):
        number = _opt_float(value)
        if number is not None:
            samples[kind] = MetricSample(ts, number)
    uplink = raw.get("uplink")
    if isinstance(uplink, dict):
        for kind, key in ((RX, "rxRateBps"), (TX, "txRateBps")):
            number = _opt_float(uplink.get(key))
            if number is not None:
                samples[kind] = MetricSample(ts, number)
    return samples
