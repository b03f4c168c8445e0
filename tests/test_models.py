"""Tests for unifimon.models parsers."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from unifimon.errors import MalformedResponseError
from unifimon.models import (
    CPU,
    MEM,
    RX,
    TX,
    UPTIME,
    Device,
    keep_device_details,
    parse_client,
    parse_device,
    parse_site,
    parse_statistics,
    parse_timestamp,
)

DEVICE_DETAILS = {
    "id": "dev-1",
    "name": "Office AP",
    "model": "U6 Pro",
    "macAddress": "aa:bb:cc:dd:ee:ff",
    "ipAddress": "192.168.1.20",
    "state": "ONLINE",
    "firmwareVersion": "6.6.55",
    "uplink": {"deviceId": "gw-1"},
    "interfaces": {
        "ports": [
            {"idx": 1, "state": "UP", "connector": "RJ45", "speedMbps": 1000,
             "maxSpeedMbps": 2500, "poe": {"enabled": True}},
        ],
        "radios": [
            {"frequencyGHz": 5, "channel": 36, "channelWidthMHz": 80, "wlanStandard": "802.11ax"},
        ],
    },
}


def _epoch(iso: str) -> float:
    return datetime.fromisoformat(iso).replace(tzinfo=timezone.utc).timestamp()


class TestParseSite:
    def test_basic(self) -> None:
        site = parse_site({"id": "s1", "name": "Default"})
        assert site.id == "s1"
        assert site.name == "Default"

    def test_falls_back_to_reference(self) -> None:
        assert parse_site({"id": "s1", "internalReference": "default"}).name == "default"

    def test_missing_id(self) -> None:
        with pytest.raises(MalformedResponseError):
            parse_site({"name": "x"})

    def test_not_an_object(self) -> None:
        with pytest.raises(MalformedResponseError):
            parse_site(["s1"])


class TestParseDevice:
    def test_details(self) -> None:
        device = parse_device(DEVICE_DETAILS, "s1")
        assert device.site_id == "s1"
        assert device.status == "online"
        assert device.online
        assert device.firmware == "6.6.55"
        assert device.ports[0].state == "up"
        assert device.ports[0].poe is True
        assert device.ports[0].speed_mbps == 1000
        assert device.radios[0].frequency_ghz == 5.0
        assert device.radios[0].channel == 36
        assert device.uplink_device_id == "gw-1"

    def test_list_entry_with_interface_names(self) -> None:
        raw = {"id": "dev-2", "name": "Switch", "state": "OFFLINE", "interfaces": ["ports"]}
        device = parse_device(raw, "s1")
        assert device.ports == ()
        assert device.status == "offline"
        assert not device.online
        assert device.uplink_device_id is None

    def test_name_falls_back_to_mac(self) -> None:
        device = parse_device({"id": "d", "macAddress": "aa:aa"}, "s1")
        assert device.name == "aa:aa"

    def test_bad_port(self) -> None:
        raw = {"id": "d", "interfaces": {"ports": [{"state": "UP"}]}}
        with pytest.raises(MalformedResponseError):
            parse_device(raw, "s1")


class TestParseClient:
    def test_uptime_from_connected_at(self) -> None:
        raw = {
            "id": "c1",
            "name": "phone",
            "type": "WIRELESS",
            "ipAddress": "10.0.0.5",
            "macAddress": "11:22:33:44:55:66",
            "connectedAt": "2024-05-01T10:00:00Z",
            "uplinkDeviceId": "dev-1",
        }
        now = _epoch("2024-05-01T11:30:00")
        client = parse_client(raw, "s1", now)
        assert client.medium == "wireless"
        assert client.uptime_seconds == 5400
        assert client.uplink_device_id == "dev-1"

    def test_optional_fields_missing(self) -> None:
        client = parse_client({"id": "c2"}, "s1", 0.0)
        assert client.name == "c2"
        assert client.uptime_seconds is None
        assert client.uplink_device_id is None
        assert client.medium == "unknown"


class TestParseStatistics:
    def test_all_metrics(self) -> None:
        raw = {
            "uptimeSec": 3600,
            "cpuUtilizationPct": 12.5,
            "memoryUtilizationPct": 40,
            "lastHeartbeatAt": "2024-05-01T10:00:00Z",
            "uplink": {"txRateBps": 1000, "rxRateBps": 2000},
        }
        samples = parse_statistics(raw, observed_at=1.0)
        ts = _epoch("2024-05-01T10:00:00")
        assert samples[CPU].value == 12.5
        assert samples[CPU].timestamp == ts
        assert samples[MEM].value == 40.0
        assert samples[UPTIME].value == 3600.0
        assert samples[RX].value == 2000.0
        assert samples[TX].value == 1000.0

    def test_missing_heartbeat_uses_observed_time(self) -> None:
        samples = parse_statistics({"cpuUtilizationPct": 1}, observed_at=42.0)
        assert samples[CPU].timestamp == 42.0
        assert MEM not in samples

    def test_not_an_object(self) -> None:
        with pytest.raises(MalformedResponseError):
            parse_statistics("nope", observed_at=1.0)


def test_parse_timestamp_invalid() -> None:
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp(None) is None


def test_keep_device_details() -> None:
    old = parse_device(DEVICE_DETAILS, "s1")
    new = Device(id="dev-1", site_id="s1", name="Renamed", model="U6 Pro", status="offline")
    merged = keep_device_details(old, new)
    assert merged.name == "Renamed"
    assert merged.status == "offline"
    assert merged.ports == old.ports
    assert merged.mac == old.mac
    assert merged.uplink_device_id == "gw-1"
