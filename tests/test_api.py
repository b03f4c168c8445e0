"""Tests for unifimon.api against an in-process httpx.MockTransport."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from unifimon.api import API_PREFIX, UnifiClient
from unifimon.errors import AuthenticationError, MalformedResponseError, TransientError
from unifimon.models import CPU, RX

Handler = Callable[[httpx.Request], httpx.Response]


def _call(handler: Handler, method: str, *args: Any, **client_kw: Any) -> Any:
    async def _go() -> Any:
        async with UnifiClient(
            "https://ctrl.local/",
            "secret",
            transport=httpx.MockTransport(handler),
            **client_kw,
        ) as client:
            return await getattr(client, method)(*args)

    return asyncio.run(_go())


def _page(data: list[Any], total: int | None = None, offset: int = 0) -> httpx.Response:
    body = {
        "offset": offset,
        "limit": 25,
        "count": len(data),
        "totalCount": len(data) if total is None else total,
        "data": data,
    }
    return httpx.Response(200, json=body)


# ── Requests & paging ──────────────────────────────────────────────────────


class TestRequests:
    def test_sends_api_key_and_prefix(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _page([{"id": "s1", "name": "Home"}])

        sites = _call(handler, "fetch_sites")
        assert [s.name for s in sites] == ["Home"]
        assert seen[0].headers["X-API-KEY"] == "secret"
        assert seen[0].url.path == f"{API_PREFIX}/sites"
        assert seen[0].url.params["limit"] == "25"

    def test_follows_pages(self) -> None:
        offsets: list[str] = []
        devices = [{"id": f"d{i}", "name": f"dev{i}", "state": "ONLINE"} for i in range(3)]

        def handler(request: httpx.Request) -> httpx.Response:
            offset = int(request.url.params["offset"])
            offsets.append(str(offset))
            return _page(devices[offset : offset + 2], total=3, offset=offset)

        result = _call(handler, "fetch_devices", "s1", page_size=2)
        assert [d.id for d in result] == ["d0", "d1", "d2"]
        assert offsets == ["0", "2"]
        assert all(d.site_id == "s1" for d in result)

    def test_empty_page_stops(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return _page([], total=10)

        assert _call(handler, "fetch_clients", "s1") == []
        assert len(calls) == 1

    def test_malformed_item_skipped(self, caplog: pytest.LogCaptureFixture) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return _page([{"id": "s1", "name": "Ok"}, {"name": "no id"}])

        with caplog.at_level("WARNING", logger="unifimon.api"):
            sites = _call(handler, "fetch_sites")
        assert [s.id for s in sites] == ["s1"]
        assert "skipping malformed site" in caplog.text

    def test_unpaged_payload_fails_batch(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{"id": "s1"}])

        with pytest.raises(MalformedResponseError):
            _call(handler, "fetch_sites")


# ── Error mapping ──────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("status", "error"),
    [
        (401, AuthenticationError),
        (403, AuthenticationError),
        (429, TransientError),
        (500, TransientError),
        (503, TransientError),
        (400, MalformedResponseError),
        (404, MalformedResponseError),
    ],
)
def test_status_mapping(status: int, error: type[Exception]) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"message": "nope"})

    with pytest.raises(error):
        _call(handler, "fetch_sites")


def test_invalid_json_is_malformed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>login</html>")

    with pytest.raises(MalformedResponseError):
        _call(handler, "fetch_sites")


def test_connection_refused_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientError):
        _call(handler, "fetch_sites")


def test_timeout_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(TransientError):
        _call(handler, "fetch_sites")


# ── Device endpoints ───────────────────────────────────────────────────────


class TestDevices:
    def test_details(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/sites/s1/devices/d1")
            return httpx.Response(
                200,
                json={
                    "id": "d1",
                    "name": "AP",
                    "state": "ONLINE",
                    "interfaces": {"radios": [{"frequencyGHz": 2.4, "channel": 6}]},
                },
            )

        device = _call(handler, "fetch_device_details", "s1", "d1")
        assert device.radios[0].channel == 6

    def test_metrics(self) -> None:
        stats = {
            "cpuUtilizationPct": 7.5,
            "memoryUtilizationPct": 30,
            "lastHeartbeatAt": "2024-05-01T10:00:00Z",
            "uplink": {"rxRateBps": 5000, "txRateBps": 100},
        }

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith("/sites/s1/devices/d1/statistics/latest")
            return httpx.Response(200, content=json.dumps(stats).encode())

        samples = _call(handler, "fetch_device_metrics", "s1", "d1", None)
        assert samples[CPU][0].value == 7.5
        assert samples[RX][0].value == 5000.0

    def test_metrics_since_filters_old_heartbeat(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"cpuUtilizationPct": 1, "lastHeartbeatAt": "2024-05-01T10:00:00Z"},
            )

        far_future = 4_000_000_000.0
        assert _call(handler, "fetch_device_metrics", "s1", "d1", far_future) == {}
