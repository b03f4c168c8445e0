"""Async client for the UniFi Network integration API.

Talks to ``{url}/proxy/network/integration/v1`` with an ``X-API-KEY``
header. Every failure leaves this module as one of the
:mod:`unifimon.errors` types; nothing else escapes.
"""

from __future__ import annotations

import time
from typing import Any

import httpx

from unifimon.errors import AuthenticationError, MalformedResponseError, TransientError
from unifimon.logs import get_logger
from unifimon.models import (
    Client,
    Device,
    MetricSample,
    Site,
    parse_client,
    parse_device,
    parse_site,
    parse_statistics,
)

log = get_logger("api")

API_PREFIX = "/proxy/network/integration/v1"
DEFAULT_PAGE_SIZE = 25
DEFAULT_TIMEOUT = 10.0
USER_AGENT = "unifimon/0.1"


class UnifiClient:
    """Read-only view of one controller. Use as an async context manager."""

    def __init__(
        self,
        url: str,
        api_key: str,
        *,
        verify: bool = True,
        timeout: float = DEFAULT_TIMEOUT,
        page_size: int = DEFAULT_PAGE_SIZE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = url.rstrip("/") + API_PREFIX
        self.page_size = max(1, int(page_size))
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
            headers={
                "X-API-KEY": api_key,
                "Accept": "application/json",
                "User-Agent": USER_AGENT,
            },
            verify=verify,
            transport=transport,
        )

    async def __aenter__(self) -> UnifiClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── HTTP plumbing ──────────────────────────────────────────────────────

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            resp = await self._http.get(path, params=params)
        except httpx.TimeoutException as e:
            raise TransientError(f"timeout on {path}") from e
        except httpx.TransportError as e:
            raise TransientError(f"cannot reach controller: {e}") from e

        status = resp.status_code
        if status in (401, 403):
            raise AuthenticationError(f"HTTP {status} on {path}")
        if status == 429 or status >= 500:
            raise TransientError(f"HTTP {status} on {path}")
        if status >= 400:
            raise MalformedResponseError(f"HTTP {status} on {path}")
        try:
            return resp.json()
        except ValueError as e:
            raise MalformedResponseError(f"invalid JSON from {path}") from e

    async def _get_paged(self, path: str) -> list[Any]:
        """Collect every page of a list endpoint."""
        items: list[Any] = []
        offset = 0
        while True:
            body = await self._get(path, {"offset": offset, "limit": self.page_size})
            if not isinstance(body, dict) or not isinstance(body.get("data"), list):
                raise MalformedResponseError(f"{path}: expected a paged object with 'data'")
            page = body["data"]
            items.extend(page)
            total = body.get("totalCount")
            offset += len(page)
            if not page or not isinstance(total, int) or offset >= total:
                return items

    @staticmethod
    def _parse_each(what: str, raw_items: list[Any], parse: Any) -> list[Any]:
        """Parse list entries, skipping (and logging) the ones that are broken."""
        parsed = []
        for raw in raw_items:
            try:
                parsed.append(parse(raw))
            except MalformedResponseError as e:
                log.warning("skipping malformed %s entry: %s", what, e)
        return parsed

    # ── Fetches ────────────────────────────────────────────────────────────

    async def fetch_sites(self) -> list[Site]:
        raw = await self._get_paged("/sites")
        return self._parse_each("site", raw, parse_site)

    async def fetch_devices(self, site_id: str) -> list[Device]:
        raw = await self._get_paged(f"/sites/{site_id}/devices")
        return self._parse_each("device", raw, lambda r: parse_device(r, site_id))

    async def fetch_clients(self, site_id: str) -> list[Client]:
        now = time.time()
        raw = await self._get_paged(f"/sites/{site_id}/clients")
        return self._parse_each("client", raw, lambda r: parse_client(r, site_id, now))

    async def fetch_device_details(self, site_id: str, device_id: str) -> Device:
        raw = await self._get(f"/sites/{site_id}/devices/{device_id}")
        return parse_device(raw, site_id)

    async def fetch_device_metrics(
        self, site_id: str, device_id: str, since: float | None = None
    ) -> dict[str, list[MetricSample]]:
        """Latest statistics as per-metric sample lists newer than *since*."""
        observed = time.time()
        raw = await self._get(f"/sites/{site_id}/devices/{device_id}/statistics/latest")
        samples = parse_statistics(raw, observed)
        return {
            kind: [sample]
            for kind, sample in samples.items()
            if since is None or sample.timestamp > since
        }

    async def check_credentials(self) -> list[Site]:
        """One site fetch, used before the UI starts to fail fast on a bad key."""
        return await self.fetch_sites()
