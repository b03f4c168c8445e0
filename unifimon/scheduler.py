"""Polling scheduler: fetches each data class at its own cadence.

Each poll class (sites, devices, clients, metrics of the device in view)
carries explicit state: next due time, backoff level, in-flight flag and a
generation counter. :meth:`Scheduler.tick` is driven by the UI loop with the
current time and starts a fetch task for every class that is due and idle;
nothing here ever blocks the caller.

Fetch results are written into the store and ring buffers by the task that
fetched them. A result whose generation no longer matches its class (the
site scope or focused device changed meanwhile) is discarded. Every
completion is also queued as a :class:`PollOutcome` for the UI to drain.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, replace
from typing import Any, Protocol

from unifimon.errors import AuthenticationError, FetchError, MalformedResponseError
from unifimon.logs import get_logger
from unifimon.models import (
    CLIENT,
    CLIENTS_TOTAL,
    CLIENTS_WIRED,
    CLIENTS_WIRELESS,
    CPU,
    DEVICE,
    DEVICE_METRICS,
    MEM,
    RX,
    SITE,
    TX,
    UPTIME,
    Client,
    Device,
    MetricSample,
    Site,
    keep_device_details,
)
from unifimon.series import MetricRingBuffers
from unifimon.store import EntityStore

log = get_logger("scheduler")

SITES = "sites"
DEVICES = "devices"
CLIENTS = "clients"
METRICS = "metrics"
POLL_CLASSES: tuple[str, ...] = (SITES, DEVICES, CLIENTS, METRICS)
SCOPED_CLASSES: tuple[str, ...] = (DEVICES, CLIENTS, METRICS)

DEFAULT_INTERVALS: dict[str, float] = {
    SITES: 60.0,
    DEVICES: 10.0,
    CLIENTS: 10.0,
    METRICS: 5.0,
}
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_BACKOFF_CAP = 60.0

OUTBOX_SIZE = 64


class ControllerAPI(Protocol):
    """What the scheduler needs from the controller client."""

    async def fetch_sites(self) -> list[Site]: ...

    async def fetch_devices(self, site_id: str) -> list[Device]: ...

    async def fetch_clients(self, site_id: str) -> list[Client]: ...

    async def fetch_device_details(self, site_id: str, device_id: str) -> Device: ...

    async def fetch_device_metrics(
        self, site_id: str, device_id: str, since: float | None = None
    ) -> dict[str, list[MetricSample]]: ...


Spawn = Callable[[Coroutine[Any, Any, bool]], Any]


# ── Data types ─────────────────────────────────────────────────────────────


@dataclass
class PollState:
    """Scheduling state of one poll class."""

    name: str
    interval: float
    backoff_cap: float
    multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    next_due: float = 0.0
    backoff_level: int = 0
    in_flight: bool = False
    generation: int = 0
    failures: int = 0  # consecutive
    halted: bool = False  # credentials rejected mid-session
    last_success: float | None = None
    last_error: str | None = None

    def retry_delay(self) -> float:
        """Delay before the next attempt at the current backoff level."""
        cap = max(self.interval, self.backoff_cap)
        return min(self.interval * self.multiplier**self.backoff_level, cap)


@dataclass(frozen=True)
class PollJob:
    """One issued fetch. ``started_at`` doubles as the observation time."""

    poll: str
    generation: int
    started_at: float
    site_id: str | None = None
    device_id: str | None = None


@dataclass(frozen=True)
class PollOutcome:
    """Completion record delivered to the UI loop."""

    poll: str
    ok: bool
    at: float
    error_kind: str | None = None
    message: str = ""
    discarded: bool = False


@dataclass(frozen=True)
class DeviceMetrics:
    details: Device | None
    samples: dict[str, list[MetricSample]]


# ── Scheduler ──────────────────────────────────────────────────────────────


class Scheduler:
    def __init__(
        self,
        api: ControllerAPI,
        store: EntityStore,
        buffers: MetricRingBuffers,
        intervals: dict[str, float] | None = None,
        *,
        backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
        backoff_cap: float = DEFAULT_BACKOFF_CAP,
        clock: Callable[[], float] = time.time,
        spawn: Spawn | None = None,
    ) -> None:
        self._api = api
        self._store = store
        self._buffers = buffers
        self._clock = clock
        self._spawn = spawn or asyncio.ensure_future
        merged = {**DEFAULT_INTERVALS, **(intervals or {})}
        self._polls: dict[str, PollState] = {
            name: PollState(
                name=name,
                interval=float(merged[name]),
                backoff_cap=backoff_cap,
                multiplier=backoff_multiplier,
            )
            for name in POLL_CLASSES
        }
        self._tasks: dict[str, Any] = {}
        self._outbox: deque[PollOutcome] = deque(maxlen=OUTBOX_SIZE)
        self.site_id: str | None = None
        self.device_id: str | None = None

    # ── Introspection ──────────────────────────────────────────────────────

    def state(self, poll: str) -> PollState:
        """A copy of one class's state (for display and tests)."""
        return replace(self._polls[poll])

    def states(self) -> list[PollState]:
        return [replace(s) for s in self._polls.values()]

    def drain_outcomes(self) -> list[PollOutcome]:
        outcomes = list(self._outbox)
        self._outbox.clear()
        return outcomes

    # ── Driving ────────────────────────────────────────────────────────────

    def tick(self, now: float) -> list[PollJob]:
        """Start a fetch for every due, idle, runnable class. Returns the jobs."""
        started: list[PollJob] = []
        for state in self._polls.values():
            if state.halted or state.next_due > now:
                continue
            if state.in_flight:
                # Still waiting on the previous fetch: skip, never queue.
                continue
            job = self._make_job(state, now)
            if job is None:
                continue
            state.in_flight = True
            self._tasks[state.name] = self._spawn(self._run(job))
            started.append(job)
        return started

    def set_scope(self, site_id: str | None, now: float) -> bool:
        """Re-target site-scoped polling. Returns True if the scope changed."""
        if site_id == self.site_id:
            return False
        log.info("site scope %s -> %s", self.site_id, site_id)
        self.site_id = site_id
        self.device_id = None
        self._store.evict_outside_site(site_id)
        self._buffers.retain(
            [*self._store.ids(SITE), *self._store.ids(DEVICE), *self._store.ids(CLIENT)]
        )
        for name in SCOPED_CLASSES:
            self._restart(name, now)
        return True

    def set_focus(self, device_id: str | None, now: float) -> bool:
        """Choose the device whose metrics are polled (None stops metrics)."""
        if device_id == self.device_id:
            return False
        self.device_id = device_id
        self._restart(METRICS, now)
        return True

    def force_refresh(self, now: float) -> None:
        """Make every class due immediately (halted ones stay halted)."""
        for state in self._polls.values():
            state.next_due = min(state.next_due, now)

    def shutdown(self) -> None:
        """Abandon every outstanding fetch."""
        for name in list(self._tasks):
            self._cancel_task(name)
        for state in self._polls.values():
            state.generation += 1
            state.in_flight = False

    # ── Internals ──────────────────────────────────────────────────────────

    def _make_job(self, state: PollState, now: float) -> PollJob | None:
        if state.name == SITES:
            return PollJob(SITES, state.generation, now)
        if self.site_id is None:
            return None
        if state.name == METRICS:
            if self.device_id is None:
                return None
            return PollJob(METRICS, state.generation, now, self.site_id, self.device_id)
        return PollJob(state.name, state.generation, now, self.site_id)

    def _restart(self, name: str, now: float) -> None:
        state = self._polls[name]
        self._cancel_task(name)
        state.generation += 1
        state.in_flight = False
        state.backoff_level = 0
        state.failures = 0
        state.next_due = now

    def _cancel_task(self, name: str) -> None:
        task = self._tasks.pop(name, None)
        cancel = getattr(task, "cancel", None)
        if cancel is not None:
            cancel()

    def _current(self, job: PollJob) -> bool:
        return self._polls[job.poll].generation == job.generation

    async def _run(self, job: PollJob) -> bool:
        """Fetch, then apply the result. All failures stop here."""
        try:
            result = await self._fetch(job)
        except FetchError as exc:
            return self._on_failure(job, exc)
        except asyncio.CancelledError:
            log.debug("%s fetch cancelled", job.poll)
            raise
        except Exception as exc:
            log.exception("unexpected error during %s fetch", job.poll)
            return self._on_failure(job, MalformedResponseError(repr(exc)))
        return self._on_success(job, result)

    async def _fetch(self, job: PollJob) -> Any:
        if job.poll == SITES:
            return await self._api.fetch_sites()
        site_id = job.site_id
        if site_id is None:
            raise RuntimeError(f"{job.poll} job issued without a site scope")
        if job.poll == DEVICES:
            return await self._api.fetch_devices(site_id)
        if job.poll == CLIENTS:
            return await self._api.fetch_clients(site_id)
        device_id = job.device_id
        if device_id is None:
            raise RuntimeError("metrics job issued without a device")
        since = self._buffers.last_timestamp(device_id, DEVICE_METRICS)
        details = await self._api.fetch_device_details(site_id, device_id)
        samples = await self._api.fetch_device_metrics(site_id, device_id, since)
        return DeviceMetrics(details, samples)

    def _on_success(self, job: PollJob, result: Any) -> bool:
        done_at = self._clock()
        if not self._current(job):
            log.debug("discarding %s result from superseded scope", job.poll)
            self._outbox.append(PollOutcome(job.poll, True, done_at, discarded=True))
            return False

        observed = job.started_at
        if job.poll == SITES:
            self._store.merge_full_list(SITE, result, observed)
        elif job.poll == DEVICES:
            self._store.merge_full_list(
                DEVICE, result, observed, site_id=job.site_id, combine=keep_device_details
            )
        elif job.poll == CLIENTS:
            self._store.merge_full_list(CLIENT, result, observed, site_id=job.site_id)
            self._record_client_counts(job.site_id, result, observed)
        elif job.device_id is not None:
            self._apply_metrics(job.device_id, result, observed)

        state = self._polls[job.poll]
        state.in_flight = False
        state.backoff_level = 0
        state.failures = 0
        state.last_success = done_at
        state.last_error = None
        state.next_due = job.started_at + state.interval
        self._tasks.pop(job.poll, None)
        self._outbox.append(PollOutcome(job.poll, True, done_at))
        return True

    def _on_failure(self, job: PollJob, exc: FetchError) -> bool:
        done_at = self._clock()
        if not self._current(job):
            log.debug("ignoring %s failure from superseded scope: %s", job.poll, exc)
            return False

        state = self._polls[job.poll]
        state.in_flight = False
        state.failures += 1
        state.last_error = str(exc) or exc.kind
        self._tasks.pop(job.poll, None)

        if isinstance(exc, AuthenticationError):
            state.halted = True
            log.error("%s polling halted, credentials rejected: %s", job.poll, exc)
        else:
            state.backoff_level += 1
            state.next_due = done_at + state.retry_delay()
            log.warning(
                "%s fetch failed (%s, %d in a row), retry in %.0fs: %s",
                job.poll,
                exc.kind,
                state.failures,
                state.next_due - done_at,
                exc,
            )

        if job.poll == SITES:
            self._store.mark_stale(SITE)
        elif job.poll == DEVICES:
            self._store.mark_stale(DEVICE, site_id=job.site_id)
        elif job.poll == CLIENTS:
            self._store.mark_stale(CLIENT, site_id=job.site_id)
        else:
            self._store.mark_stale(DEVICE, entity_id=job.device_id)

        self._outbox.append(
            PollOutcome(job.poll, False, done_at, exc.kind, state.last_error)
        )
        return False

    def _apply_metrics(self, device_id: str, result: DeviceMetrics, observed: float) -> None:
        if self._store.get(DEVICE, device_id) is None:
            # Evicted while the fetch was out; listings decide what exists.
            log.debug("dropping metrics for unlisted device %s", device_id)
            return
        for kind, samples in result.samples.items():
            self._buffers.extend(device_id, kind, samples)
        if result.details is None:
            return
        latest = {k: self._buffers.latest(device_id, k) for k in DEVICE_METRICS}
        device = replace(
            result.details,
            cpu_percent=_value(latest[CPU]),
            mem_percent=_value(latest[MEM]),
            throughput_in=_value(latest[RX]),
            throughput_out=_value(latest[TX]),
            uptime_seconds=_int_value(latest[UPTIME]),
        )
        self._store.merge_single(DEVICE, device, observed)

    def _record_client_counts(
        self, site_id: str | None, clients: list[Client], observed: float
    ) -> None:
        if site_id is None:
            return
        wireless = sum(1 for c in clients if c.medium == "wireless")
        wired = sum(1 for c in clients if c.medium == "wired")
        for kind, value in (
            (CLIENTS_TOTAL, len(clients)),
            (CLIENTS_WIRELESS, wireless),
            (CLIENTS_WIRED, wired),
        ):
            self._buffers.append(site_id, kind, MetricSample(observed, float(value)))


def _value(sample: MetricSample | None) -> float | None:
    return sample.value if sample is not None else None


def _int_value(sample: MetricSample | None) -> int | None:
    return int(sample.value) if sample is not None else None
