"""Latest-known snapshot of sites, devices and clients.

The scheduler is the only writer; render and navigation code only read.
Readers receive tuples of frozen dataclasses, so nothing they hold can
change underneath them or be used to change the store.

Everything runs on the asyncio loop thread (fetch tasks write from their
completion handlers), so merges never interleave and need no locks.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from unifimon.logs import get_logger
from unifimon.models import CLIENT, DEVICE, ENTITY_KINDS, Entity, FreshnessInfo

log = get_logger("store")

DEFAULT_MISS_THRESHOLD = 2

EvictListener = Callable[[str, str], None]  # (kind, entity_id)


@dataclass
class MergeResult:
    """What one merge changed; mostly for logging and tests."""

    added: list[str] = field(default_factory=lambda: list[str]())
    updated: list[str] = field(default_factory=lambda: list[str]())
    missed: list[str] = field(default_factory=lambda: list[str]())
    evicted: list[str] = field(default_factory=lambda: list[str]())
    rejected: list[str] = field(default_factory=lambda: list[str]())


def _site_of(entity: Any) -> str | None:
    return getattr(entity, "site_id", None)


class EntityStore:
    """In-memory entity snapshot with per-entity freshness."""

    def __init__(self, miss_threshold: int = DEFAULT_MISS_THRESHOLD) -> None:
        if miss_threshold < 1:
            raise ValueError(f"miss_threshold must be >= 1, got {miss_threshold}")
        self.miss_threshold = miss_threshold
        self.version = 0
        self._entities: dict[str, dict[str, Entity]] = {k: {} for k in ENTITY_KINDS}
        self._freshness: dict[str, dict[str, FreshnessInfo]] = {
            k: {} for k in ENTITY_KINDS
        }
        self._listeners: list[EvictListener] = []

    # ── Reads ──────────────────────────────────────────────────────────────

    def items(self, kind: str, site_id: str | None = None) -> tuple[Any, ...]:
        """Entities of *kind* in fetch order, optionally limited to one site."""
        entities = self._table(kind).values()
        if site_id is None:
            return tuple(entities)
        return tuple(e for e in entities if _site_of(e) == site_id)

    def get(self, kind: str, entity_id: str) -> Any | None:
        return self._table(kind).get(entity_id)

    def freshness(self, kind: str, entity_id: str) -> FreshnessInfo | None:
        return self._freshness[kind].get(entity_id)

    def ids(self, kind: str) -> frozenset[str]:
        return frozenset(self._table(kind))

    def count(self, kind: str) -> int:
        return len(self._table(kind))

    def on_evict(self, listener: EvictListener) -> None:
        """Call *listener(kind, entity_id)* whenever an entity is removed."""
        self._listeners.append(listener)

    # ── Writes ─────────────────────────────────────────────────────────────

    def merge_full_list(
        self,
        kind: str,
        items: Iterable[Any],
        observed_at: float,
        site_id: str | None = None,
        combine: Callable[[Any, Any], Any] | None = None,
    ) -> MergeResult:
        """Apply a complete listing of *kind* (for *site_id*, if given).

        Every listed entity is upserted. Known entities of the same partition
        that are missing get their miss count raised and are flagged stale;
        once the count reaches ``miss_threshold`` they are evicted. Ordering
        follows the listing, with still-retained missing entities after it.

        A listed entity whose stored copy was observed later than
        *observed_at* keeps that copy; its miss count is still reset.
        """
        table = self._table(kind)
        fresh = self._freshness[kind]
        result = MergeResult()

        listed: dict[str, Any] = {}
        for item in items:
            if item.id in listed:
                log.warning("duplicate %s id %s in listing; keeping the first", kind, item.id)
                continue
            listed[item.id] = item

        merged: dict[str, Entity] = {}
        for entity_id, item in listed.items():
            old = table.get(entity_id)
            info = fresh.get(entity_id)
            if old is not None and info is not None and info.last_successful_update > observed_at:
                merged[entity_id] = old
                fresh[entity_id] = dataclasses.replace(info, consecutive_miss_count=0)
                result.rejected.append(entity_id)
                continue
            if old is None:
                merged[entity_id] = item
                result.added.append(entity_id)
            else:
                merged[entity_id] = combine(old, item) if combine else item
                result.updated.append(entity_id)
            fresh[entity_id] = FreshnessInfo(last_successful_update=observed_at)

        for entity_id, old in table.items():
            if entity_id in merged:
                continue
            if site_id is not None and _site_of(old) != site_id:
                # Outside the partition this listing covers.
                merged[entity_id] = old
                continue
            info = fresh[entity_id]
            misses = info.consecutive_miss_count + 1
            if misses >= self.miss_threshold:
                result.evicted.append(entity_id)
                continue
            fresh[entity_id] = dataclasses.replace(
                info, consecutive_miss_count=misses, stale=True
            )
            merged[entity_id] = old
            result.missed.append(entity_id)

        self._entities[kind] = merged
        for entity_id in result.evicted:
            del fresh[entity_id]
        self.version += 1

        if result.missed or result.evicted:
            log.info(
                "%s merge: %d listed, %d missing (stale), %d evicted",
                kind,
                len(listed),
                len(result.missed),
                len(result.evicted),
            )
        for entity_id in result.evicted:
            self._notify(kind, entity_id)
        return result

    def merge_single(self, kind: str, entity: Any, observed_at: float) -> bool:
        """Refresh one already-listed entity if *observed_at* is newer.

        Only full listings create entities or clear their miss count, so an
        id the store does not hold is rejected and the stored staleness is
        kept. Late arrivals of older observations are rejected too, so the
        last *observation* wins rather than the last request to complete.
        """
        table = self._table(kind)
        info = self._freshness[kind].get(entity.id)
        if entity.id not in table or info is None:
            log.debug("rejecting %s %s: not in the current listing", kind, entity.id)
            return False
        if observed_at <= info.last_successful_update:
            log.debug(
                "rejecting %s %s observed at %.3f (have %.3f)",
                kind,
                entity.id,
                observed_at,
                info.last_successful_update,
            )
            return False
        table[entity.id] = entity
        self._freshness[kind][entity.id] = dataclasses.replace(
            info, last_successful_update=observed_at
        )
        self.version += 1
        return True

    def mark_stale(
        self, kind: str, site_id: str | None = None, entity_id: str | None = None
    ) -> int:
        """Flag entities stale after a failed poll. Nothing is removed.

        Returns the number of entities flagged.
        """
        fresh = self._freshness[kind]
        flagged = 0
        for eid, entity in self._table(kind).items():
            if entity_id is not None and eid != entity_id:
                continue
            if site_id is not None and _site_of(entity) != site_id:
                continue
            info = fresh[eid]
            if not info.stale:
                fresh[eid] = dataclasses.replace(info, stale=True)
            flagged += 1
        if flagged:
            self.version += 1
        return flagged

    def evict_outside_site(self, site_id: str | None) -> list[str]:
        """Drop every device and client that does not belong to *site_id*."""
        evicted: list[tuple[str, str]] = []
        for kind in (DEVICE, CLIENT):
            table = self._table(kind)
            gone = [eid for eid, e in table.items() if _site_of(e) != site_id]
            for eid in gone:
                del table[eid]
                del self._freshness[kind][eid]
                evicted.append((kind, eid))
        if evicted:
            self.version += 1
            log.info("scope -> %s: evicted %d out-of-scope entities", site_id, len(evicted))
        for kind, eid in evicted:
            self._notify(kind, eid)
        return [eid for _, eid in evicted]

    # ── Internals ──────────────────────────────────────────────────────────

    def _table(self, kind: str) -> dict[str, Entity]:
        try:
            return self._entities[kind]
        except KeyError:
            raise ValueError(f"unknown entity kind {kind!r}") from None

    def _notify(self, kind: str, entity_id: str) -> None:
        for listener in self._listeners:
            listener(kind, entity_id)

