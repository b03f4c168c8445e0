"""Bounded per-(entity, metric) history feeding the dashboard graphs.

Each series is a ``deque(maxlen=capacity)``, so appending past capacity
drops the oldest sample. Timestamps inside one series strictly increase.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable

from unifimon.logs import get_logger
from unifimon.models import MetricSample

log = get_logger("series")

DEFAULT_CAPACITY = 300  # 25 minutes at 5 s resolution


class MetricRingBuffers:
    """All metric series of the session, keyed by ``(entity_id, metric_kind)``."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._series: dict[tuple[str, str], deque[MetricSample]] = {}

    def __len__(self) -> int:
        return len(self._series)

    def __contains__(self, key: object) -> bool:
        return key in self._series

    def append(self, entity_id: str, kind: str, sample: MetricSample) -> bool:
        """Add *sample* to the series. Out-of-order samples are dropped.

        Returns False (and logs) when the sample is not newer than the last
        stored one; this never raises.
        """
        key = (entity_id, kind)
        series = self._series.get(key)
        if series is None:
            series = self._series[key] = deque(maxlen=self.capacity)
        elif series and sample.timestamp <= series[-1].timestamp:
            log.warning(
                "dropping out-of-order sample for %s/%s: t=%.3f <= last t=%.3f",
                entity_id,
                kind,
                sample.timestamp,
                series[-1].timestamp,
            )
            return False
        series.append(sample)
        return True

    def extend(self, entity_id: str, kind: str, samples: Iterable[MetricSample]) -> int:
        """Append several samples in order; returns how many were accepted."""
        return sum(1 for s in samples if self.append(entity_id, kind, s))

    def snapshot(
        self, entity_id: str, kind: str, window: int | None = None
    ) -> tuple[MetricSample, ...]:
        """Most recent *window* samples, oldest first. No padding."""
        series = self._series.get((entity_id, kind))
        if not series:
            return ()
        if window is None or window >= len(series):
            return tuple(series)
        if window <= 0:
            return ()
        return tuple(series)[-window:]

    def latest(self, entity_id: str, kind: str) -> MetricSample | None:
        series = self._series.get((entity_id, kind))
        return series[-1] if series else None

    def last_timestamp(self, entity_id: str, kinds: Iterable[str]) -> float | None:
        """Newest timestamp across *kinds* for an entity, or None if empty."""
        stamps: list[float] = []
        for kind in kinds:
            sample = self.latest(entity_id, kind)
            if sample is not None:
                stamps.append(sample.timestamp)
        return max(stamps) if stamps else None

    def drop_entity(self, entity_id: str) -> None:
        for key in [k for k in self._series if k[0] == entity_id]:
            del self._series[key]

    def retain(self, entity_ids: Iterable[str]) -> None:
        """Forget every series whose entity is not in *entity_ids*."""
        keep = set(entity_ids)
        for key in [k for k in self._series if k[0] not in keep]:
            del self._series[key]
