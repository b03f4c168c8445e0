"""Tests for unifimon.series."""

from __future__ import annotations

import pytest

from unifimon.models import CPU, MEM, RX, MetricSample
from unifimon.series import MetricRingBuffers


def _s(t: float, v: float) -> MetricSample:
    return MetricSample(timestamp=t, value=v)


class TestAppend:
    def test_capacity_three_keeps_newest(self) -> None:
        buffers = MetricRingBuffers(capacity=3)
        for t, v in ((1, 10), (2, 20), (3, 30), (4, 40)):
            assert buffers.append("d1", CPU, _s(t, v))
        assert buffers.snapshot("d1", CPU) == (_s(2, 20), _s(3, 30), _s(4, 40))

    def test_equal_timestamp_is_noop(self) -> None:
        buffers = MetricRingBuffers(capacity=5)
        buffers.append("d1", CPU, _s(5, 1.0))
        assert buffers.append("d1", CPU, _s(5, 2.0)) is False
        assert buffers.snapshot("d1", CPU) == (_s(5, 1.0),)

    def test_older_timestamp_is_noop(self) -> None:
        buffers = MetricRingBuffers(capacity=5)
        buffers.append("d1", CPU, _s(5, 1.0))
        assert buffers.append("d1", CPU, _s(3, 9.0)) is False
        assert buffers.latest("d1", CPU) == _s(5, 1.0)

    def test_rejected_sample_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        buffers = MetricRingBuffers(capacity=5)
        buffers.append("d1", CPU, _s(5, 1.0))
        with caplog.at_level("WARNING", logger="unifimon.series"):
            buffers.append("d1", CPU, _s(4, 1.0))
        assert "out-of-order" in caplog.text

    def test_series_are_independent(self) -> None:
        buffers = MetricRingBuffers(capacity=5)
        buffers.append("d1", CPU, _s(10, 1.0))
        # Same timestamp on another metric or entity is fine
        assert buffers.append("d1", MEM, _s(10, 2.0))
        assert buffers.append("d2", CPU, _s(10, 3.0))
        assert len(buffers) == 3

    def test_length_never_exceeds_capacity(self) -> None:
        buffers = MetricRingBuffers(capacity=4)
        for t in range(100):
            buffers.append("d1", RX, _s(t, float(t)))
            assert len(buffers.snapshot("d1", RX)) <= 4
        stamps = [s.timestamp for s in buffers.snapshot("d1", RX)]
        assert stamps == sorted(set(stamps))

    def test_extend_counts_accepted(self) -> None:
        buffers = MetricRingBuffers(capacity=10)
        accepted = buffers.extend("d1", CPU, [_s(1, 1), _s(2, 2), _s(2, 3), _s(3, 4)])
        assert accepted == 3

    def test_invalid_capacity(self) -> None:
        with pytest.raises(ValueError):
            MetricRingBuffers(capacity=0)


class TestSnapshot:
    def test_window_returns_most_recent(self) -> None:
        buffers = MetricRingBuffers(capacity=10)
        buffers.extend("d1", CPU, [_s(t, t) for t in range(1, 6)])
        assert buffers.snapshot("d1", CPU, 2) == (_s(4, 4), _s(5, 5))

    def test_fewer_samples_than_window_no_padding(self) -> None:
        buffers = MetricRingBuffers(capacity=10)
        buffers.extend("d1", CPU, [_s(1, 1), _s(2, 2)])
        assert buffers.snapshot("d1", CPU, 50) == (_s(1, 1), _s(2, 2))

    def test_unknown_series_is_empty(self) -> None:
        assert MetricRingBuffers().snapshot("nope", CPU, 10) == ()

    def test_zero_window(self) -> None:
        buffers = MetricRingBuffers(capacity=10)
        buffers.extend("d1", CPU, [_s(1, 1), _s(2, 2)])
        assert buffers.snapshot("d1", CPU, 0) == ()

    def test_snapshot_is_detached(self) -> None:
        buffers = MetricRingBuffers(capacity=10)
        buffers.append("d1", CPU, _s(1, 1))
        snap = buffers.snapshot("d1", CPU)
        buffers.append("d1", CPU, _s(2, 2))
        assert snap == (_s(1, 1),)


class TestHousekeeping:
    def test_last_timestamp_across_kinds(self) -> None:
        buffers = MetricRingBuffers()
        buffers.append("d1", CPU, _s(10, 1))
        buffers.append("d1", MEM, _s(12, 1))
        assert buffers.last_timestamp("d1", (CPU, MEM, RX)) == 12
        assert buffers.last_timestamp("d2", (CPU,)) is None

    def test_drop_entity(self) -> None:
        buffers = MetricRingBuffers()
        buffers.append("d1", CPU, _s(1, 1))
        buffers.append("d1", MEM, _s(1, 1))
        buffers.append("d2", CPU, _s(1, 1))
        buffers.drop_entity("d1")
        assert ("d1", CPU) not in buffers
        assert ("d2", CPU) in buffers

    def test_retain(self) -> None:
        buffers = MetricRingBuffers()
        for eid in ("a", "b", "c"):
            buffers.append(eid, CPU, _s(1, 1))
        buffers.retain(["b"])
        assert len(buffers) == 1
        assert ("b", CPU) in buffers
