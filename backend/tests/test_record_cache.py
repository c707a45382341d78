"""Tests for RecordCache with an injected clock."""
import pytest

from models.patient_models import PatientRecord
from services.record_cache import RecordCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class CountingBuilder:
    def __init__(self, *ids):
        self.ids = ids
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return {pid: PatientRecord(id=pid) for pid in self.ids}


@pytest.fixture
def clock():
    return FakeClock()


def test_builds_once_within_ttl(clock):
    cache = RecordCache(ttl_seconds=60, clock=clock)
    builder = CountingBuilder("1", "2")

    first = cache.get_or_build(builder)
    clock.now += 59
    second = cache.get_or_build(builder)

    assert builder.calls == 1
    assert first is second
    assert list(second) == ["1", "2"]


def test_rebuilds_after_expiry(clock):
    cache = RecordCache(ttl_seconds=60, clock=clock)
    builder = CountingBuilder("1")

    cache.get_or_build(builder)
    clock.now += 60

    assert cache.peek() is None
    cache.get_or_build(builder)
    assert builder.calls == 2


def test_invalidate_forces_rebuild(clock):
    cache = RecordCache(ttl_seconds=60, clock=clock)
    builder = CountingBuilder("1")

    cache.get_or_build(builder)
    cache.invalidate()

    assert cache.peek() is None
    cache.get_or_build(builder)
    assert builder.calls == 2


def test_zero_ttl_never_caches(clock):
    cache = RecordCache(ttl_seconds=0, clock=clock)
    builder = CountingBuilder("1")

    cache.get_or_build(builder)
    cache.get_or_build(builder)

    assert builder.calls == 2


def test_snapshot_is_read_only(clock):
    records = RecordCache(clock=clock).get_or_build(CountingBuilder("1"))

    with pytest.raises(TypeError):
        records["2"] = PatientRecord(id="2")


def test_failed_build_keeps_previous_snapshot(clock):
    cache = RecordCache(ttl_seconds=60, clock=clock)
    cache.get_or_build(CountingBuilder("1"))

    def failing():
        raise RuntimeError("store down")

    clock.now += 61
    with pytest.raises(RuntimeError):
        cache.get_or_build(failing)
    clock.now -= 61

    assert list(cache.peek()) == ["1"]
