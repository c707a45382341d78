"""
Time-boxed cache of resolved patient records.

The cache holds one snapshot: the full id -> record mapping plus the time
it was built. A snapshot is never modified. Rebuilds produce a new
snapshot that replaces the old one as a unit, so concurrent readers see
either the old mapping or the new one. The lock guards only the
reference swap, never a rebuild.
"""

import threading
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Mapping

from config.logging_config import get_logger
from models.patient_models import PatientRecord

logger = get_logger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheSnapshot:
    """Immutable cache content."""
    records: Mapping[str, PatientRecord]
    built_at: float


class RecordCache:
    """
    Whole-mapping cache with a time-to-live.

    Args:
        ttl_seconds: Snapshot lifetime. Zero disables caching.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Clock = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._snapshot: CacheSnapshot | None = None
        self._swap_lock = threading.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def _is_fresh(self, snapshot: CacheSnapshot | None) -> bool:
        return snapshot is not None and self._clock() - snapshot.built_at < self._ttl

    def peek(self) -> Mapping[str, PatientRecord] | None:
        """Return the current mapping if it is still fresh, without rebuilding."""
        snapshot = self._snapshot
        return snapshot.records if self._is_fresh(snapshot) else None

    def get_or_build(
        self, builder: Callable[[], Mapping[str, PatientRecord]]
    ) -> Mapping[str, PatientRecord]:
        """
        Return the cached mapping, rebuilding it when missing or expired.

        A builder exception leaves the previous snapshot in place.
        """
        records = self.peek()
        if records is not None:
            logger.debug("Returning cached patient records", patient_count=len(records))
            return records

        logger.info("Building patient record cache")
        snapshot = CacheSnapshot(
            records=MappingProxyType(dict(builder())),
            built_at=self._clock(),
        )
        with self._swap_lock:
            self._snapshot = snapshot
        return snapshot.records

    def invalidate(self) -> None:
        """Drop the whole snapshot; the next read rebuilds from the sources."""
        with self._swap_lock:
            self._snapshot = None
        logger.info("Patient record cache invalidated")
