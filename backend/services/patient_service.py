"""
Patient record service used by the API layer.

Combines the record resolver with the record cache. When the primary
workflow store is down, a single-patient lookup either fails (default) or
is served from the file sources, uncached.
"""

from pathlib import Path
from typing import Mapping

from config.config import Settings, get_settings
from config.logging_config import get_logger
from database.database import get_baseline_database, get_workflow_database
from models.patient_models import PatientRecord
from services.errors import SourceUnavailable
from services.record_cache import RecordCache
from services.record_resolver import RecordResolver
from services.record_sources import (
    BaselineStore,
    DirectoryFileSource,
    FlatFileSource,
    LegacyRecommendationSource,
    PrimaryStoreSource,
    RecordSource,
)

logger = get_logger(__name__)


class PatientService:
    """
    Cached access to resolved patient records.

    Args:
        resolver: The record resolver.
        cache: Cache for the all-patients mapping.
        serve_degraded: Fall back to file-only resolution of a single
            patient when the primary store is unavailable.
    """

    def __init__(self, resolver: RecordResolver, cache: RecordCache, serve_degraded: bool = False):
        self._resolver = resolver
        self._cache = cache
        self._serve_degraded = serve_degraded

    @property
    def resolver(self) -> RecordResolver:
        return self._resolver

    def get_all_patients(self) -> Mapping[str, PatientRecord]:
        """
        All patients, from the cache while it is fresh.

        A primary store failure degrades only the affected patients, see
        RecordResolver.resolve_all_patients.
        """
        return self._cache.get_or_build(self._resolver.resolve_all_patients)

    def get_patient(self, patient_id: str) -> PatientRecord:
        """One patient, from a fresh cache snapshot when it holds the id."""
        cached = self._cache.peek()
        if cached is not None and patient_id in cached:
            return cached[patient_id]
        try:
            return self._resolver.resolve_patient(patient_id)
        except SourceUnavailable as e:
            if not self._serve_degraded:
                raise
            logger.warning(
                "Serving degraded patient record",
                patient_id=patient_id,
                source=e.source,
                error=str(e.cause),
            )
            return self._resolver.resolve_patient(patient_id, use_primary=False)

    def invalidate_cache(self) -> None:
        """Force the next read to rebuild from the sources."""
        self._cache.invalidate()

    def reload(self) -> int:
        """Invalidate and rebuild the cache; returns the patient count."""
        self.invalidate_cache()
        return len(self.get_all_patients())


def build_sources(settings: Settings) -> list[RecordSource]:
    """Record sources in priority order for the configured deployment."""
    root = Path(settings.batch_results_path)
    sources: list[RecordSource] = []
    if settings.workflow_store_configured:
        collection = get_workflow_database(settings).collection(settings.workflow_collection)
        sources.append(PrimaryStoreSource(collection, settings.patient_ids))
    else:
        logger.info("Workflow store not configured, using workflow files only")
    sources.extend([
        DirectoryFileSource(root),
        FlatFileSource(root),
        LegacyRecommendationSource(root),
    ])
    return sources


def build_baseline_store(settings: Settings) -> BaselineStore | None:
    """Baseline store, or None when no host is configured."""
    if not settings.baseline_host:
        return None
    return BaselineStore(
        get_baseline_database(settings),
        settings.baseline_collection,
        settings.baseline_model_tag,
    )


def build_patient_service(settings: Settings) -> PatientService:
    """Wire a PatientService from settings."""
    resolver = RecordResolver(
        build_sources(settings),
        baseline=build_baseline_store(settings),
        max_workers=settings.resolver_max_workers,
    )
    logger.info(
        "Patient service configured",
        sources=[source.name for source in resolver.sources],
        baseline=settings.baseline_host != "",
        batch_results_path=settings.batch_results_path,
        cache_ttl_seconds=settings.cache_ttl_seconds,
    )
    return PatientService(
        resolver,
        RecordCache(ttl_seconds=settings.cache_ttl_seconds),
        serve_degraded=settings.serve_degraded_records,
    )


_patient_service: PatientService | None = None


def get_patient_service() -> PatientService:
    """Get the patient service singleton."""
    global _patient_service
    if _patient_service is None:
        _patient_service = build_patient_service(get_settings())
    return _patient_service
