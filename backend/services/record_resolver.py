"""
Multi-source patient record resolution.

For each patient the resolver walks the record sources in priority order
and takes every field group from the first source that has usable data
for it. The case narrative and the recommendation may therefore come from
different sources. Sources are consulted lazily: once both groups are
filled, lower-priority sources are never touched.

Failure policy:
- The primary workflow store raising SourceUnavailable propagates out of
  resolve_patient, so callers can tell "empty" from "broken".
  resolve_all_patients instead resolves that one patient without it.
- Every other read error (missing file, bad JSON, wrong shape) is logged
  and treated as "this source has nothing".
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

from config.logging_config import get_logger
from models.patient_models import (
    CLINICAL_INFORMATION_UNAVAILABLE,
    CLINICAL_QUESTION_UNAVAILABLE,
    PatientRecord,
    Recommendation,
    RecommendationProvenance,
)
from services.errors import MalformedSource, SourceUnavailable
from services.record_sources import BaselineStore, RecordSource
from services.text_normalizer import normalize_optional
from services.workflow_schema import FieldGroup, WorkflowFragment

logger = get_logger(__name__)


def patient_sort_key(patient_id: str) -> tuple[int, int, str]:
    """Numeric ids first in numeric order, then everything else."""
    if patient_id.isdecimal():
        return (0, int(patient_id), patient_id)
    return (1, 0, patient_id)


class RecordResolver:
    """
    Builds PatientRecords from an ordered list of record sources.

    Args:
        sources: Record sources, highest priority first.
        baseline: Optional baseline store.
        max_workers: Thread pool size for resolve_all_patients.
    """

    def __init__(
        self,
        sources: Sequence[RecordSource],
        baseline: BaselineStore | None = None,
        max_workers: int = 4,
    ):
        self._sources = tuple(sources)
        self._baseline = baseline
        self._max_workers = max(1, max_workers)

    @property
    def sources(self) -> tuple[RecordSource, ...]:
        return self._sources

    def _active_sources(self, use_primary: bool) -> list[RecordSource]:
        return [s for s in self._sources if use_primary or not s.is_primary]

    def _load(self, source: RecordSource, patient_id: str) -> WorkflowFragment | None:
        try:
            return source.try_load(patient_id)
        except SourceUnavailable:
            logger.error("Primary source unavailable", source=source.name, patient_id=patient_id)
            raise
        except (MalformedSource, OSError, ValueError) as e:
            logger.warning(
                "Skipping unreadable source",
                source=source.name,
                patient_id=patient_id,
                error=str(e),
            )
            return None

    def resolve_patient(self, patient_id: str, use_primary: bool = True) -> PatientRecord:
        """
        Resolve one patient.

        Never raises for an unknown patient: fields no source supplies
        keep their sentinel defaults.

        Args:
            patient_id: Patient identifier.
            use_primary: Set to False to skip the primary store entirely
                (degraded mode).

        Raises:
            SourceUnavailable: If the primary store is consulted and fails.
        """
        missing = {FieldGroup.CASE, FieldGroup.RECOMMENDATION}
        case: WorkflowFragment | None = None
        recommendation: Recommendation | None = None
        trials = ()
        consulted = []

        for source in self._active_sources(use_primary):
            wanted = missing & source.field_groups
            if not wanted:
                continue

            consulted.append(source.name)
            fragment = self._load(source, patient_id)
            if fragment is None:
                continue

            if FieldGroup.CASE in wanted and fragment.has_case:
                case = fragment
                missing.discard(FieldGroup.CASE)

            if FieldGroup.RECOMMENDATION in wanted and fragment.has_recommendation:
                text = normalize_optional(fragment.recommendation_text)
                if text is not None:
                    recommendation = Recommendation(text=text, provenance=source.provenance)
                    trials = fragment.trials
                    missing.discard(FieldGroup.RECOMMENDATION)

            if not missing:
                break

        record = PatientRecord(
            id=str(patient_id),
            clinical_information=(
                normalize_optional(case.clinical_information) if case else None
            ) or CLINICAL_INFORMATION_UNAVAILABLE,
            clinical_question=(
                normalize_optional(case.clinical_question) if case else None
            ) or CLINICAL_QUESTION_UNAVAILABLE,
            expert_recommendation=normalize_optional(case.expert_recommendation) if case else None,
            original_patient_data=case.original_patient_data if case else None,
            primary_recommendation=recommendation or Recommendation(),
            trials=trials,
            baseline_recommendation=self._fetch_baseline(patient_id),
        )

        logger.debug(
            "Patient resolved",
            patient_id=patient_id,
            consulted=consulted,
            provenance=record.primary_recommendation.provenance.value,
            has_case=case is not None,
        )
        return record

    def _fetch_baseline(self, patient_id: str) -> str | None:
        if self._baseline is None:
            return None
        return normalize_optional(self._baseline.fetch(patient_id))

    def known_patient_ids(self, use_primary: bool = True) -> list[str]:
        """Union of the patient ids every active source knows about."""
        ids: set[str] = set()
        for source in self._active_sources(use_primary):
            try:
                ids.update(str(pid) for pid in source.list_patient_ids())
            except OSError as e:
                logger.warning("Could not list patients", source=source.name, error=str(e))
        return sorted(ids, key=patient_sort_key)

    def _resolve_or_degrade(self, patient_id: str, use_primary: bool) -> PatientRecord:
        """Resolve one patient, dropping the primary store for this id only if it fails."""
        try:
            return self.resolve_patient(patient_id, use_primary)
        except SourceUnavailable as e:
            logger.warning(
                "Resolving patient without primary source",
                patient_id=patient_id,
                source=e.source,
                error=str(e.cause),
            )
            return self.resolve_patient(patient_id, use_primary=False)

    def resolve_all_patients(self, use_primary: bool = True) -> dict[str, PatientRecord]:
        """
        Resolve every known patient.

        Patients are resolved independently on a small thread pool. A
        primary store failure only affects the patient it happened for:
        that patient is resolved from the remaining sources.

        Returns:
            Mapping of patient id to record, in patient id order.
        """
        patient_ids = self.known_patient_ids(use_primary)
        if not patient_ids:
            logger.warning("No patients found in any source")
            return {}

        workers = min(self._max_workers, len(patient_ids))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="resolver") as pool:
            records = list(pool.map(lambda pid: self._resolve_or_degrade(pid, use_primary), patient_ids))

        logger.info(
            "Resolved patients",
            patient_count=len(records),
            with_recommendation=sum(1 for r in records if r.primary_recommendation.provenance is not RecommendationProvenance.NONE),
        )
        return dict(zip(patient_ids, records))
