"""
Canonical schema of workflow documents.

The recommendation pipeline writes one "complete workflow" document per
patient, either into the workflow store or as a JSON file. Only the
canonical keys below are read at resolution time:

    guidelines_result.patient_data.clinical_information
    guidelines_result.patient_data.question_for_tumorboard
    guidelines_result.patient_data.expert_recommendation
    recommendation_result.raw_response
    trial_matching_result.relevant_trials[]

Older pipeline runs spelled some patient_data keys differently. Those
spellings are rewritten once by scripts/migrate_workflow_aliases.py
(see canonicalize_patient_data) instead of being matched on every read.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from config.logging_config import get_logger
from models.patient_models import Publication, TrialReference
from services.errors import MalformedSource

logger = get_logger(__name__)

CLINICAL_INFORMATION_KEY = "clinical_information"
CLINICAL_QUESTION_KEY = "question_for_tumorboard"
EXPERT_RECOMMENDATION_KEY = "expert_recommendation"

# Alternative spellings found in older workflow runs, by canonical key
PATIENT_DATA_ALIASES: dict[str, tuple[str, ...]] = {
    CLINICAL_INFORMATION_KEY: ("ClinicalInformation", "Clinical Information", "clinicalInformation"),
    CLINICAL_QUESTION_KEY: ("ClinicalQuestion", "Clinical Question", "clinical_question"),
    EXPERT_RECOMMENDATION_KEY: ("ExpertRecommendation", "Expert Recommendation"),
}

# (results key, list key, display label), in display order
PUBLICATION_SOURCES: tuple[tuple[str, str, str], ...] = (
    ("pubmed", "publications", "PubMed"),
    ("onclive", "articles", "OncLive"),
    ("congress_abstracts", "abstracts", "Congress Abstracts"),
)


class FieldGroup(str, Enum):
    """Groups of PatientRecord fields that are always taken from one source."""
    CASE = "case"
    RECOMMENDATION = "recommendation"


@dataclass(frozen=True)
class WorkflowFragment:
    """
    Raw (not yet normalized) data one source holds for one patient.

    A fragment may carry only part of a record, e.g. a legacy
    recommendation file has no case narrative.
    """
    clinical_information: str | None = None
    clinical_question: str | None = None
    expert_recommendation: str | None = None
    original_patient_data: dict[str, Any] | None = None
    recommendation_text: str | None = None
    trials: tuple[TrialReference, ...] = field(default_factory=tuple)

    @property
    def has_case(self) -> bool:
        return any(
            _has_text(value)
            for value in (self.clinical_information, self.clinical_question, self.expert_recommendation)
        )

    @property
    def has_recommendation(self) -> bool:
        return _has_text(self.recommendation_text)

    def provides(self, group: FieldGroup) -> bool:
        """Whether this fragment has usable data for a field group."""
        if group is FieldGroup.CASE:
            return self.has_case
        return self.has_recommendation


def _has_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _section(document: dict[str, Any], key: str, location: str) -> dict[str, Any]:
    """Get an optional nested mapping, rejecting non-mapping values."""
    value = document.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MalformedSource(location, f"'{key}' must be an object, got {type(value).__name__}")
    return value


def _text(section: dict[str, Any], key: str, location: str) -> str | None:
    value = section.get(key)
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    raise MalformedSource(location, f"'{key}' must be text, got {type(value).__name__}")


def parse_publications(trial: dict[str, Any]) -> tuple[Publication, ...]:
    """Flatten the online search results recorded for a trial."""
    analysis = trial.get("publication_analysis")
    if not isinstance(analysis, dict):
        return ()
    online = analysis.get("online_search_results")
    if not isinstance(online, dict):
        return ()

    publications: list[Publication] = []
    for results_key, list_key, label in PUBLICATION_SOURCES:
        results = online.get(results_key) or {}
        items = results.get(list_key) if isinstance(results, dict) else None
        if not isinstance(items, list):
            continue
        for item in items:
            if not isinstance(item, dict):
                continue
            publications.append(
                Publication(
                    title=item.get("title") or item.get("abstract_text") or "Publication",
                    url=item.get("url") or item.get("link") or "",
                    source=label,
                )
            )
    return tuple(publications)


def parse_trials(trial_matching: dict[str, Any], location: str) -> tuple[TrialReference, ...]:
    """Parse matched trials, skipping entries without a trial identifier."""
    relevant = trial_matching.get("relevant_trials")
    if relevant is None:
        return ()
    if not isinstance(relevant, list):
        raise MalformedSource(location, "'relevant_trials' must be a list")

    trials: list[TrialReference] = []
    for entry in relevant:
        if not isinstance(entry, dict) or not entry.get("nct_id"):
            logger.debug("Skipping trial without identifier", location=location)
            continue
        trials.append(
            TrialReference(
                nct_id=str(entry["nct_id"]),
                url=entry.get("url"),
                title=entry.get("title") or entry.get("brief_title"),
                publications=parse_publications(entry),
            )
        )
    return tuple(trials)


def parse_workflow_document(document: Any, location: str) -> WorkflowFragment:
    """
    Extract a fragment from a complete workflow document.

    Args:
        document: Decoded JSON document.
        location: File path or store key, used in error messages.

    Returns:
        The fragment, possibly empty.

    Raises:
        MalformedSource: If the document or one of its sections has the
            wrong shape.
    """
    if not isinstance(document, dict):
        raise MalformedSource(location, "workflow document must be an object")

    guidelines = _section(document, "guidelines_result", location)
    patient_data = _section(guidelines, "patient_data", location)
    recommendation = _section(document, "recommendation_result", location)
    trial_matching = _section(document, "trial_matching_result", location)

    return WorkflowFragment(
        clinical_information=_text(patient_data, CLINICAL_INFORMATION_KEY, location),
        clinical_question=_text(patient_data, CLINICAL_QUESTION_KEY, location),
        expert_recommendation=_text(patient_data, EXPERT_RECOMMENDATION_KEY, location),
        original_patient_data=dict(patient_data) or None,
        recommendation_text=_text(recommendation, "raw_response", location),
        trials=parse_trials(trial_matching, location),
    )


def canonicalize_patient_data(patient_data: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    """
    Rewrite aliased patient_data keys to their canonical spelling.

    The first non-empty alias wins when the canonical key is missing or
    empty. Alias keys are removed.

    Returns:
        The rewritten mapping and whether anything changed.
    """
    migrated = dict(patient_data)
    changed = False
    for canonical, aliases in PATIENT_DATA_ALIASES.items():
        for alias in aliases:
            if alias not in migrated:
                continue
            value = migrated.pop(alias)
            changed = True
            if not _has_text(migrated.get(canonical)) and _has_text(value):
                migrated[canonical] = value
    return migrated, changed


def canonicalize_workflow_document(document: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    """Apply canonicalize_patient_data inside a workflow document."""
    guidelines = document.get("guidelines_result")
    if not isinstance(guidelines, dict) or not isinstance(guidelines.get("patient_data"), dict):
        return document, False

    patient_data, changed = canonicalize_patient_data(guidelines["patient_data"])
    if not changed:
        return document, False
    return {**document, "guidelines_result": {**guidelines, "patient_data": patient_data}}, True
