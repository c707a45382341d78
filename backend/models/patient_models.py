"""
Pydantic models for resolved patient records.

A PatientRecord is a read-time projection over the workflow store, the
workflow result files and the baseline store. Records are frozen: the
resolver builds a new one on every run instead of patching an old one.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

CLINICAL_INFORMATION_UNAVAILABLE = "No clinical information available"
CLINICAL_QUESTION_UNAVAILABLE = "No clinical question provided"
RECOMMENDATION_UNAVAILABLE = "No recommendation available"


class RecommendationProvenance(str, Enum):
    """Which source supplied the primary recommendation text."""
    PRIMARY_STORE = "PRIMARY_STORE"
    STRUCTURED_FILE = "STRUCTURED_FILE"
    LEGACY_FILE = "LEGACY_FILE"
    NONE = "NONE"


class Publication(BaseModel):
    """
    A publication supporting a matched clinical trial.

    Attributes:
        title: Publication title (or abstract text when untitled).
        url: Link to the publication, empty when unknown.
        source: Search backend that found it (PubMed, OncLive, ...).
    """
    model_config = ConfigDict(frozen=True)

    title: str = Field(..., description="Publication title")
    url: str = Field(default="", description="Publication link")
    source: str = Field(..., description="Search backend label")


class TrialReference(BaseModel):
    """
    A clinical trial matched by the recommendation pipeline.

    Attributes:
        nct_id: ClinicalTrials.gov identifier (e.g. NCT01234567).
        url: Registry link for the trial.
        title: Trial title when the pipeline recorded one.
        publications: Supporting publications, in search-backend order.
    """
    model_config = ConfigDict(frozen=True)

    nct_id: str = Field(..., description="Trial identifier")
    url: str | None = Field(default=None, description="Trial registry link")
    title: str | None = Field(default=None, description="Trial title")
    publications: tuple[Publication, ...] = Field(default=(), description="Supporting publications")


class Recommendation(BaseModel):
    """Recommendation text together with the source that supplied it."""
    model_config = ConfigDict(frozen=True)

    text: str = Field(default=RECOMMENDATION_UNAVAILABLE, description="Normalized recommendation")
    provenance: RecommendationProvenance = Field(
        default=RecommendationProvenance.NONE,
        description="Source of the recommendation text"
    )

    @model_validator(mode="after")
    def check_provenance(self) -> "Recommendation":
        """A recommendation without a source must be the sentinel text."""
        if self.provenance is RecommendationProvenance.NONE and self.text != RECOMMENDATION_UNAVAILABLE:
            raise ValueError("provenance NONE requires the unavailable sentinel text")
        return self


class PatientRecord(BaseModel):
    """
    Normalized patient case shown to evaluators.

    Attributes:
        id: Patient identifier, stable across reloads.
        name: Display label.
        clinical_information: Case narrative.
        clinical_question: Question posed to the tumor board.
        expert_recommendation: Human ground-truth decision, when one exists.
        primary_recommendation: Recommendation under evaluation.
        baseline_recommendation: Recommendation from the baseline model.
        trials: Matched trials with supporting publications.
        original_patient_data: Raw patient data from the workflow document.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Patient identifier")
    name: str = Field(default="", description="Display label")
    clinical_information: str = Field(
        default=CLINICAL_INFORMATION_UNAVAILABLE,
        description="Normalized case narrative"
    )
    clinical_question: str = Field(
        default=CLINICAL_QUESTION_UNAVAILABLE,
        description="Normalized tumor board question"
    )
    expert_recommendation: str | None = Field(default=None, description="Expert decision")
    primary_recommendation: Recommendation = Field(
        default_factory=Recommendation,
        description="Recommendation under evaluation"
    )
    baseline_recommendation: str | None = Field(default=None, description="Baseline model recommendation")
    trials: tuple[TrialReference, ...] = Field(default=(), description="Matched trials")
    original_patient_data: dict[str, Any] | None = Field(
        default=None,
        description="Raw patient data from the workflow document"
    )

    @model_validator(mode="before")
    @classmethod
    def default_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("name") and data.get("id"):
            data = {**data, "name": f"Patient {data['id']}"}
        return data

    @property
    def has_data(self) -> bool:
        """Whether any source contributed anything to this record."""
        return (
            self.clinical_information != CLINICAL_INFORMATION_UNAVAILABLE
            or self.clinical_question != CLINICAL_QUESTION_UNAVAILABLE
            or self.expert_recommendation is not None
            or self.primary_recommendation.provenance is not RecommendationProvenance.NONE
            or self.baseline_recommendation is not None
            or bool(self.trials)
        )


class ReloadResponse(BaseModel):
    """Result of a manual cache reload."""
    message: str = Field(..., description="Outcome message")
    patient_count: int = Field(..., ge=0, description="Patients after reload")
