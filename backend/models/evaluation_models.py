"""
Pydantic models for participants and evaluations.

Request models validate input and fail closed with descriptive errors.
Stored documents never expose the submitter's IP address or user agent
through the API.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class ImplementationWillingness(str, Enum):
    """Would the evaluator act on the recommendation."""
    YES = "yes"
    MAYBE = "maybe"
    NO = "no"


class ParticipantRegistration(BaseModel):
    """
    Registration of a medical professional taking part in the study.

    Attributes:
        user_id: Participant-chosen identifier.
        profession: Clinical profession.
        years_experience: Years of professional experience.
    """
    user_id: str = Field(..., min_length=1, max_length=200, description="Participant identifier")
    profession: str = Field(..., min_length=1, max_length=200, description="Clinical profession")
    years_experience: int = Field(..., ge=0, le=80, description="Years of experience")

    @field_validator("user_id", "profession")
    @classmethod
    def strip_text(cls, v: str) -> str:
        cleaned = v.strip()
        if not cleaned:
            raise ValueError("Value cannot be empty or whitespace only")
        return cleaned


class Participant(BaseModel):
    """A registered participant."""
    user_id: str
    profession: str
    years_experience: int
    session_start: datetime
    last_activity: datetime
    completed_evaluations: list[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime


class ParticipantResponse(BaseModel):
    """Response wrapping one participant."""
    message: str | None = None
    user: Participant


class ParticipantListResponse(BaseModel):
    """All participants, newest first."""
    users: list[Participant]
    total_users: int


class CompletedEvaluationUpdate(BaseModel):
    """Mark a patient as evaluated by a participant."""
    patient_id: str = Field(..., min_length=1, description="Patient identifier")


class CompletedEvaluationsResponse(BaseModel):
    message: str
    completed_evaluations: list[str]


class EvaluatorData(BaseModel):
    """Participant details captured with an evaluation."""
    user_id: str | None = None
    profession: str | None = None
    years_experience: int | None = None


class EvaluationSubmission(BaseModel):
    """
    An evaluation of one patient's recommendation by one participant.

    Attributes:
        user_id: Submitting participant.
        patient_id: Evaluated patient.
        overall_rating: Rating from 1 (worst) to 10 (best).
        implementation_willingness: Would the evaluator implement it.
        comments: Free-text comments.
        user_data: Participant details; taken from the registration when omitted.
        evaluation_start_time: When the evaluator opened the case.
    """
    user_id: str = Field(..., min_length=1, description="Participant identifier")
    patient_id: str = Field(..., min_length=1, description="Patient identifier")
    overall_rating: int = Field(..., ge=1, le=10, description="Overall rating 1-10")
    implementation_willingness: ImplementationWillingness = Field(
        ...,
        description="Willingness to implement the recommendation"
    )
    comments: str = Field(default="", max_length=10000, description="Free-text comments")
    user_data: EvaluatorData | None = Field(default=None, description="Participant details")
    evaluation_start_time: datetime | None = Field(default=None, description="Evaluation start time")


class EvaluationRecord(BaseModel):
    """A stored evaluation, as returned by the API."""
    evaluation_id: str
    user_id: str
    patient_id: str
    overall_rating: int
    implementation_willingness: ImplementationWillingness
    comments: str = ""
    user_data: EvaluatorData = Field(default_factory=EvaluatorData)
    evaluation_start_time: datetime | None = None
    evaluation_end_time: datetime
    time_spent_seconds: int | None = None
    created_at: datetime


class EvaluationSubmitResponse(BaseModel):
    message: str
    evaluation: EvaluationRecord


class EvaluationListResponse(BaseModel):
    """A page of evaluations."""
    evaluations: list[EvaluationRecord]
    total_evaluations: int
    current_page: int = 1
    total_pages: int = 1


class ImplementationDistribution(BaseModel):
    yes: int = 0
    maybe: int = 0
    no: int = 0


class PatientEvaluationSummary(BaseModel):
    total_evaluations: int
    average_rating: float
    implementation_distribution: ImplementationDistribution
    professions: list[str]
    experience_ranges: list[str]


class PatientEvaluationReport(BaseModel):
    """Evaluations of one patient, organized for analysis."""
    patient_id: str
    summary: PatientEvaluationSummary
    by_profession: dict[str, list[EvaluationRecord]]
    by_experience: dict[str, list[EvaluationRecord]]
    all_evaluations: list[EvaluationRecord]
    total_evaluations: int


class EvaluationPeriod(BaseModel):
    first: datetime
    last: datetime


class PatientSummaryEntry(BaseModel):
    patient_id: str
    total_evaluations: int
    average_rating: float
    professions: list[str]
    implementation_distribution: ImplementationDistribution
    evaluation_period: EvaluationPeriod


class PatientsSummaryResponse(BaseModel):
    total_unique_patients: int
    total_evaluations_across_all_patients: int
    patient_summaries: list[PatientSummaryEntry]


class ExportedEvaluation(BaseModel):
    """Flat research-export row."""
    evaluation_id: str
    evaluator_id: str
    profession: str | None
    years_experience: int | None
    overall_rating: int
    implementation_willingness: ImplementationWillingness
    comments: str
    time_spent_seconds: int | None
    evaluation_date: datetime
    evaluation_start_time: datetime | None
    evaluation_end_time: datetime


class PatientEvaluationExport(BaseModel):
    patient_id: str
    export_timestamp: datetime
    total_evaluations: int
    evaluations: list[ExportedEvaluation]


class RatingStatistics(BaseModel):
    average_rating: float | None = None
    min_rating: int | None = None
    max_rating: int | None = None


class ProfessionStatistics(BaseModel):
    profession: str
    count: int
    average_rating: float


class EvaluationStatistics(BaseModel):
    """Study-wide statistics."""
    total_evaluations: int
    unique_users: int
    unique_patients: int
    rating_statistics: RatingStatistics
    implementation_willingness: ImplementationDistribution
    profession_distribution: list[ProfessionStatistics]
