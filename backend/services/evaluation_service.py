"""
Participant registration and evaluation storage.

Evaluations are append-only: once submitted they are never edited. The
study is small (tens of participants, hundreds of evaluations), so
summaries are computed in Python over the stored documents rather than
in AQL.
"""

import math
from collections import Counter
from datetime import datetime, timezone
from statistics import mean
from typing import Any, Callable, Iterable

from arango.database import StandardDatabase

from config.config import get_settings
from config.logging_config import get_logger
from database.database import get_evaluation_database, store_errors
from models.evaluation_models import (
    EvaluationListResponse,
    EvaluationPeriod,
    EvaluationRecord,
    EvaluationStatistics,
    EvaluationSubmission,
    EvaluatorData,
    ExportedEvaluation,
    ImplementationDistribution,
    ImplementationWillingness,
    Participant,
    ParticipantRegistration,
    PatientEvaluationExport,
    PatientEvaluationReport,
    PatientEvaluationSummary,
    PatientsSummaryResponse,
    PatientSummaryEntry,
    ProfessionStatistics,
    RatingStatistics,
)
from services.errors import ConflictError, NotFoundError, SourceUnavailable
from services.record_resolver import patient_sort_key

logger = get_logger(__name__)

STORE_NAME = "evaluation_store"
UNKNOWN_PROFESSION = "Unknown"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def experience_range(years: int | None) -> str:
    """Bucket years of experience for analysis."""
    years = years or 0
    if years < 5:
        return "0-4 years"
    if years < 10:
        return "5-9 years"
    if years < 20:
        return "10-19 years"
    return "20+ years"


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _distribution(records: Iterable[EvaluationRecord]) -> ImplementationDistribution:
    counts = Counter(r.implementation_willingness for r in records)
    return ImplementationDistribution(
        yes=counts[ImplementationWillingness.YES],
        maybe=counts[ImplementationWillingness.MAYBE],
        no=counts[ImplementationWillingness.NO],
    )


def _average(records: list[EvaluationRecord]) -> float:
    return round(mean(r.overall_rating for r in records), 2) if records else 0.0


def _profession(record: EvaluationRecord) -> str:
    return record.user_data.profession or UNKNOWN_PROFESSION


class EvaluationService:
    """
    Stores participants and their evaluations in ArangoDB.

    Args:
        database: Evaluation database.
        clock: Source of the current UTC time.
    """

    def __init__(self, database: StandardDatabase, clock: Callable[[], datetime] = utc_now):
        self._participants = database.collection("participants")
        self._evaluations = database.collection("evaluations")
        self._clock = clock

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    def _participant_doc(self, user_id: str) -> dict[str, Any] | None:
        with store_errors(STORE_NAME):
            docs = list(self._participants.find({"user_id": user_id}, limit=1))
        return docs[0] if docs else None

    def _require_participant_doc(self, user_id: str) -> dict[str, Any]:
        doc = self._participant_doc(user_id)
        if doc is None:
            raise NotFoundError(f"User not found: {user_id}")
        return doc

    def register_participant(self, registration: ParticipantRegistration) -> Participant:
        """Register a participant; user ids are unique."""
        if self._participant_doc(registration.user_id) is not None:
            raise ConflictError(f"User with this ID already exists: {registration.user_id}")

        now = self._clock().isoformat()
        doc = {
            **registration.model_dump(),
            "session_start": now,
            "last_activity": now,
            "completed_evaluations": [],
            "is_active": True,
            "created_at": now,
        }
        with store_errors(STORE_NAME):
            self._participants.insert(doc)

        logger.info(
            "Participant registered",
            user_id=registration.user_id,
            profession=registration.profession,
            years_experience=registration.years_experience,
        )
        return Participant.model_validate(doc)

    def get_participant(self, user_id: str) -> Participant:
        return Participant.model_validate(self._require_participant_doc(user_id))

    def list_participants(self) -> list[Participant]:
        """All participants, newest first."""
        with store_errors(STORE_NAME):
            docs = list(self._participants.all())
        participants = [Participant.model_validate(doc) for doc in docs]
        return sorted(participants, key=lambda p: p.created_at, reverse=True)

    def mark_completed(self, user_id: str, patient_id: str) -> list[str]:
        """Record that a participant finished a patient; idempotent."""
        doc = self._require_participant_doc(user_id)
        completed = list(doc.get("completed_evaluations") or [])
        if patient_id not in completed:
            completed.append(patient_id)
        with store_errors(STORE_NAME):
            self._participants.update({
                "_key": doc["_key"],
                "completed_evaluations": completed,
                "last_activity": self._clock().isoformat(),
            })
        return completed

    # ------------------------------------------------------------------
    # Evaluations
    # ------------------------------------------------------------------

    def submit_evaluation(
        self,
        submission: EvaluationSubmission,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> EvaluationRecord:
        """
        Store an evaluation and mark the patient completed for the participant.

        Raises:
            NotFoundError: If the participant is not registered.
        """
        participant = self._require_participant_doc(submission.user_id)

        end_time = self._clock()
        start_time = _as_utc(submission.evaluation_start_time) if submission.evaluation_start_time else None
        time_spent = round((end_time - start_time).total_seconds()) if start_time else None
        user_data = submission.user_data or EvaluatorData(
            user_id=participant["user_id"],
            profession=participant.get("profession"),
            years_experience=participant.get("years_experience"),
        )
        evaluation_id = (
            f"EVAL_{int(end_time.timestamp() * 1000)}_{submission.user_id}_{submission.patient_id}"
        )

        doc = {
            "evaluation_id": evaluation_id,
            "user_id": submission.user_id,
            "patient_id": submission.patient_id,
            "overall_rating": submission.overall_rating,
            "implementation_willingness": submission.implementation_willingness.value,
            "comments": submission.comments,
            "user_data": user_data.model_dump(),
            "evaluation_start_time": start_time.isoformat() if start_time else None,
            "evaluation_end_time": end_time.isoformat(),
            "time_spent_seconds": time_spent,
            "created_at": end_time.isoformat(),
            "ip_address": ip_address,
            "user_agent": user_agent,
        }
        with store_errors(STORE_NAME):
            self._evaluations.insert(doc)

        self.mark_completed(submission.user_id, submission.patient_id)

        logger.info(
            "Evaluation submitted",
            evaluation_id=evaluation_id,
            user_id=submission.user_id,
            patient_id=submission.patient_id,
            overall_rating=submission.overall_rating,
        )
        return EvaluationRecord.model_validate(doc)

    def _records(self, filters: dict[str, Any] | None = None, newest_first: bool = True) -> list[EvaluationRecord]:
        with store_errors(STORE_NAME):
            docs = list(self._evaluations.find(filters or {}))
        records = [EvaluationRecord.model_validate(doc) for doc in docs]
        return sorted(records, key=lambda r: r.created_at, reverse=newest_first)

    def list_evaluations(
        self,
        patient_id: str | None = None,
        user_id: str | None = None,
        limit: int = 100,
        skip: int = 0,
    ) -> EvaluationListResponse:
        """A page of evaluations, newest first, optionally filtered."""
        filters = {}
        if patient_id:
            filters["patient_id"] = patient_id
        if user_id:
            filters["user_id"] = user_id

        records = self._records(filters)
        total = len(records)
        return EvaluationListResponse(
            evaluations=records[skip:skip + limit],
            total_evaluations=total,
            current_page=skip // limit + 1,
            total_pages=max(1, math.ceil(total / limit)),
        )

    def evaluations_for_participant(self, user_id: str) -> EvaluationListResponse:
        records = self._records({"user_id": user_id})
        return EvaluationListResponse(evaluations=records, total_evaluations=len(records))

    def patient_evaluation_report(self, patient_id: str) -> PatientEvaluationReport:
        """Evaluations of one patient grouped by profession and experience."""
        records = self._records({"patient_id": patient_id})

        by_profession: dict[str, list[EvaluationRecord]] = {}
        by_experience: dict[str, list[EvaluationRecord]] = {}
        for record in records:
            by_profession.setdefault(_profession(record), []).append(record)
            by_experience.setdefault(experience_range(record.user_data.years_experience), []).append(record)

        summary = PatientEvaluationSummary(
            total_evaluations=len(records),
            average_rating=_average(records),
            implementation_distribution=_distribution(records),
            professions=list(by_profession),
            experience_ranges=list(by_experience),
        )
        return PatientEvaluationReport(
            patient_id=patient_id,
            summary=summary,
            by_profession=by_profession,
            by_experience=by_experience,
            all_evaluations=records,
            total_evaluations=len(records),
        )

    def patients_summary(self) -> PatientsSummaryResponse:
        """Per-patient aggregates, in patient id order."""
        grouped: dict[str, list[EvaluationRecord]] = {}
        for record in self._records(newest_first=False):
            grouped.setdefault(record.patient_id, []).append(record)

        entries = []
        for patient_id in sorted(grouped, key=patient_sort_key):
            records = grouped[patient_id]
            entries.append(
                PatientSummaryEntry(
                    patient_id=patient_id,
                    total_evaluations=len(records),
                    average_rating=_average(records),
                    professions=sorted({r.user_data.profession for r in records if r.user_data.profession}),
                    implementation_distribution=_distribution(records),
                    evaluation_period=EvaluationPeriod(
                        first=records[0].created_at,
                        last=records[-1].created_at,
                    ),
                )
            )

        return PatientsSummaryResponse(
            total_unique_patients=len(entries),
            total_evaluations_across_all_patients=sum(e.total_evaluations for e in entries),
            patient_summaries=entries,
        )

    def export_patient(self, patient_id: str) -> PatientEvaluationExport:
        """
        Research export of one patient's evaluations, oldest first.

        Raises:
            NotFoundError: If the patient has no evaluations.
        """
        records = self._records({"patient_id": patient_id}, newest_first=False)
        if not records:
            raise NotFoundError(f"No evaluations found for patient {patient_id}")

        return PatientEvaluationExport(
            patient_id=patient_id,
            export_timestamp=self._clock(),
            total_evaluations=len(records),
            evaluations=[
                ExportedEvaluation(
                    evaluation_id=r.evaluation_id,
                    evaluator_id=r.user_id,
                    profession=r.user_data.profession,
                    years_experience=r.user_data.years_experience,
                    overall_rating=r.overall_rating,
                    implementation_willingness=r.implementation_willingness,
                    comments=r.comments,
                    time_spent_seconds=r.time_spent_seconds,
                    evaluation_date=r.created_at,
                    evaluation_start_time=r.evaluation_start_time,
                    evaluation_end_time=r.evaluation_end_time,
                )
                for r in records
            ],
        )

    def statistics(self) -> EvaluationStatistics:
        """Study-wide totals and distributions."""
        records = self._records()
        ratings = [r.overall_rating for r in records]

        by_profession: dict[str, list[EvaluationRecord]] = {}
        for record in records:
            by_profession.setdefault(_profession(record), []).append(record)

        return EvaluationStatistics(
            total_evaluations=len(records),
            unique_users=len({r.user_id for r in records}),
            unique_patients=len({r.patient_id for r in records}),
            rating_statistics=RatingStatistics(
                average_rating=round(mean(ratings), 2) if ratings else None,
                min_rating=min(ratings, default=None),
                max_rating=max(ratings, default=None),
            ),
            implementation_willingness=_distribution(records),
            profession_distribution=[
                ProfessionStatistics(profession=name, count=len(group), average_rating=_average(group))
                for name, group in sorted(by_profession.items())
            ],
        )


_evaluation_service: EvaluationService | None = None


def get_evaluation_service() -> EvaluationService:
    """
    Get the evaluation service singleton.

    Raises:
        SourceUnavailable: If no ArangoDB host is configured or the
            evaluation database cannot be prepared.
    """
    global _evaluation_service
    if _evaluation_service is None:
        settings = get_settings()
        if not settings.arango_host:
            raise SourceUnavailable(STORE_NAME)
        with store_errors(STORE_NAME):
            _evaluation_service = EvaluationService(get_evaluation_database(settings))
    return _evaluation_service
