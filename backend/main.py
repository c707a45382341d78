"""
Tumor Board Evaluation API

Backend of a clinical study in which medical professionals rate
AI-generated cancer-therapy recommendations.

This API provides:
- Resolved patient cases with the recommendation under evaluation
- Participant registration
- Evaluation submission, summaries and research exports
- Comprehensive logging and observability
"""

import time
from contextlib import asynccontextmanager
from pathlib import Path
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.config import Settings, get_settings
from config.logging_config import configure_logging, get_logger, log_request_context
from database.database import close_connection
from models.evaluation_models import (
    CompletedEvaluationsResponse,
    CompletedEvaluationUpdate,
    EvaluationListResponse,
    EvaluationStatistics,
    EvaluationSubmission,
    EvaluationSubmitResponse,
    ParticipantListResponse,
    ParticipantRegistration,
    ParticipantResponse,
    PatientEvaluationReport,
    PatientsSummaryResponse,
)
from models.models import ErrorResponse, HealthResponse, HealthStatus
from models.patient_models import PatientRecord, Recommendation, ReloadResponse
from services.errors import ConflictError, NotFoundError, SourceUnavailable
from services.evaluation_service import EvaluationService, get_evaluation_service
from services.patient_service import PatientService, get_patient_service

# Configure logging before anything else
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events with proper logging.
    """
    settings = get_settings()

    # Startup
    logger.info(
        "Application starting",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
        config=settings.get_safe_config_dict(),
        batch_results_exists=Path(settings.batch_results_path).is_dir(),
    )

    yield

    # Shutdown
    close_connection()
    logger.info("Application shutting down")


def _error_response(request: Request, status_code: int, error: str, message: str, details: dict | None = None):
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            message=message,
            details=details,
            request_id=getattr(request.state, "request_id", None),
        ).model_dump(mode="json"),
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Optional settings override for testing.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=__doc__,
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing and context."""
        request_id = str(uuid4())
        request.state.request_id = request_id
        start_time = time.perf_counter()

        # Bind request context for all logs in this request
        log_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)

        processing_time = int((time.perf_counter() - start_time) * 1000)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Processing-Time-Ms"] = str(processing_time)

        logger.info(
            "Request completed",
            status_code=response.status_code,
            processing_time_ms=processing_time,
        )

        return response

    # Exception handlers
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions with structured response."""
        return _error_response(request, exc.status_code, f"HTTP_{exc.status_code}", str(exc.detail))

    @app.exception_handler(SourceUnavailable)
    async def source_unavailable_handler(request: Request, exc: SourceUnavailable):
        """A store the request depends on could not be queried."""
        logger.error("Source unavailable", source=exc.source, error=str(exc.cause))
        return _error_response(
            request,
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "SOURCE_UNAVAILABLE",
            f"Data source '{exc.source}' is unavailable",
            {"source": exc.source},
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error_response(request, status.HTTP_404_NOT_FOUND, "NOT_FOUND", str(exc))

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError):
        return _error_response(request, status.HTTP_409_CONFLICT, "CONFLICT", str(exc))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.exception("Unhandled exception", error=str(exc))
        return _error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL_ERROR",
            "An unexpected error occurred",
        )

    # Register routes
    register_routes(app)
    register_patient_routes(app)
    register_participant_routes(app)
    register_evaluation_routes(app)

    return app


def register_routes(app: FastAPI) -> None:
    """Register service information routes."""

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        settings = get_settings()
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "status": "operational",
            "docs": "/docs" if settings.debug else "disabled",
        }

    @app.get("/api/health", response_model=HealthResponse, tags=["Health"])
    def health_check(settings: Settings = Depends(get_settings)) -> HealthResponse:
        """
        Health check endpoint for monitoring.

        Returns system health status and component checks. The service is
        healthy when it has at least one place to read patient data from.
        """
        checks = {
            "api": True,
            "workflow_store_configured": settings.workflow_store_configured,
            "batch_results_available": Path(settings.batch_results_path).is_dir(),
            "baseline_store_configured": bool(settings.baseline_host),
        }

        # Determine overall status
        if checks["workflow_store_configured"] or checks["batch_results_available"]:
            health = HealthStatus.HEALTHY
        elif checks["api"]:
            health = HealthStatus.DEGRADED
        else:
            health = HealthStatus.UNHEALTHY

        return HealthResponse(
            status=health,
            version=settings.app_version,
            environment=settings.environment,
            checks=checks,
            paths={"batch_results": settings.batch_results_path},
        )


def register_patient_routes(app: FastAPI) -> None:
    """Register patient record routes."""

    @app.get("/api/patients", response_model=dict[str, PatientRecord], tags=["Patients"])
    def list_patients(service: PatientService = Depends(get_patient_service)) -> dict[str, PatientRecord]:
        """All resolved patients keyed by patient id."""
        patients = service.get_all_patients()
        logger.info("Patients served", patient_count=len(patients))
        return dict(patients)

    @app.get("/api/patients/{patient_id}", response_model=PatientRecord, tags=["Patients"])
    def get_patient(
        patient_id: str,
        service: PatientService = Depends(get_patient_service),
    ) -> PatientRecord:
        """
        One resolved patient.

        Returns 404 when no source holds anything for the id.
        """
        record = service.get_patient(patient_id)
        if not record.has_data:
            raise HTTPException(status_code=404, detail="Patient not found")
        return record

    @app.get(
        "/api/patients/{patient_id}/recommendation",
        response_model=Recommendation,
        tags=["Patients"],
    )
    def get_patient_recommendation(
        patient_id: str,
        service: PatientService = Depends(get_patient_service),
    ) -> Recommendation:
        """The recommendation under evaluation for one patient."""
        record = service.get_patient(patient_id)
        if not record.has_data:
            raise HTTPException(status_code=404, detail="Patient not found")
        return record.primary_recommendation

    @app.post("/api/reload", response_model=ReloadResponse, tags=["Patients"])
    def reload_patients(service: PatientService = Depends(get_patient_service)) -> ReloadResponse:
        """Clear the patient cache and rebuild it from the sources."""
        patient_count = service.reload()
        logger.info("Patient data reloaded", patient_count=patient_count)
        return ReloadResponse(message="Data reloaded successfully", patient_count=patient_count)


def register_participant_routes(app: FastAPI) -> None:
    """Register participant routes."""

    @app.post(
        "/api/users/register",
        response_model=ParticipantResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Participants"],
    )
    def register_participant(
        registration: ParticipantRegistration,
        service: EvaluationService = Depends(get_evaluation_service),
    ) -> ParticipantResponse:
        """Register a study participant."""
        participant = service.register_participant(registration)
        return ParticipantResponse(message="User registered successfully", user=participant)

    @app.get("/api/users", response_model=ParticipantListResponse, tags=["Participants"])
    def list_participants(
        service: EvaluationService = Depends(get_evaluation_service),
    ) -> ParticipantListResponse:
        """All participants, newest first."""
        participants = service.list_participants()
        return ParticipantListResponse(users=participants, total_users=len(participants))

    @app.get("/api/users/{user_id}", response_model=ParticipantResponse, tags=["Participants"])
    def get_participant(
        user_id: str,
        service: EvaluationService = Depends(get_evaluation_service),
    ) -> ParticipantResponse:
        return ParticipantResponse(user=service.get_participant(user_id))

    @app.put(
        "/api/users/{user_id}/completed",
        response_model=CompletedEvaluationsResponse,
        tags=["Participants"],
    )
    def mark_completed(
        user_id: str,
        update: CompletedEvaluationUpdate,
        service: EvaluationService = Depends(get_evaluation_service),
    ) -> CompletedEvaluationsResponse:
        """Record that a participant finished evaluating a patient."""
        completed = service.mark_completed(user_id, update.patient_id)
        return CompletedEvaluationsResponse(
            message="Completed evaluations updated",
            completed_evaluations=completed,
        )


def register_evaluation_routes(app: FastAPI) -> None:
    """Register evaluation routes."""

    @app.post(
        "/api/evaluations",
        response_model=EvaluationSubmitResponse,
        status_code=status.HTTP_201_CREATED,
        tags=["Evaluations"],
    )
    def submit_evaluation(
        submission: EvaluationSubmission,
        request: Request,
        service: EvaluationService = Depends(get_evaluation_service),
    ) -> EvaluationSubmitResponse:
        """Submit one participant's evaluation of one patient."""
        evaluation = service.submit_evaluation(
            submission,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
        return EvaluationSubmitResponse(message="Evaluation submitted successfully", evaluation=evaluation)

    @app.get("/api/evaluations", response_model=EvaluationListResponse, tags=["Evaluations"])
    def list_evaluations(
        limit: int = Query(default=100, ge=1, le=1000),
        skip: int = Query(default=0, ge=0),
        patient_id: str | None = None,
        user_id: str | None = None,
        service: EvaluationService = Depends(get_evaluation_service),
    ) -> EvaluationListResponse:
        """All evaluations for research and admin use, newest first."""
        return service.list_evaluations(patient_id=patient_id, user_id=user_id, limit=limit, skip=skip)

    @app.get("/api/evaluations/user/{user_id}", response_model=EvaluationListResponse, tags=["Evaluations"])
    def participant_evaluations(
        user_id: str,
        service: EvaluationService = Depends(get_evaluation_service),
    ) -> EvaluationListResponse:
        return service.evaluations_for_participant(user_id)

    @app.get(
        "/api/evaluations/patients/summary",
        response_model=PatientsSummaryResponse,
        tags=["Evaluations"],
    )
    def patients_summary(
        service: EvaluationService = Depends(get_evaluation_service),
    ) -> PatientsSummaryResponse:
        """Evaluation aggregates for every evaluated patient."""
        return service.patients_summary()

    @app.get(
        "/api/evaluations/patient/{patient_id}",
        response_model=PatientEvaluationReport,
        tags=["Evaluations"],
    )
    def patient_report(
        patient_id: str,
        service: EvaluationService = Depends(get_evaluation_service),
    ) -> PatientEvaluationReport:
        """Evaluations of one patient grouped by profession and experience."""
        return service.patient_evaluation_report(patient_id)

    @app.get("/api/evaluations/patient/{patient_id}/export", tags=["Evaluations"])
    def export_patient(
        patient_id: str,
        service: EvaluationService = Depends(get_evaluation_service),
    ) -> JSONResponse:
        """Download one patient's evaluations in a research-friendly format."""
        export = service.export_patient(patient_id)
        logger.info("Evaluations exported", patient_id=patient_id, total_evaluations=export.total_evaluations)
        return JSONResponse(
            content=export.model_dump(mode="json"),
            headers={
                "Content-Disposition": f'attachment; filename="patient_{patient_id}_evaluations.json"',
            },
        )

    @app.get("/api/evaluations/stats/summary", response_model=EvaluationStatistics, tags=["Evaluations"])
    def evaluation_statistics(
        service: EvaluationService = Depends(get_evaluation_service),
    ) -> EvaluationStatistics:
        return service.statistics()


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
