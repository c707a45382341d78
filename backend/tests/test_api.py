"""API tests with the services replaced through dependency overrides."""
import pytest
from fastapi.testclient import TestClient
from requests.exceptions import ConnectionError as RequestsConnectionError

from conftest import StubSource, workflow_document, write_directory_workflow
from config.config import Settings, get_settings
from main import create_app
from models.patient_models import RecommendationProvenance
from services.errors import SourceUnavailable
from services.evaluation_service import EvaluationService, get_evaluation_service
from services.patient_service import PatientService, get_patient_service
from services.record_cache import RecordCache
from services.record_resolver import RecordResolver
from services.record_sources import DirectoryFileSource, FlatFileSource, LegacyRecommendationSource


@pytest.fixture
def settings(results_root):
    return Settings(arango_host="", batch_results_path=str(results_root))


@pytest.fixture
def patient_service(results_root):
    resolver = RecordResolver(
        [DirectoryFileSource(results_root), FlatFileSource(results_root), LegacyRecommendationSource(results_root)],
        max_workers=1,
    )
    return PatientService(resolver, RecordCache(ttl_seconds=300))


@pytest.fixture
def app(settings, patient_service, fake_db):
    app = create_app(settings)
    evaluation_service = EvaluationService(fake_db)
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_patient_service] = lambda: patient_service
    app.dependency_overrides[get_evaluation_service] = lambda: evaluation_service
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["checks"]["workflow_store_configured"] is False
    assert body["checks"]["batch_results_available"] is True
    assert "X-Request-ID" in response.headers


def test_list_patients(client, results_root):
    write_directory_workflow(results_root, "2", workflow_document(raw_response="Therapy\\nB"))
    write_directory_workflow(results_root, "1", workflow_document())

    response = client.get("/api/patients")

    assert response.status_code == 200
    body = response.json()
    assert list(body) == ["1", "2"]
    assert body["2"]["primary_recommendation"] == {"text": "Therapy\nB", "provenance": "STRUCTURED_FILE"}
    assert body["2"]["name"] == "Patient 2"


def test_get_patient_and_recommendation(client, results_root):
    write_directory_workflow(results_root, "1", workflow_document(clinical_information="Case A"))

    assert client.get("/api/patients/1").json()["clinical_information"] == "Case A"
    assert client.get("/api/patients/1/recommendation").json()["provenance"] == "STRUCTURED_FILE"


def test_unknown_patient_is_404(client):
    response = client.get("/api/patients/404")

    assert response.status_code == 404
    assert response.json()["error"] == "HTTP_404"


def test_reload_picks_up_new_files(client, results_root):
    assert client.get("/api/patients").json() == {}
    write_directory_workflow(results_root, "1", workflow_document())

    assert client.get("/api/patients").json() == {}
    response = client.post("/api/reload")

    assert response.json()["patient_count"] == 1
    assert list(client.get("/api/patients").json()) == ["1"]


def test_primary_store_down_is_503_for_single_patient(app):
    broken = StubSource(
        {"1": None},
        provenance=RecommendationProvenance.PRIMARY_STORE,
        is_primary=True,
        error=SourceUnavailable("workflow_store", RequestsConnectionError("refused")),
    )
    service = PatientService(RecordResolver([broken], max_workers=1), RecordCache())
    app.dependency_overrides[get_patient_service] = lambda: service

    client = TestClient(app)
    response = client.get("/api/patients/1")

    assert client.get("/api/patients").status_code == 200
    assert response.status_code == 503
    assert response.json()["error"] == "SOURCE_UNAVAILABLE"
    assert response.json()["details"] == {"source": "workflow_store"}


def test_evaluation_store_not_configured_is_503(app):
    def unavailable():
        raise SourceUnavailable("evaluation_store")

    app.dependency_overrides[get_evaluation_service] = unavailable

    assert TestClient(app).get("/api/users").status_code == 503


def register(client, user_id="dr_a"):
    return client.post(
        "/api/users/register",
        json={"user_id": user_id, "profession": "Oncologist", "years_experience": 7},
    )


def test_register_participant(client):
    response = register(client)

    assert response.status_code == 201
    assert response.json()["user"]["user_id"] == "dr_a"
    assert register(client).status_code == 409
    assert client.get("/api/users").json()["total_users"] == 1


def test_registration_validation(client):
    response = client.post("/api/users/register", json={"user_id": "  ", "profession": "X", "years_experience": 1})
    assert response.status_code == 422


def test_unknown_participant_is_404(client):
    response = client.get("/api/users/ghost")

    assert response.status_code == 404
    assert response.json()["error"] == "NOT_FOUND"


def test_submit_and_query_evaluations(client):
    register(client)
    response = client.post(
        "/api/evaluations",
        json={"user_id": "dr_a", "patient_id": "1", "overall_rating": 7, "implementation_willingness": "maybe"},
        headers={"User-Agent": "pytest"},
    )

    assert response.status_code == 201
    evaluation = response.json()["evaluation"]
    assert "ip_address" not in evaluation
    assert "user_agent" not in evaluation

    assert client.get("/api/users/dr_a").json()["user"]["completed_evaluations"] == ["1"]
    assert client.get("/api/evaluations").json()["total_evaluations"] == 1
    assert client.get("/api/evaluations/user/dr_a").json()["total_evaluations"] == 1
    assert client.get("/api/evaluations/patient/1").json()["summary"]["average_rating"] == 7.0
    assert client.get("/api/evaluations/patients/summary").json()["total_unique_patients"] == 1
    assert client.get("/api/evaluations/stats/summary").json()["unique_users"] == 1


def test_rating_out_of_range_is_422(client):
    register(client)
    response = client.post(
        "/api/evaluations",
        json={"user_id": "dr_a", "patient_id": "1", "overall_rating": 11, "implementation_willingness": "yes"},
    )
    assert response.status_code == 422


def test_mark_completed(client):
    register(client)
    response = client.put("/api/users/dr_a/completed", json={"patient_id": "3"})

    assert response.json()["completed_evaluations"] == ["3"]


def test_export(client):
    register(client)
    client.post(
        "/api/evaluations",
        json={"user_id": "dr_a", "patient_id": "1", "overall_rating": 9, "implementation_willingness": "yes"},
    )

    response = client.get("/api/evaluations/patient/1/export")

    assert response.status_code == 200
    assert 'filename="patient_1_evaluations.json"' in response.headers["content-disposition"]
    assert response.json()["evaluations"][0]["overall_rating"] == 9
    assert client.get("/api/evaluations/patient/2/export").status_code == 404


def test_pagination_bounds(client):
    assert client.get("/api/evaluations", params={"limit": 0}).status_code == 422
