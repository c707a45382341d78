"""Tests for PatientService caching and degraded mode."""
import pytest
from requests.exceptions import ConnectionError as RequestsConnectionError

from conftest import StubSource
from models.patient_models import RecommendationProvenance
from services.errors import SourceUnavailable
from services.patient_service import PatientService
from services.record_cache import RecordCache
from services.record_resolver import RecordResolver
from services.workflow_schema import WorkflowFragment


def make_service(sources, serve_degraded=False, ttl_seconds=300):
    resolver = RecordResolver(sources, max_workers=1)
    return PatientService(resolver, RecordCache(ttl_seconds=ttl_seconds), serve_degraded=serve_degraded)


def store_down():
    return SourceUnavailable("workflow_store", RequestsConnectionError("refused"))


@pytest.fixture
def primary():
    return StubSource(
        {"1": WorkflowFragment(recommendation_text="Store one"), "2": WorkflowFragment(recommendation_text="Store two")},
        provenance=RecommendationProvenance.PRIMARY_STORE,
        is_primary=True,
        name="primary",
    )


@pytest.fixture
def files():
    return StubSource({"1": WorkflowFragment(recommendation_text="File one")}, name="files")


def test_repeated_reads_within_ttl_do_not_requery(primary, files):
    service = make_service([primary, files])

    first = service.get_all_patients()
    second = service.get_all_patients()

    assert dict(first) == dict(second)
    assert sorted(primary.loaded) == ["1", "2"]
    assert sorted(files.loaded) == ["1", "2"]


def test_get_patient_served_from_fresh_cache(primary, files):
    service = make_service([primary, files])
    service.get_all_patients()

    record = service.get_patient("2")

    assert record.primary_recommendation.text == "Store two"
    assert sorted(primary.loaded) == ["1", "2"]


def test_get_patient_resolves_uncached_id(primary, files):
    service = make_service([primary, files])

    record = service.get_patient("3")

    assert not record.has_data
    assert primary.loaded == ["3"]


def test_invalidate_requeries(primary, files):
    service = make_service([primary, files])
    service.get_all_patients()

    service.invalidate_cache()
    service.get_all_patients()

    assert sorted(primary.loaded) == ["1", "1", "2", "2"]
    assert sorted(files.loaded) == ["1", "1", "2", "2"]


def test_reload_returns_patient_count(primary, files):
    service = make_service([primary, files])
    assert service.reload() == 2


def test_single_patient_store_failure_propagates_by_default(files):
    broken = StubSource({"1": None}, is_primary=True, error=store_down(), name="primary")
    service = make_service([broken, files])

    with pytest.raises(SourceUnavailable):
        service.get_patient("1")


def test_patient_list_falls_back_per_patient(files):
    broken = StubSource({"1": None}, is_primary=True, error=store_down(), name="primary")
    service = make_service([broken, files])

    records = service.get_all_patients()

    assert records["1"].primary_recommendation.text == "File one"
    assert records["1"].primary_recommendation.provenance is RecommendationProvenance.STRUCTURED_FILE


def test_degraded_single_patient_is_not_cached(files):
    broken = StubSource(is_primary=True, error=store_down(), name="primary")
    service = make_service([broken, files], serve_degraded=True)

    service.get_patient("1")
    service.get_patient("1")

    assert files.loaded == ["1", "1"]


def test_degraded_single_patient(files):
    broken = StubSource(is_primary=True, error=store_down(), name="primary")
    service = make_service([broken, files], serve_degraded=True)

    assert service.get_patient("1").primary_recommendation.text == "File one"
