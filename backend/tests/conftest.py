"""Shared fixtures: workflow documents on disk, stub sources and a fake ArangoDB."""
import itertools
import json
from pathlib import Path

import pytest

from models.patient_models import RecommendationProvenance
from services.record_sources import RecordSource


def workflow_document(
    clinical_information="Case narrative",
    clinical_question="Which therapy?",
    expert_recommendation=None,
    raw_response="Recommend therapy A",
    trials=None,
):
    """Build a complete workflow document in the pipeline's schema."""
    patient_data = {}
    if clinical_information is not None:
        patient_data["clinical_information"] = clinical_information
    if clinical_question is not None:
        patient_data["question_for_tumorboard"] = clinical_question
    if expert_recommendation is not None:
        patient_data["expert_recommendation"] = expert_recommendation

    document = {"guidelines_result": {"patient_data": patient_data}}
    if raw_response is not None:
        document["recommendation_result"] = {"raw_response": raw_response}
    if trials is not None:
        document["trial_matching_result"] = {"relevant_trials": trials}
    return document


def write_json(path: Path, payload) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def write_directory_workflow(root: Path, patient_id: str, document) -> Path:
    return write_json(root / f"patient_{patient_id}" / f"patient_{patient_id}_complete_workflow.json", document)


def write_flat_workflow(root: Path, patient_id: str, document) -> Path:
    return write_json(root / f"patient_{patient_id}_complete_workflow.json", document)


class StubSource(RecordSource):
    """In-memory record source that records every load."""

    def __init__(
        self,
        fragments=None,
        provenance=RecommendationProvenance.STRUCTURED_FILE,
        is_primary=False,
        error=None,
        name="stub",
        field_groups=None,
    ):
        self.fragments = dict(fragments or {})
        self.provenance = provenance
        self.is_primary = is_primary
        self.error = error
        self.name = name
        if field_groups is not None:
            self.field_groups = frozenset(field_groups)
        self.loaded = []

    def try_load(self, patient_id):
        self.loaded.append(patient_id)
        if self.error is not None:
            raise self.error
        return self.fragments.get(patient_id)

    def list_patient_ids(self):
        return list(self.fragments)


class FakeCollection:
    """The subset of python-arango's StandardCollection the services use."""

    def __init__(self, docs=None, error=None):
        self.docs = {}
        self.error = error
        self.get_calls = []
        self._keys = itertools.count(1)
        for doc in docs or []:
            self.insert(doc)

    def _check(self):
        if self.error is not None:
            raise self.error

    def get(self, key):
        self.get_calls.append(key)
        self._check()
        doc = self.docs.get(key)
        return dict(doc) if doc is not None else None

    def insert(self, document):
        self._check()
        key = document.get("_key") or str(next(self._keys))
        self.docs[key] = {**document, "_key": key}
        return {"_key": key, "_id": f"fake/{key}"}

    def update(self, document):
        self._check()
        key = document["_key"]
        self.docs[key] = {**self.docs[key], **document}
        return {"_key": key}

    def replace(self, document):
        self._check()
        self.docs[document["_key"]] = dict(document)
        return {"_key": document["_key"]}

    def find(self, filters, skip=None, limit=None):
        self._check()
        matches = [
            dict(doc) for doc in self.docs.values()
            if all(doc.get(field) == value for field, value in filters.items())
        ]
        start = skip or 0
        end = start + limit if limit else None
        return iter(matches[start:end])

    def all(self):
        self._check()
        return iter([dict(doc) for doc in self.docs.values()])


class FakeAQL:
    """Answers the baseline lookup query against a FakeDatabase."""

    def __init__(self, database):
        self._database = database
        self.error = None
        self.queries = []

    def execute(self, query, bind_vars=None):
        self.queries.append((query, bind_vars))
        if self.error is not None:
            raise self.error
        bind_vars = bind_vars or {}
        collection = self._database.collection(bind_vars["@collection"])
        matches = [
            doc for doc in collection.docs.values()
            if doc.get("patient_id") == bind_vars.get("patient_id")
            and doc.get("model_tag") == bind_vars.get("model_tag")
        ]
        matches.sort(key=lambda doc: doc.get("created_at", ""), reverse=True)
        return iter([doc.get("raw_response") for doc in matches[:1]])


class FakeDatabase:
    def __init__(self):
        self.collections = {}
        self.aql = FakeAQL(self)

    def collection(self, name):
        if name not in self.collections:
            self.collections[name] = FakeCollection()
        return self.collections[name]


@pytest.fixture
def results_root(tmp_path):
    root = tmp_path / "batch_results"
    root.mkdir()
    return root


@pytest.fixture
def fake_db():
    return FakeDatabase()
