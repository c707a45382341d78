"""
Sources a patient record can be resolved from.

Every source answers the same question, "what do you hold for this
patient?", through try_load(). The resolver composes them in a fixed
priority order:

1. PrimaryStoreSource - workflow documents in ArangoDB
2. DirectoryFileSource - <root>/patient_<id>/patient_<id>_complete_workflow.json
3. FlatFileSource - <root>/patient_<id>_complete_workflow.json
4. LegacyRecommendationSource - single-step recommendation files

The baseline store is not a record source: it supplies one independent
field and never takes part in the fallback chain.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from arango.collection import StandardCollection
from arango.database import StandardDatabase
from arango.exceptions import ArangoClientError, ArangoError, ArangoServerError, DocumentParseError
from requests.exceptions import RequestException

from config.logging_config import get_logger
from models.patient_models import RecommendationProvenance
from services.errors import MalformedSource, SourceUnavailable
from services.workflow_schema import FieldGroup, WorkflowFragment, parse_workflow_document

logger = get_logger(__name__)

PATIENT_PREFIX = "patient_"
WORKFLOW_SUFFIX = "_complete_workflow.json"
LEGACY_SUFFIX = "_therapy_recommendation.json"
LEGACY_RAW_SUFFIX = "_therapy_recommendation_raw_response.txt"

ALL_GROUPS = frozenset({FieldGroup.CASE, FieldGroup.RECOMMENDATION})


class RecordSource(ABC):
    """
    A place the resolver may find patient data in.

    Attributes:
        name: Short name used in logs.
        provenance: Provenance reported when this source supplies the
            recommendation.
        field_groups: Field groups this source can supply.
        is_primary: Whether failures of this source must be surfaced.
    """

    name: str = "source"
    provenance: RecommendationProvenance = RecommendationProvenance.NONE
    field_groups: frozenset[FieldGroup] = ALL_GROUPS
    is_primary: bool = False

    @abstractmethod
    def try_load(self, patient_id: str) -> WorkflowFragment | None:
        """
        Load what this source holds for a patient.

        Returns:
            A fragment, or None when the source has nothing for the id.

        Raises:
            SourceUnavailable: Primary sources only, on transport or
                server errors.
            MalformedSource: If the stored data has the wrong shape.
        """

    def list_patient_ids(self) -> list[str]:
        """Patient ids this source knows about."""
        return []

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


def _read_json(path: Path) -> Any:
    """Read a JSON file, reporting decode errors as MalformedSource."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedSource(str(path), str(e)) from e


def _patient_id_from_name(name: str, suffix: str = "") -> str | None:
    if not name.startswith(PATIENT_PREFIX) or not name.endswith(suffix):
        return None
    patient_id = name[len(PATIENT_PREFIX):len(name) - len(suffix)].strip()
    return patient_id or None


class PrimaryStoreSource(RecordSource):
    """
    Workflow documents stored in an ArangoDB collection.

    Documents are keyed by patient id (_key). Patient ids are not
    discovered from the store: the deployment lists them up front.
    """

    name = "workflow_store"
    provenance = RecommendationProvenance.PRIMARY_STORE
    is_primary = True

    def __init__(self, collection: StandardCollection, patient_ids: list[str] | tuple[str, ...] = ()):
        self._collection = collection
        self._patient_ids = list(patient_ids)

    def try_load(self, patient_id: str) -> WorkflowFragment | None:
        try:
            document = self._collection.get(patient_id)
        except DocumentParseError:
            # Not a valid document key, so the store cannot hold it
            logger.debug("Invalid workflow store key", patient_id=patient_id)
            return None
        except (ArangoServerError, ArangoClientError, RequestException) as e:
            raise SourceUnavailable(self.name, e) from e

        if document is None:
            return None
        return parse_workflow_document(document, f"{self.name}/{patient_id}")

    def list_patient_ids(self) -> list[str]:
        return list(self._patient_ids)


class DirectoryFileSource(RecordSource):
    """Complete workflow files inside per-patient directories."""

    name = "workflow_directory"
    provenance = RecommendationProvenance.STRUCTURED_FILE

    def __init__(self, root: Path | str):
        self._root = Path(root)

    def workflow_path(self, patient_id: str) -> Path:
        directory = self._root / f"{PATIENT_PREFIX}{patient_id}"
        return directory / f"{PATIENT_PREFIX}{patient_id}{WORKFLOW_SUFFIX}"

    def try_load(self, patient_id: str) -> WorkflowFragment | None:
        path = self.workflow_path(patient_id)
        if not path.is_file():
            return None
        return parse_workflow_document(_read_json(path), str(path))

    def list_patient_ids(self) -> list[str]:
        if not self._root.is_dir():
            logger.warning("Batch results directory not found", path=str(self._root))
            return []
        ids = []
        for entry in self._root.iterdir():
            if entry.is_dir():
                patient_id = _patient_id_from_name(entry.name)
                if patient_id:
                    ids.append(patient_id)
        return ids


class FlatFileSource(RecordSource):
    """
    Complete workflow files placed directly under the results root.

    Some deployments receive a single uploaded file per patient instead
    of a directory.
    """

    name = "workflow_flat_file"
    provenance = RecommendationProvenance.STRUCTURED_FILE

    def __init__(self, root: Path | str):
        self._root = Path(root)

    def workflow_path(self, patient_id: str) -> Path:
        return self._root / f"{PATIENT_PREFIX}{patient_id}{WORKFLOW_SUFFIX}"

    def try_load(self, patient_id: str) -> WorkflowFragment | None:
        path = self.workflow_path(patient_id)
        if not path.is_file():
            return None
        return parse_workflow_document(_read_json(path), str(path))

    def list_patient_ids(self) -> list[str]:
        if not self._root.is_dir():
            return []
        ids = []
        for path in self._root.glob(f"{PATIENT_PREFIX}*{WORKFLOW_SUFFIX}"):
            patient_id = _patient_id_from_name(path.name, WORKFLOW_SUFFIX)
            if path.is_file() and patient_id:
                ids.append(patient_id)
        return ids


class LegacyRecommendationSource(RecordSource):
    """
    Recommendation-only files from single-step pipeline runs.

    A JSON recommendation file with an optional raw-response text file
    beside it. The patient directory is checked before the root, and a
    malformed file in one location does not hide the other. This
    source supplies the recommendation only, and the resolver consults it
    only when no workflow source produced one.
    """

    name = "legacy_recommendation"
    provenance = RecommendationProvenance.LEGACY_FILE
    field_groups = frozenset({FieldGroup.RECOMMENDATION})

    def __init__(self, root: Path | str):
        self._root = Path(root)

    def candidate_dirs(self, patient_id: str) -> list[Path]:
        return [self._root / f"{PATIENT_PREFIX}{patient_id}", self._root]

    def try_load(self, patient_id: str) -> WorkflowFragment | None:
        stem = f"{PATIENT_PREFIX}{patient_id}"
        for directory in self.candidate_dirs(patient_id):
            recommendation_file = directory / f"{stem}{LEGACY_SUFFIX}"
            if not recommendation_file.is_file():
                continue

            recommendation = self._read_recommendation(recommendation_file)
            if recommendation is None:
                continue

            text = recommendation.get("raw_response")
            if not isinstance(text, str) or not text.strip():
                text = self._read_raw_response(directory / f"{stem}{LEGACY_RAW_SUFFIX}")
            if text:
                return WorkflowFragment(recommendation_text=text)

            logger.info(
                "Legacy recommendation file has no text",
                patient_id=patient_id,
                path=str(recommendation_file),
            )
        return None

    def _read_recommendation(self, path: Path) -> dict[str, Any] | None:
        """Read a recommendation file, or None when it is malformed."""
        try:
            recommendation = _read_json(path)
        except MalformedSource as e:
            logger.warning("Skipping malformed legacy recommendation", path=str(path), error=e.reason)
            return None
        if not isinstance(recommendation, dict):
            logger.warning("Skipping malformed legacy recommendation", path=str(path), error="not an object")
            return None
        return recommendation

    def _read_raw_response(self, path: Path) -> str | None:
        if not path.is_file():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read raw response file", path=str(path), error=str(e))
            return None

    def list_patient_ids(self) -> list[str]:
        if not self._root.is_dir():
            return []
        ids = []
        for path in self._root.glob(f"{PATIENT_PREFIX}*{LEGACY_SUFFIX}"):
            patient_id = _patient_id_from_name(path.name, LEGACY_SUFFIX)
            if path.is_file() and patient_id:
                ids.append(patient_id)
        return ids


class BaselineStore:
    """
    Baseline recommendations in a second, independent ArangoDB database.

    Documents look like {"patient_id", "model_tag", "raw_response"}. Any
    failure here only means the baseline is omitted.
    """

    name = "baseline_store"

    QUERY = """
    FOR doc IN @@collection
        FILTER doc.patient_id == @patient_id AND doc.model_tag == @model_tag
        SORT doc.created_at DESC
        LIMIT 1
        RETURN doc.raw_response
    """

    def __init__(self, database: StandardDatabase, collection: str, model_tag: str):
        self._database = database
        self._collection = collection
        self._model_tag = model_tag

    def fetch(self, patient_id: str) -> str | None:
        """Get the baseline recommendation text, or None."""
        try:
            cursor = self._database.aql.execute(
                self.QUERY,
                bind_vars={
                    "@collection": self._collection,
                    "patient_id": patient_id,
                    "model_tag": self._model_tag,
                },
            )
            results = list(cursor)
        except (ArangoError, RequestException) as e:
            logger.warning(
                "Baseline store unavailable",
                patient_id=patient_id,
                model_tag=self._model_tag,
                error=str(e),
            )
            return None

        if not results or not isinstance(results[0], str):
            logger.debug("No baseline recommendation", patient_id=patient_id, model_tag=self._model_tag)
            return None
        return results[0]
