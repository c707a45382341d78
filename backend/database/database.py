"""
ArangoDB connections for the workflow, baseline and evaluation databases.

Clients are process-wide: one per host, created lazily and reused for all
requests. Every client carries a request timeout so an unresponsive store
surfaces as an ordinary connection error.
All database operations are logged for observability.
"""

import threading
from contextlib import contextmanager
from typing import Generator

from arango import ArangoClient
from arango.database import StandardDatabase
from arango.exceptions import ArangoError, CollectionCreateError, DatabaseCreateError
from requests.exceptions import RequestException

from config.config import Settings, get_settings
from config.logging_config import get_logger
from services.errors import SourceUnavailable

logger = get_logger(__name__)

# Collections owned by this service in the evaluation database
EVALUATION_COLLECTIONS = ("participants", "evaluations")

_clients: dict[str, ArangoClient] = {}
_databases: dict[tuple[str, str], StandardDatabase] = {}
_lock = threading.Lock()


def get_client(host: str, settings: Settings | None = None) -> ArangoClient:
    """
    Get or create the ArangoDB client for a host.

    Args:
        host: ArangoDB host URL.
        settings: Optional settings override.

    Returns:
        ArangoClient instance.
    """
    settings = settings or get_settings()
    with _lock:
        client = _clients.get(host)
        if client is None:
            client = ArangoClient(hosts=host, request_timeout=settings.arango_request_timeout)
            _clients[host] = client
            logger.info("ArangoDB client initialized", host=host)
    return client


def get_database(
    host: str,
    name: str,
    create: bool = False,
    settings: Settings | None = None,
) -> StandardDatabase:
    """
    Get or create a database connection.

    Args:
        host: ArangoDB host URL.
        name: Database name.
        create: Create the database and this service's collections if
            they do not exist. Read-only stores are never created.
        settings: Optional settings override.

    Returns:
        StandardDatabase instance.
    """
    settings = settings or get_settings()
    key = (host, name)
    if key in _databases:
        return _databases[key]

    client = get_client(host, settings)

    if create:
        # Connect to system database to create our database if needed
        sys_db = client.db(
            "_system",
            username=settings.arango_username,
            password=settings.arango_password,
        )
        if not sys_db.has_database(name):
            try:
                sys_db.create_database(name)
                logger.info("Created database", database=name)
            except DatabaseCreateError as e:
                logger.error("Failed to create database", database=name, error=str(e))
                raise

    db = client.db(
        name,
        username=settings.arango_username,
        password=settings.arango_password,
    )
    logger.info("Connected to database", host=host, database=name)

    if create:
        _init_collections(db, EVALUATION_COLLECTIONS)

    _databases[key] = db
    return db


def _init_collections(db: StandardDatabase, names: tuple[str, ...]) -> None:
    """
    Initialize required collections if they don't exist.

    Args:
        db: The database instance.
        names: Collection names.
    """
    for name in names:
        if not db.has_collection(name):
            try:
                db.create_collection(name)
                logger.info("Created collection", collection=name)
            except CollectionCreateError as e:
                logger.warning("Collection creation failed", collection=name, error=str(e))


def get_workflow_database(settings: Settings | None = None) -> StandardDatabase:
    """Database holding the primary workflow documents."""
    settings = settings or get_settings()
    return get_database(settings.arango_host, settings.workflow_database, settings=settings)


def get_baseline_database(settings: Settings | None = None) -> StandardDatabase:
    """Database holding baseline recommendations (separate connection)."""
    settings = settings or get_settings()
    return get_database(settings.baseline_host, settings.baseline_database, settings=settings)


def get_evaluation_database(settings: Settings | None = None) -> StandardDatabase:
    """Database holding participants and evaluations, created on first use."""
    settings = settings or get_settings()
    return get_database(settings.arango_host, settings.evaluation_database, create=True, settings=settings)


def close_connection() -> None:
    """Close all database connections."""
    with _lock:
        for client in _clients.values():
            client.close()
        closed = len(_clients)
        _clients.clear()
        _databases.clear()
    if closed:
        logger.info("Database connections closed", clients=closed)


@contextmanager
def store_errors(store: str) -> Generator[None, None, None]:
    """
    Report database failures inside the block as SourceUnavailable.

    Args:
        store: Store name used in logs and in the raised error.
    """
    try:
        yield
    except (ArangoError, RequestException) as e:
        logger.error("Database error", store=store, error=str(e))
        raise SourceUnavailable(store, e) from e
