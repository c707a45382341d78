"""
Application configuration with environment-based settings.
All configuration is explicit, validated, and logged at startup.
"""

import json
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development but require
    explicit configuration in production environments.
    """

    model_config = SettingsConfigDict(
        env_file="../.env",  # Load from project root (relative to backend/)
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )

    # Application
    app_name: str = Field(default="Tumor Board Evaluation", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=5001, description="Server port")

    # CORS
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    # ArangoDB - workflow store and evaluation storage share this host.
    # An empty host means the primary workflow store is not configured.
    arango_host: str = Field(
        default="",
        description="ArangoDB host URL for the workflow and evaluation databases"
    )
    ARANGODB_USERNAME: str = Field(
        default="root",
        description="ArangoDB username (from ARANGODB_USERNAME env var)"
    )
    ARANGODB_PASSWORD: str = Field(
        default="",
        description="ArangoDB password (from ARANGODB_PASSWORD env var)"
    )
    arango_request_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Connection-level timeout in seconds for ArangoDB requests"
    )
    workflow_database: str = Field(default="tumorboard", description="Workflow database name")
    workflow_collection: str = Field(
        default="workflows",
        description="Collection holding one workflow document per patient (_key = patient id)"
    )
    evaluation_database: str = Field(
        default="tumorboard_evaluations",
        description="Database holding participants and evaluations"
    )

    # Baseline store (second, independent connection)
    baseline_arango_host: str = Field(
        default="",
        description="ArangoDB host for baseline recommendations (defaults to arango_host)"
    )
    baseline_database: str = Field(default="baseline", description="Baseline database name")
    baseline_collection: str = Field(
        default="baseline_recommendations",
        description="Collection of baseline recommendations keyed by patient and model"
    )
    baseline_model_tag: str = Field(
        default="gpt-4o",
        description="Generating-model tag of the baseline recommendation to show"
    )

    # Workflow result files
    batch_results_path: str = Field(
        default="../data/batch_results",
        description="Root directory of per-patient workflow result files"
    )
    patient_ids: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Patient ids known to the workflow store"
    )

    # Record resolution
    cache_ttl_seconds: float = Field(
        default=300.0,
        ge=0,
        description="Lifetime of the resolved patient record cache"
    )
    resolver_max_workers: int = Field(
        default=4,
        ge=1,
        description="Worker threads used when resolving all patients"
    )
    serve_degraded_records: bool = Field(
        default=False,
        description="Serve file-only records when the workflow store is unavailable"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="Log output format"
    )

    @field_validator("patient_ids", mode="before")
    @classmethod
    def split_patient_ids(cls, v):
        """Accept a comma-separated string as well as a JSON list."""
        if isinstance(v, str):
            if v.strip().startswith("["):
                return [str(item) for item in json.loads(v)]
            return [part.strip() for part in v.split(",") if part.strip()]
        return [str(item) for item in v]

    @property
    def arango_username(self) -> str:
        """Get ArangoDB username (maps from ARANGODB_USERNAME env var)."""
        return self.ARANGODB_USERNAME

    @property
    def arango_password(self) -> str:
        """Get ArangoDB password (maps from ARANGODB_PASSWORD env var)."""
        return self.ARANGODB_PASSWORD

    @property
    def workflow_store_configured(self) -> bool:
        """Whether the primary workflow store should be consulted."""
        return bool(self.arango_host)

    @property
    def baseline_host(self) -> str:
        """Host of the baseline store, falling back to the primary host."""
        return self.baseline_arango_host or self.arango_host

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    def get_safe_config_dict(self) -> dict:
        """Return configuration dict with secrets redacted for logging."""
        config = self.model_dump()
        # Redact sensitive values
        if config.get("ARANGODB_PASSWORD"):
            config["ARANGODB_PASSWORD"] = "***REDACTED***"
        return config


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for the application lifetime.
    Use dependency injection in FastAPI routes for testability.
    """
    return Settings()
