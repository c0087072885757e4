"""Environment-driven settings for fetchers, the store and the orchestrator."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy import make_url

PACKAGE_CONFIG_DIR = Path(__file__).resolve().parent


class Settings(BaseSettings):
    """
    Runtime knobs read from the process environment and ``./.env``.

    Budgets that the orchestrator and fetch engines need live here; per-source
    tuning lives in the pipeline YAML instead.
    """

    # -------------------------------------------------------------------------
    # RUNTIME
    # -------------------------------------------------------------------------
    ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # -------------------------------------------------------------------------
    # EVENT STORE
    # -------------------------------------------------------------------------
    # Unset means the CLI keeps events in memory for the run.
    DATABASE_URL: str | None = None

    # -------------------------------------------------------------------------
    # HTTP AND PROXY FETCHING
    # -------------------------------------------------------------------------
    HTTP_TIMEOUT_S: float = Field(default=15.0, gt=0)
    HTTP_MAX_RETRIES: int = Field(default=3, ge=0)
    HTTP_BACKOFF_BASE_S: float = Field(default=1.0, ge=0)
    HTTP_BACKOFF_CAP_S: float = Field(default=30.0, ge=0)
    POLITENESS_DELAY_S: float = Field(default=0.0, ge=0)
    FETCH_CONCURRENCY: int = Field(default=5, ge=1)
    SCRAPER_PROXY_URL: str | None = None
    SCRAPER_PROXY_API_KEY: SecretStr | None = None

    # -------------------------------------------------------------------------
    # GEOCODING
    # -------------------------------------------------------------------------
    GEOCODER_USER_AGENT: str = "event-ingest"
    GEOCODE_MAX_RPS: float = Field(default=1.0, gt=0)

    # -------------------------------------------------------------------------
    # QUEUE BUDGETS
    # -------------------------------------------------------------------------
    MAX_CYCLES: int = Field(default=10, ge=1)
    MAX_ATTEMPTS: int = Field(default=3, ge=1)
    THROTTLE_PCT: float = Field(default=80.0, gt=0, le=100)
    DISCOVERY_FLOOR: int = Field(default=10, ge=0)
    ANALYSIS_BATCH_SIZE: int = Field(default=30, ge=1)
    EXTRACTION_BATCH_SIZE: int = Field(default=5, ge=1)
    PERSIST_BATCH_SIZE: int = Field(default=20, ge=1)
    REPAIR_BATCH_SIZE: int = Field(default=2, ge=1)
    MAX_IDLE_WAIT_S: float = Field(default=60.0, ge=0)

    PIPELINE_CONFIG_PATH: Path = PACKAGE_CONFIG_DIR / "pipeline.yaml"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @field_validator("LOG_LEVEL")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    def get_psycopg2_params(self) -> dict:
        """
        Split ``DATABASE_URL`` into keyword arguments for ``psycopg2.connect``.

        Percent-encoded credentials are decoded by ``make_url``.

        Raises
        ------
        ValueError
            If no database is configured.
        """
        if not self.DATABASE_URL:
            raise ValueError("DATABASE_URL is not configured")
        url = make_url(self.DATABASE_URL)
        return {
            "host": url.host,
            "port": url.port,
            "dbname": url.database,
            "user": url.username,
            "password": url.password,
        }


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, built once."""
    return Settings()
