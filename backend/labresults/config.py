"""Application configuration using pydantic-settings."""

import warnings
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


# Sentinel value that indicates the remote record API was never configured
_UNCONFIGURED_OPENMRS_URL = "http://localhost:8080/openmrs"

# Find .env file: check backend dir first, then project root
_BACKEND_DIR = Path(__file__).parent.parent
_PROJECT_ROOT = _BACKEND_DIR.parent
_ENV_FILE = _BACKEND_DIR / ".env" if (_BACKEND_DIR / ".env").exists() else _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    The remote clinical record API defaults to a local development instance.
    Page size, prefetch window and cache size match what the lab results
    engine expects; override them only when the remote API demands it.
    """

    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Remote clinical record API (OpenMRS with the FHIR2 module)
    openmrs_base_url: str = _UNCONFIGURED_OPENMRS_URL
    request_timeout: float = 30.0

    # Observation paging
    observation_page_size: int = 100
    observation_prefetch_pages: int = 6

    # Number of patients whose reconstructed results are kept in memory
    results_cache_size: int = 3

    # Application
    cors_origins: str = "http://localhost:3000"
    log_level: str = "INFO"
    debug: bool = False

    def model_post_init(self, __context) -> None:
        """Warn about an unconfigured remote API."""
        if self.openmrs_base_url == _UNCONFIGURED_OPENMRS_URL:
            warnings.warn(
                "OPENMRS_BASE_URL not configured! Using local development instance.",
                UserWarning,
                stacklevel=2,
            )


settings = Settings()
