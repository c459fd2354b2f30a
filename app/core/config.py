import logging
import os
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL_SECONDS = 30


def _get_version() -> str:
    """Read version from pyproject.toml or environment variable."""
    # First check environment variable (for Docker/CI overrides)
    if env_version := os.getenv("APP_VERSION"):
        return env_version

    # Try to read from pyproject.toml
    try:
        pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            content = pyproject_path.read_text()
            for line in content.split("\n"):
                if line.startswith("version"):
                    # Parse: version = "0.1.0"
                    return line.split("=")[1].strip().strip('"').strip("'")
    except OSError:
        pass

    return "0.0.0-dev"


# Application version - read from pyproject.toml, env var, or default to dev
APP_VERSION = _get_version()


class Settings(BaseSettings):
    # CrowdSec Local API
    CROWDSEC_LAPI_URL: str = "http://localhost:8080"
    CROWDSEC_USER: str = ""
    CROWDSEC_PASSWORD: str = ""
    LAPI_TIMEOUT_SECONDS: float = 10.0
    LAPI_STATUS_TIMEOUT_SECONDS: float = 3.0

    # Database
    DB_PATH: str = "./database/crowdsec.db"
    # Full SQLAlchemy async URL, takes precedence over DB_PATH when set
    DATABASE_URL_OVERRIDE: str | None = Field(default=None, validation_alias="DATABASE_URL")
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40

    # Retention period, e.g. "30d", "3w", "2m", "1y". Unset disables cleanup.
    DATA_RETENTION: str | None = None

    # Sync
    SYNC_INTERVAL_SECONDS: int = DEFAULT_SYNC_INTERVAL_SECONDS

    # Release check
    VERSION_CHECK_ENABLED: bool = True
    VERSION_CHECK_INTERVAL_SECONDS: int = 24 * 60 * 60

    # Optional bearer password for the REST API
    API_PASSWORD: str | None = None

    # App
    APP_NAME: str = "CrowdSec Monitor"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return f"sqlite+aiosqlite:///{self.DB_PATH}"

    @field_validator("SYNC_INTERVAL_SECONDS", mode="before")
    @classmethod
    def validate_sync_interval(cls, v):
        """Fall back to the default interval instead of refusing to start."""
        try:
            interval = int(v)
        except (TypeError, ValueError):
            logger.warning(
                "Invalid SYNC_INTERVAL_SECONDS %r, using default of %ss",
                v,
                DEFAULT_SYNC_INTERVAL_SECONDS,
            )
            return DEFAULT_SYNC_INTERVAL_SECONDS

        if interval < 1:
            logger.warning(
                "SYNC_INTERVAL_SECONDS must be positive (got %s), using default of %ss",
                interval,
                DEFAULT_SYNC_INTERVAL_SECONDS,
            )
            return DEFAULT_SYNC_INTERVAL_SECONDS
        return interval

    @field_validator("DATA_RETENTION", "API_PASSWORD", "DATABASE_URL_OVERRIDE", mode="before")
    @classmethod
    def empty_string_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"LOG_LEVEL must be a standard logging level, got {v!r}")
        return level

    def missing_credentials(self) -> list[str]:
        """Return the names of required upstream settings that are not set."""
        required = {
            "CROWDSEC_LAPI_URL": self.CROWDSEC_LAPI_URL,
            "CROWDSEC_USER": self.CROWDSEC_USER,
            "CROWDSEC_PASSWORD": self.CROWDSEC_PASSWORD,
        }
        return [name for name, value in required.items() if not value or not value.strip()]


settings = Settings()
