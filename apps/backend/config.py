"""
Ganttium - Configuration
========================
Environment-based settings using pydantic-settings.
"""

from functools import lru_cache
from typing import List, Optional
import sys

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEV_ORIGINS = ["http://localhost:3000", "http://localhost:5173"]

APP_VERSION = "1.0.0"

WEAK_SECRETS = {"secret", "changeme", "change-me", "your-secret-key-change-in-production"}


def resolve_database_url(url: str) -> str:
    """
    Pick the async driver for a database URL.

    Bare ``postgres://`` / ``postgresql://`` URLs go through asyncpg and
    plain SQLite URLs through aiosqlite. URLs that already name a driver
    are returned unchanged.
    """
    if url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    if url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + url[len("sqlite://"):]
    return url


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Runtime Configuration
    # ==========================================================================
    environment: str = Field(
        default="production",
        description="'development', 'test' or 'production'"
    )
    log_level: str = Field(default="INFO")
    debug: bool = Field(default=False)

    # ==========================================================================
    # Database Configuration
    # ==========================================================================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/ganttium.db",
        description="SQLAlchemy URL; postgres:// and sqlite:// are mapped to async drivers"
    )
    force_sqlite: bool = Field(
        default=False,
        description="Ignore DATABASE_URL and use the local SQLite file"
    )

    # ==========================================================================
    # Session & Authentication
    # ==========================================================================
    session_secret: str = Field(..., description="Signing key for session tokens (required)")
    session_cookie_name: str = Field(default="sessionId")
    session_max_age_seconds: int = Field(default=7 * 24 * 3600, ge=60)
    bcrypt_rounds: int = Field(default=12, ge=10, le=15)

    login_rate_limit: int = Field(default=5, ge=1)
    login_rate_window_seconds: int = Field(default=15 * 60, ge=1)
    api_rate_limit_per_minute: int = Field(
        default=600,
        ge=0,
        description="Per-client API request budget; 0 disables the middleware"
    )

    # ==========================================================================
    # CORS
    # ==========================================================================
    allowed_origins: str = Field(
        default="",
        description="Comma-separated list of origins allowed to call the API"
    )

    # ==========================================================================
    # Redis Configuration
    # ==========================================================================
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_enabled: bool = Field(default=True)

    # ==========================================================================
    # Twilio SMS
    # ==========================================================================
    twilio_account_sid: Optional[str] = Field(default=None)
    twilio_auth_token: Optional[str] = Field(default=None)
    twilio_phone_number: Optional[str] = Field(default=None)
    twilio_api_base: str = Field(default="https://api.twilio.com")

    # ==========================================================================
    # Exchange Rates
    # ==========================================================================
    exchange_rate_url: str = Field(
        default="https://www.ecb.europa.eu/stats/eurofxref/eurofxref-daily.xml",
        description="ECB daily reference rates (EUR base)"
    )
    exchange_sync_enabled: bool = Field(default=True)
    exchange_sync_hour: int = Field(default=17, ge=0, le=23)
    exchange_sync_timezone: str = Field(default="Europe/Berlin")
    run_exchange_sync_on_startup: bool = Field(default=True)
    exchange_sync_startup_delay_seconds: float = Field(default=5.0, ge=0)

    # ==========================================================================
    # Uploads
    # ==========================================================================
    upload_dir: str = Field(default="data/uploads")
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, ge=1)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def effective_database_url(self) -> str:
        """Database URL with the async driver resolved."""
        if self.force_sqlite:
            return "sqlite+aiosqlite:///./data/ganttium.db"
        return resolve_database_url(self.database_url)

    @property
    def cors_origins(self) -> List[str]:
        """Whitelisted origins; local dev servers are added outside production."""
        origins = [o.strip().rstrip("/") for o in self.allowed_origins.split(",") if o.strip()]
        if not self.is_production:
            origins.extend(o for o in DEV_ORIGINS if o not in origins)
        return origins

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in {"development", "test", "production"}:
            raise ValueError("ENVIRONMENT must be development, test or production")
        return v

    @field_validator("allowed_origins")
    @classmethod
    def validate_allowed_origins(cls, v: str) -> str:
        """A wildcard origin cannot be combined with credentialed requests."""
        if any(o.strip() == "*" for o in v.split(",")):
            raise ValueError("ALLOWED_ORIGINS must list explicit origins, not '*'")
        return v

    @field_validator("session_secret")
    @classmethod
    def validate_session_secret(cls, v: str) -> str:
        import logging

        if not v or v.strip() == "":
            raise ValueError("SESSION_SECRET must not be empty")

        if v.lower() in WEAK_SECRETS:
            logger = logging.getLogger("config")
            logger.warning(
                "Using a default/weak session secret. Set a strong secret in production!",
                extra={"secret_pattern": "weak"}
            )
            print(
                "WARNING: Using a default/weak SESSION_SECRET. "
                "Set a strong secret in production!",
                file=sys.stderr
            )
        return v

    @field_validator("exchange_sync_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone: {v}") from e
        return v

    @model_validator(mode="after")
    def validate_production_secret(self) -> "Settings":
        """Production deployments need a long, non-default session secret."""
        if self.is_production:
            if len(self.session_secret) < 32:
                raise ValueError(
                    "SESSION_SECRET must be at least 32 characters in production"
                )
            if self.session_secret.lower() in WEAK_SECRETS:
                raise ValueError("SESSION_SECRET must not be a default value in production")
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to avoid re-parsing environment on every call.
    """
    return Settings()
