"""
Application configuration using pydantic-settings.
"""
import json
import logging
import secrets
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import field_validator, model_validator, ValidationInfo
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Insecure default that should never be used in production
_INSECURE_DEFAULT_SECRET = "your-super-secret-key-change-in-production"
DEFAULT_SQLITE_URL = "sqlite:////data/widget_sync.db"

# Define the project root directory
PROJECT_ROOT = Path(__file__).parent.parent.parent.resolve()

# Serve-time truncation applied when an integration declares no serve_limits
DEFAULT_SERVE_LIMITS = {"items": "max_items"}


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = "Widget Sync Service"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"

    # API
    api_v1_prefix: str = "/api/v1"
    enable_cors: bool = False
    cors_origins: Optional[List[str]] = None

    # Database Configuration
    # Primary database URL (defaults to SQLite)
    database_url: str = DEFAULT_SQLITE_URL

    # PostgreSQL override (optional - for advanced users)
    postgres_url: Optional[str] = None

    # Individual PostgreSQL components (optional - used in Docker)
    postgres_user: Optional[str] = None
    postgres_password: Optional[str] = None
    postgres_db: Optional[str] = None
    postgres_host: Optional[str] = None
    postgres_port: Optional[int] = None

    # Security
    secret_key: str = ""  # Must be set via environment variable
    # Retired secrets still accepted for decryption until credentials are
    # re-encrypted with `widget-sync-admin credentials rotate`.
    # JSON list or comma-separated.
    previous_secret_keys: Optional[str] = None

    # Redis Configuration (shared locks/dedupe and Celery)
    redis_url: Optional[str] = None  # e.g., "redis://localhost:6379/0"

    # Celery Configuration
    celery_broker_url: Optional[str] = None  # e.g., "redis://localhost:6379/0"
    celery_result_backend: Optional[str] = None  # e.g., "redis://localhost:6379/0"
    celery_task_serializer: str = "json"
    celery_result_serializer: str = "json"
    celery_accept_content: List[str] = ["json"]
    celery_timezone: str = "UTC"
    celery_enable_utc: bool = True

    # Scheduler / poller
    # "inline" runs fetches on an in-process asyncio worker pool,
    # "celery" hands them to Celery workers and uses Celery beat for scans.
    scheduler_backend: Literal["inline", "celery"] = "inline"
    sync_max_concurrency: int = 4
    sync_max_attempts: int = 3
    sync_backoff_seconds: float = 1.0
    sync_backoff_max_seconds: float = 60.0
    sync_debounce_seconds: int = 10
    sync_lock_ttl_seconds: int = 300
    sync_scan_interval_seconds: int = 30
    default_pull_interval_seconds: int = 300

    # Fetchers / OAuth
    fetch_timeout_seconds: float = 15.0
    oauth_refresh_margin_seconds: int = 300
    oauth_state_ttl_seconds: int = 600
    credential_rotation_batch_size: int = 100

    # Application configuration
    app_port: int = 8000

    # Logging
    log_level: str = "INFO"
    log_dir: str = "/data/logs"
    log_sql_requests: bool = False

    # Rate limiting
    rate_limiting_enabled: bool = True
    rate_limit_storage_uri: str = "memory://"
    webhook_rate_limit: str = "120/minute"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def database_type(self) -> str:
        """Detect database type from configuration."""
        # Check if PostgreSQL override is configured
        if self.postgres_url or (self.postgres_host and self.postgres_user):
            return "postgresql"

        # Check if primary database URL is PostgreSQL
        if self.database_url.startswith(("postgresql", "postgres")):
            return "postgresql"

        # Default to SQLite
        return "sqlite"

    @property
    def effective_database_url(self) -> str:
        """Get the effective database URL based on configuration hierarchy."""
        # Priority 1: Explicit PostgreSQL URL
        if self.postgres_url:
            return self.postgres_url

        # Priority 2: PostgreSQL components (Docker environment)
        if self.postgres_host and self.postgres_user and self.postgres_db:
            password = self.postgres_password or ""
            port = self.postgres_port or 5432
            return f"postgresql://{self.postgres_user}:{password}@{self.postgres_host}:{port}/{self.postgres_db}"

        # Priority 3: Primary database URL (defaults to SQLite)
        return self.database_url

    @property
    def retired_secret_keys(self) -> List[str]:
        """PREVIOUS_SECRET_KEYS as a list, without the current SECRET_KEY."""
        raw = (self.previous_secret_keys or "").strip()
        if not raw:
            return []
        keys = raw.split(",")
        if raw.startswith("["):
            try:
                keys = json.loads(raw)
            except json.JSONDecodeError:
                pass
        cleaned = [str(key).strip() for key in keys]
        return [key for key in cleaned if key and key != self.secret_key]

    @field_validator('secret_key')
    @classmethod
    def validate_secret_key(cls, v: str, info: ValidationInfo) -> str:
        """Validate SECRET_KEY is set and secure."""
        if not v:
            env = info.data.get('environment', 'development')
            if env == 'production':
                raise ValueError(
                    "SECRET_KEY must be set in production! "
                    "Generate one with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
                )
            # Development or other environments
            logger.warning(
                "SECRET_KEY not set! Using auto-generated key for development. "
                "This key will change on restart and stored credentials will no longer decrypt. "
                "Set SECRET_KEY in .env for persistence."
            )
            return secrets.token_urlsafe(32)

        if v == _INSECURE_DEFAULT_SECRET:
            logger.warning(
                "Using insecure default SECRET_KEY! "
                "Generate a secure key with: python -c 'import secrets; print(secrets.token_urlsafe(32))' or openssl rand -hex 32"
            )
        elif len(v) < 32:
            logger.warning(
                f"SECRET_KEY is only {len(v)} characters long. "
                "Recommend at least 32 characters for security."
            )

        return v

    @field_validator('cors_origins', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from string or list."""
        if v is None:
            return []

        if isinstance(v, str):
            if not v.strip():
                return []
            if v.strip().startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            # Handle comma-separated string from env
            return [origin.strip() for origin in v.split(',') if origin.strip()]

        if isinstance(v, list):
            return v

        return []

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate primary database URL."""
        if not v or not v.strip():
            logger.info(
                "DATABASE_URL not provided; defaulting to SQLite at %s", DEFAULT_SQLITE_URL
            )
            return DEFAULT_SQLITE_URL

        url = v.strip()
        if url.startswith(("sqlite", "postgresql", "postgres")):
            return url

        logger.warning(
            "DATABASE_URL uses unsupported or untested dialect '%s'. Proceed with caution.",
            url.split("://", 1)[0]
        )
        return url

    @field_validator('postgres_url')
    @classmethod
    def validate_postgres_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate PostgreSQL override URL."""
        if not v or not v.strip():
            return None

        url = v.strip()
        if not url.startswith(("postgresql", "postgres")):
            raise ValueError(
                "POSTGRES_URL must be a PostgreSQL URL (postgresql:// or postgres://)"
            )
        return url

    @field_validator('celery_broker_url', 'celery_result_backend')
    @classmethod
    def validate_celery_urls(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        """Auto-configure Celery from redis_url if not explicitly set."""
        if v:
            return v

        redis_url = info.data.get('redis_url')
        if redis_url:
            logger.info(
                f"{info.field_name.upper()} not set. Defaulting to REDIS_URL"
            )
            return redis_url

        return v

    @field_validator(
        'sync_max_concurrency',
        'sync_max_attempts',
        'sync_lock_ttl_seconds',
        'sync_scan_interval_seconds',
        'default_pull_interval_seconds',
        'credential_rotation_batch_size',
    )
    @classmethod
    def validate_positive(cls, v: int, info: ValidationInfo) -> int:
        """Scheduler sizes and intervals must be positive."""
        if v <= 0:
            raise ValueError(f"{info.field_name.upper()} must be positive")
        return v

    @field_validator('sync_debounce_seconds', 'oauth_refresh_margin_seconds')
    @classmethod
    def validate_non_negative(cls, v: int, info: ValidationInfo) -> int:
        if v < 0:
            raise ValueError(f"{info.field_name.upper()} must not be negative")
        return v

    @model_validator(mode='after')
    def validate_production_settings(self) -> 'Settings':
        """Comprehensive production validation."""
        if self.environment != "production":
            return self

        errors = []
        warnings = []

        if self.debug:
            errors.append("DEBUG must be False in production.")

        if self.enable_cors and not self.cors_origins:
            errors.append("CORS_ORIGINS must be configured when CORS is enabled.")

        if self.scheduler_backend == "celery" and not self.celery_broker_url:
            errors.append(
                "SCHEDULER_BACKEND=celery requires CELERY_BROKER_URL (or REDIS_URL)."
            )

        if not self.redis_url:
            warnings.append(
                "REDIS_URL not configured. Poll dedupe and execution locks are per-process only."
            )

        if self.database_url.startswith("sqlite") and not (self.postgres_url or (self.postgres_host and self.postgres_user and self.postgres_db)):
            warnings.append(
                "Using SQLite in production. Concurrent poll writers will serialize on the database lock."
            )

        for warning in warnings:
            logger.warning(f"Production configuration warning: {warning}")

        if errors:
            error_message = "Production configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_message)

        return self


# Create settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get settings instance."""
    return settings
