"""
Central configuration module for RiskMate
Reads and validates environment variables with strict checks for production
"""
import os
import sys
import logging
from typing import Optional, List

from dotenv import load_dotenv

# Only load .env in development
if os.getenv("ENV", "dev").lower() == "dev":
    load_dotenv()

logger = logging.getLogger(__name__)


def _get_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Central configuration class with environment variable validation"""

    # Environment
    ENV: str = os.getenv("ENV", "dev").lower()

    # Database (PostgreSQL in staging/prod, sqlite allowed for dev/test)
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    PORT: int = int(os.getenv("PORT", "8000"))

    # CORS
    CORS_ORIGINS: List[str] = []

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET: Optional[str] = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_API_VERSION: Optional[str] = os.getenv("STRIPE_API_VERSION")

    # Reconciliation sweep
    RECONCILE_SECRET: Optional[str] = os.getenv("RECONCILE_SECRET")
    RECONCILE_DEFAULT_LOOKBACK_HOURS: int = int(os.getenv("RECONCILE_DEFAULT_LOOKBACK_HOURS", "24"))
    RECONCILE_MAX_LOOKBACK_HOURS: int = int(os.getenv("RECONCILE_MAX_LOOKBACK_HOURS", "168"))
    RECONCILE_MAX_SESSIONS: int = int(os.getenv("RECONCILE_MAX_SESSIONS", "1000"))
    RECONCILE_DB_SCAN_LIMIT: int = int(os.getenv("RECONCILE_DB_SCAN_LIMIT", "500"))
    RECONCILE_RATE_LIMIT_MAX: int = int(os.getenv("RECONCILE_RATE_LIMIT_MAX", "5"))
    RECONCILE_RATE_LIMIT_WINDOW_SECONDS: int = int(os.getenv("RECONCILE_RATE_LIMIT_WINDOW_SECONDS", "60"))

    # Monitoring thresholds
    MONITOR_RECONCILE_STALE_HOURS: int = int(os.getenv("MONITOR_RECONCILE_STALE_HOURS", "2"))
    MONITOR_HIGH_SEVERITY_STALE_MINUTES: int = int(os.getenv("MONITOR_HIGH_SEVERITY_STALE_MINUTES", "30"))

    # Supabase (Auth + Storage)
    SUPABASE_URL: Optional[str] = os.getenv("SUPABASE_URL")
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    SUPABASE_JWT_SECRET: Optional[str] = os.getenv("SUPABASE_JWT_SECRET")

    # Storage
    STORAGE_PROVIDER: str = os.getenv("STORAGE_PROVIDER", "local").lower()
    STORAGE_PATH: str = os.getenv("STORAGE_PATH", "./storage")
    STORAGE_BUCKET: str = os.getenv("STORAGE_BUCKET", "exports")

    # Redis (optional, rate limiting falls back to memory)
    REDIS_URL: Optional[str] = os.getenv("REDIS_URL")

    # Background jobs
    ENABLE_SCHEDULER: bool = _get_bool("ENABLE_SCHEDULER", "false")
    EXPORT_WORKER_INTERVAL_SECONDS: int = int(os.getenv("EXPORT_WORKER_INTERVAL_SECONDS", "5"))
    EXPORT_MAX_CONCURRENT: int = int(os.getenv("EXPORT_MAX_CONCURRENT", "3"))
    EXPORT_MAX_FAILURES: int = int(os.getenv("EXPORT_MAX_FAILURES", "3"))

    # Build version (set during build/deploy)
    BUILD_VERSION: str = os.getenv("BUILD_VERSION", "dev")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "").lower()

    def __init__(self):
        """Initialize configuration and validate required variables"""
        self._load_cors_origins()
        self._validate()

    def _load_cors_origins(self):
        """Load CORS origins from environment variable"""
        default_origins = [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]

        cors_env = os.getenv("CORS_ORIGINS", "")
        if cors_env:
            env_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
            self.CORS_ORIGINS = default_origins + env_origins
        else:
            self.CORS_ORIGINS = default_origins

    def _validate(self):
        """Validate required configuration based on environment"""
        errors = []

        if self.ENV not in ["dev", "staging", "prod", "test"]:
            errors.append(f"Invalid ENV value: {self.ENV}. Must be 'dev', 'staging', 'prod' or 'test'")

        if not self.DATABASE_URL:
            if self.ENV in ["staging", "prod"]:
                errors.append("DATABASE_URL is required but not set")
        elif self.ENV in ["staging", "prod"] and not self.DATABASE_URL.startswith("postgresql"):
            errors.append(f"DATABASE_URL must be a PostgreSQL connection string in {self.ENV} (got: {self.DATABASE_URL[:30]}...)")

        if self.RECONCILE_MAX_LOOKBACK_HOURS < 1:
            errors.append("RECONCILE_MAX_LOOKBACK_HOURS must be at least 1")

        if self.ENV in ["staging", "prod"]:
            if self.STRIPE_SECRET_KEY and not self.STRIPE_WEBHOOK_SECRET:
                errors.append(f"STRIPE_WEBHOOK_SECRET is required when Stripe is configured in {self.ENV}")
            if not self.SUPABASE_JWT_SECRET:
                errors.append(f"SUPABASE_JWT_SECRET is required in {self.ENV}")
            if self.STORAGE_PROVIDER == "supabase" and not (self.SUPABASE_URL and self.SUPABASE_SERVICE_ROLE_KEY):
                errors.append("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for supabase storage")

        if errors:
            if self.ENV in ["staging", "prod"]:
                logger.error("=" * 60)
                logger.error("CONFIGURATION VALIDATION FAILED")
                logger.error("=" * 60)
                for error in errors:
                    logger.error(f"  - {error}")
                logger.error("=" * 60)
                sys.exit(1)
            else:
                for error in errors:
                    logger.warning(f"Configuration warning: {error}")

    @property
    def is_dev(self) -> bool:
        return self.ENV in ["dev", "test"]

    @property
    def is_prod(self) -> bool:
        return self.ENV == "prod"

    @property
    def database_url(self) -> str:
        """Database URL with a local sqlite fallback outside staging/prod"""
        return self.DATABASE_URL or "sqlite:///./riskmate.db"


config = Config()
