from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, model_validator
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./staysync.db",
        alias="DATABASE_URL"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # CORS - Frontend URLs from environment (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173",
        alias="ALLOWED_ORIGINS"
    )

    # ==============================================
    # Calendar Sync Settings
    # ==============================================
    # Shared secret for the cron tick and manual sync trigger.
    # Distinct from user sessions.
    sync_secret: str = Field(default="", alias="SYNC_SECRET")

    # Max connections claimed per tick (bounds worst-case tick duration)
    sync_batch_size: int = Field(default=50, alias="SYNC_BATCH_SIZE")

    # Concurrent per-connection syncs within one tick
    sync_max_workers: int = Field(default=4, alias="SYNC_MAX_WORKERS")

    # Consecutive failures before a connection moves to "error"
    sync_error_threshold: int = Field(default=5, alias="SYNC_ERROR_THRESHOLD")

    # Cadence for new connections and the lower bound owners may pick
    sync_default_frequency_minutes: int = Field(default=30, alias="SYNC_DEFAULT_FREQUENCY_MINUTES")
    sync_min_frequency_minutes: int = Field(default=15, alias="SYNC_MIN_FREQUENCY_MINUTES")

    # A sync marker older than this is treated as abandoned (crashed worker)
    sync_stale_after_minutes: int = Field(default=15, alias="SYNC_STALE_AFTER_MINUTES")

    # Feed fetching
    feed_timeout_seconds: float = Field(default=30.0, alias="FEED_TIMEOUT_SECONDS")
    feed_max_bytes: int = Field(default=5_000_000, alias="FEED_MAX_BYTES")
    feed_user_agent: str = Field(default="StaySync/1.0", alias="FEED_USER_AGENT")

    # Which price_override wins when several cover the same night:
    # "latest_created" or "narrowest_interval"
    price_override_tie_break: str = Field(default="latest_created", alias="PRICE_OVERRIDE_TIE_BREAK")

    # Read-only iCal export
    export_base_url: str = Field(default="", alias="EXPORT_BASE_URL")
    export_prodid: str = Field(default="-//StaySync//Booking Calendar//EN", alias="EXPORT_PRODID")

    @field_validator('price_override_tie_break')
    @classmethod
    def validate_tie_break(cls, v: str) -> str:
        if v not in ("latest_created", "narrowest_interval"):
            raise ValueError("PRICE_OVERRIDE_TIE_BREAK must be 'latest_created' or 'narrowest_interval'")
        return v

    @field_validator('sync_error_threshold', 'sync_batch_size', 'sync_max_workers', 'sync_stale_after_minutes')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @model_validator(mode='after')
    def validate_sync_secret(self):
        """SYNC_SECRET must be set and strong in production"""
        if self.is_production and len(self.sync_secret) < 32:
            raise ValueError("SYNC_SECRET must be at least 32 characters long in production")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origins(self) -> List[str]:
        """
        Parse allowed origins from comma-separated string.
        Returns a list suitable for CORSMiddleware.
        """
        if not self.allowed_origins:
            return ["http://localhost:5173"]

        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)

        return origins if origins else ["http://localhost:5173"]

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
