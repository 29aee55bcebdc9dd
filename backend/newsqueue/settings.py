from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
    )

    app_name: str = "newsqueue"
    environment: str = Field(default="local", validation_alias=AliasChoices("ENVIRONMENT", "NEWSQUEUE_ENVIRONMENT"))
    database_url: str = Field(
        default="postgresql+asyncpg://postgres:postgres@db:5432/newsqueue",
        validation_alias=AliasChoices("DATABASE_URL", "NEWSQUEUE_DATABASE_URL"),
    )

    # Queue behaviour
    queue_ttl_hours: int = Field(default=48, validation_alias=AliasChoices("QUEUE_TTL_HOURS", "NEWSQUEUE_QUEUE_TTL_HOURS"))
    stale_selected_hours: int = Field(default=24, validation_alias=AliasChoices("STALE_SELECTED_HOURS", "NEWSQUEUE_STALE_SELECTED_HOURS"))
    distribution_window_hours: int = Field(default=72, validation_alias=AliasChoices("DISTRIBUTION_WINDOW_HOURS", "NEWSQUEUE_DISTRIBUTION_WINDOW_HOURS"))
    default_balanced_max_items: int = Field(default=10, validation_alias=AliasChoices("DEFAULT_BALANCED_MAX_ITEMS", "NEWSQUEUE_DEFAULT_BALANCED_MAX_ITEMS"))
    neutral_score: float = Field(default=5.0, validation_alias=AliasChoices("NEUTRAL_SCORE", "NEWSQUEUE_NEUTRAL_SCORE"))
    manual_only_source_types: list[str] = Field(
        default_factory=lambda: ["webcrawl"],
        validation_alias=AliasChoices("MANUAL_ONLY_SOURCE_TYPES", "NEWSQUEUE_MANUAL_ONLY_SOURCE_TYPES"),
    )
    synthesis_heading_markers: list[str] = Field(
        default_factory=lambda: ["mattes synthese", "mattes' synthese", "synthszr take"],
        validation_alias=AliasChoices("SYNTHESIS_HEADING_MARKERS", "NEWSQUEUE_SYNTHESIS_HEADING_MARKERS"),
    )

    # Upstream collaborators
    candidate_source_url: str | None = Field(default=None, validation_alias=AliasChoices("CANDIDATE_SOURCE_URL", "NEWSQUEUE_CANDIDATE_SOURCE_URL"))
    uniqueness_service_url: str | None = Field(default=None, validation_alias=AliasChoices("UNIQUENESS_SERVICE_URL", "NEWSQUEUE_UNIQUENESS_SERVICE_URL"))
    upstream_api_key: str | None = Field(default=None, validation_alias=AliasChoices("UPSTREAM_API_KEY", "NEWSQUEUE_UPSTREAM_API_KEY"))
    upstream_timeout_sec: float = Field(default=15.0, validation_alias=AliasChoices("UPSTREAM_TIMEOUT_SEC", "NEWSQUEUE_UPSTREAM_TIMEOUT_SEC"))

    # Background work
    scheduler_enabled: bool = Field(default=True, validation_alias=AliasChoices("SCHEDULER_ENABLED", "NEWSQUEUE_SCHEDULER_ENABLED"))
    expire_interval_minutes: int = Field(default=15, validation_alias=AliasChoices("EXPIRE_INTERVAL_MINUTES", "NEWSQUEUE_EXPIRE_INTERVAL_MINUTES"))
    import_cron_hour: int = Field(default=6, validation_alias=AliasChoices("IMPORT_CRON_HOUR", "NEWSQUEUE_IMPORT_CRON_HOUR"))
    redis_url: str = Field(default="redis://redis:6379/0", validation_alias=AliasChoices("REDIS_URL", "NEWSQUEUE_REDIS_URL"))
    celery_enabled: bool = Field(default=True, validation_alias=AliasChoices("CELERY_ENABLED", "NEWSQUEUE_CELERY_ENABLED"))

    @property
    def async_database_url(self) -> str:
        if self.database_url.startswith("postgresql+"):
            return self.database_url
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.database_url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
