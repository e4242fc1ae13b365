"""
Application Settings and Configuration.

Loads configuration from environment variables and config files.
Covers conversation limits, cache TTLs, ranking weights and the
optional Notion schema source.
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator

from .paths import default_database_url, default_log_directory


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment variables:
        JOURNAL_DATABASE_URL: Database connection URL (default: sqlite in app data dir)
        JOURNAL_IDLE_TIMEOUT_MINUTES: Idle minutes before an entry conversation expires
        JOURNAL_SUGGESTION_CACHE_TTL_SECONDS: Lifetime of cached suggestion rankings
        JOURNAL_NOTION_API_TOKEN: Integration token for the Notion schema source
    """

    # Database Configuration
    database_url: str = Field(
        default_factory=default_database_url,
        alias="JOURNAL_DATABASE_URL",
    )
    sql_echo: bool = Field(default=False, alias="JOURNAL_SQL_ECHO")

    # Application Configuration
    environment: str = Field(default="development", alias="JOURNAL_ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="JOURNAL_LOG_LEVEL")
    log_directory: str = Field(default_factory=default_log_directory, alias="JOURNAL_LOG_DIRECTORY")
    log_retention_days: int = Field(default=30, alias="JOURNAL_LOG_RETENTION_DAYS")

    # Conversation flow
    idle_timeout_minutes: float = Field(default=30.0, alias="JOURNAL_IDLE_TIMEOUT_MINUTES")
    max_input_errors: int = Field(default=3, alias="JOURNAL_MAX_INPUT_ERRORS")
    pending_ttl_hours: float = Field(default=24.0, alias="JOURNAL_PENDING_TTL_HOURS")
    pending_page_size: int = Field(default=5, alias="JOURNAL_PENDING_PAGE_SIZE")

    # Caching
    schema_cache_ttl_seconds: float = Field(default=1200.0, alias="JOURNAL_SCHEMA_CACHE_TTL_SECONDS")
    suggestion_cache_ttl_seconds: float = Field(default=45.0, alias="JOURNAL_SUGGESTION_CACHE_TTL_SECONDS")
    suggestion_top_n: int = Field(default=12, alias="JOURNAL_SUGGESTION_TOP_N")

    # Ranking weights
    frequency_weight: float = Field(default=0.7, alias="JOURNAL_FREQUENCY_WEIGHT")
    freshness_weight: float = Field(default=0.3, alias="JOURNAL_FRESHNESS_WEIGHT")
    global_weight: float = Field(default=0.2, alias="JOURNAL_GLOBAL_WEIGHT")

    # Notion schema source (optional)
    notion_api_token: Optional[str] = Field(default=None, alias="JOURNAL_NOTION_API_TOKEN")
    notion_database_id: Optional[str] = Field(default=None, alias="JOURNAL_NOTION_DATABASE_ID")
    notion_api_version: str = Field(default="2022-06-28", alias="JOURNAL_NOTION_API_VERSION")
    notion_timeout_seconds: int = Field(default=15, alias="JOURNAL_NOTION_TIMEOUT_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )

    @field_validator("notion_api_token", "notion_database_id")
    @classmethod
    def strip_credentials(cls, v):
        """Strip whitespace from Notion credentials to prevent authentication failures."""
        return v.strip() if v else v

    @field_validator("max_input_errors", "pending_page_size", "suggestion_top_n")
    @classmethod
    def at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    def ranking_weights(self):
        """Build the weight set used by the history aggregator."""
        from services.history_aggregator import RankingWeights

        return RankingWeights(
            frequency=self.frequency_weight,
            freshness=self.freshness_weight,
            popularity=self.global_weight,
        )


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def has_notion_credentials() -> bool:
    """
    Check if the Notion schema source is configured.

    Returns:
        True if both token and database id are set
    """
    settings = get_settings()
    return bool(settings.notion_api_token) and bool(settings.notion_database_id)
