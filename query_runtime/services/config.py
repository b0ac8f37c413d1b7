from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from pydantic import Field, model_validator


class Settings(BaseSettings):
    """
    Settings class that pulls from environment variables first,
    then from .env.query-runtime file, and falls back to defaults.
    """
    query_api_url: str = Field("http://localhost:5000/api", validation_alias="QUERY_API_URL")
    request_timeout_seconds: float = Field(30.0, validation_alias="QUERY_API_TIMEOUT_SECONDS")

    # Result cache
    cache_max_size: int = Field(100, validation_alias="QUERY_CACHE_MAX_SIZE")
    cache_ttl_seconds: int = Field(300, validation_alias="QUERY_CACHE_TTL_SECONDS")

    # Execution tracking
    history_max_size: int = Field(50, validation_alias="QUERY_HISTORY_MAX_SIZE")
    coalesce_in_flight: bool = Field(True, validation_alias="QUERY_COALESCE_IN_FLIGHT")

    # Logging
    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")
    log_json: bool = Field(True, validation_alias="LOG_JSON")

    @model_validator(mode="after")
    def process_configs(self) -> 'Settings':
        # 1. Endpoint paths are appended with a leading slash
        self.query_api_url = self.query_api_url.rstrip("/")

        # 2. Size budgets and TTLs must leave room for at least one entry
        for name in ("cache_max_size", "cache_ttl_seconds", "history_max_size"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be positive")

        return self

    model_config = SettingsConfigDict(
        # Try different locations for the env file
        env_file=(".env", ".env.query-runtime"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
