# app/config.py
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    database_url: str = Field("sqlite:///./intake.db", validation_alias="DATABASE_URL")

    openai_api_key: str | None = Field(None, validation_alias="OPENAI_API_KEY")
    openai_base_url: str | None = Field(None, validation_alias="OPENAI_BASE_URL")
    llm_model: str = Field("gpt-4o-mini", validation_alias="LLM_MODEL")

    # Bounds around every completion call
    llm_timeout_seconds: float = Field(30.0, validation_alias="LLM_TIMEOUT_SECONDS")
    llm_max_tokens: int = Field(1000, validation_alias="LLM_MAX_TOKENS")
    llm_max_retries: int = Field(2, validation_alias="LLM_MAX_RETRIES")
    llm_backoff_seconds: float = Field(1.0, validation_alias="LLM_BACKOFF_SECONDS")
    conversational_temperature: float = Field(
        0.7, validation_alias="CONVERSATIONAL_TEMPERATURE"
    )

    checkpoint_backend: str = Field("memory", validation_alias="CHECKPOINT_BACKEND")
    checkpoint_ttl_seconds: int = Field(86400, validation_alias="CHECKPOINT_TTL_SECONDS")
    checkpoint_max_threads: int = Field(10000, validation_alias="CHECKPOINT_MAX_THREADS")

    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
