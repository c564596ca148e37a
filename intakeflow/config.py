# intakeflow/config.py
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    database_url: str = Field("sqlite:///./intakeflow.db", validation_alias="DATABASE_URL")
    database_echo: bool = Field(False, validation_alias="DATABASE_ECHO")

    openai_api_key: str | None = Field(None, validation_alias="OPENAI_API_KEY")
    openai_base_url: str | None = Field(None, validation_alias="OPENAI_BASE_URL")
    llm_model: str = Field("llama-3.3-70b-versatile", validation_alias="LLM_MODEL")
    llm_timeout_seconds: float = Field(25.0, validation_alias="LLM_TIMEOUT_SECONDS")

    dedup_window_seconds: float = Field(5.0, validation_alias="DEDUP_WINDOW_SECONDS")
    max_consecutive_errors: int = Field(3, validation_alias="MAX_CONSECUTIVE_ERRORS")

    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
