# habitcoach/config.py
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    # ── Database
    DATABASE_URL: str = "sqlite:///./habitcoach.db"  # placeholder; real value lives in .env

    # OpenAI (only used to brief a coach when a user asks for a consultation)
    OPENAI_API_KEY: Optional[str] = None
    LLM_MODEL: str = Field("gpt-4o-mini", env="LLM_MODEL")

    # Weekly assessment cadence
    ASSESSMENT_CADENCE_DAYS: int = Field(7, env="ASSESSMENT_CADENCE_DAYS")

    # Decision persistence: inline retries before handing off to the write queue
    PERSIST_MAX_ATTEMPTS: int = Field(3, env="PERSIST_MAX_ATTEMPTS")
    PERSIST_BACKOFF_SECONDS: float = Field(0.5, env="PERSIST_BACKOFF_SECONDS")

    # Write queue worker
    QUEUE_MAX_ATTEMPTS: int = Field(3, env="QUEUE_MAX_ATTEMPTS")

    # In-process due check (off by default; app launch / cron triggers still work)
    SCHEDULER_ENABLED: bool = Field(False, env="SCHEDULER_ENABLED")
    SCHEDULER_CHECK_EVERY_MIN: int = Field(60, env="SCHEDULER_CHECK_EVERY_MIN")

    # Dev reset
    RESET_DB_ON_STARTUP: bool = Field(False, env="RESET_DB_ON_STARTUP")

    # Admin endpoints
    ADMIN_API_TOKEN: Optional[str] = Field(None, env="ADMIN_API_TOKEN")

    # Debug logging
    HABITCOACH_DEBUG: bool = Field(False, env="HABITCOACH_DEBUG")


    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # ignore unexpected keys instead of erroring
    )

settings = Settings()
