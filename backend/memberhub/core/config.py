from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Optional


class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "MemberHub"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # Database settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./memberhub.db"
    DATABASE_ECHO: bool = False

    # External roster (spreadsheet) settings
    ROSTER_SPREADSHEET_ID: str = ""  # empty = mock/offline mode
    ROSTER_RANGE: str = "A:Z"
    ROSTER_API_BASE_URL: str = "https://sheets.googleapis.com/v4"
    ROSTER_ACCESS_TOKEN: str = ""
    ROSTER_API_KEY: str = ""
    ROSTER_TIMEOUT: float = 30.0
    ROSTER_HEADER_ROWS: int = 1
    ROSTER_PAYMENT_MARKER: str = "IBAN"

    # Retry settings (seconds)
    SYNC_RETRY_MAX_ATTEMPTS: int = 3
    SYNC_RETRY_BASE_DELAY: float = 1.0
    SYNC_RETRY_MAX_DELAY: float = 10.0
    SYNC_RETRY_MULTIPLIER: float = 2.0
    SYNC_RETRY_FAIL_FAST: bool = False  # give up on non-retryable roster errors

    # Circuit breaker settings
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_RESET_TIMEOUT: float = 60.0

    # Sync run settings
    SYNC_INTERVAL_MINUTES: int = 0  # 0 disables the scheduler
    SYNC_RUN_TIMEOUT_SECONDS: Optional[float] = None
    SYNC_PUSH_PENDING: bool = True
    SYNC_HISTORY_SIZE: int = 20

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v):
        if not v:
            raise ValueError("DATABASE_URL is required")
        return v

    @field_validator(
        "SYNC_RETRY_MAX_ATTEMPTS", "CIRCUIT_FAILURE_THRESHOLD", "SYNC_HISTORY_SIZE"
    )
    @classmethod
    def validate_positive_int(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator(
        "SYNC_RETRY_BASE_DELAY", "SYNC_RETRY_MAX_DELAY", "SYNC_RETRY_MULTIPLIER",
        "CIRCUIT_RESET_TIMEOUT", "ROSTER_TIMEOUT"
    )
    @classmethod
    def validate_positive_float(cls, v):
        if v <= 0:
            raise ValueError("must be greater than 0")
        return v

    @field_validator("ROSTER_HEADER_ROWS", "SYNC_INTERVAL_MINUTES")
    @classmethod
    def validate_non_negative(cls, v):
        if v < 0:
            raise ValueError("must not be negative")
        return v

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()
