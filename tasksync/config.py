"""Application configuration from environment variables."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "tasksync"
    APP_VERSION: str = "1.0.0"

    # Local key-value store
    DATABASE_URL: str = "sqlite+aiosqlite:///./tasksync.db"
    DATABASE_ECHO: bool = False
    LOCAL_STORE_QUOTA_CHARS: int = 5_000_000  # same order as a browser localStorage quota
    STORAGE_KEY_PREFIX: str = "tasksync"

    # Storage modes
    DEFAULT_STORAGE_MODE: str = "local"  # local, file or github
    BACKLOG_FILENAME: str = "BACKLOG.md"

    # User/project config store
    CONFIG_DIR: Optional[str] = None  # defaults to ~/.tasksync
    PROJECT_CONFIG_TTL_HOURS: int = 24
    PROMPT_SNOOZE_DAYS: int = 7

    # GitHub Integration
    GITHUB_TOKEN: Optional[str] = None  # overrides the token saved in the config store
    GITHUB_USERNAME: Optional[str] = None
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_API_VERSION: str = "2022-11-28"
    GITHUB_TIMEOUT_SECONDS: float = 30.0
    GITHUB_MANAGED_LABEL: str = "tasksync"
    GITHUB_PAGE_SIZE: int = 100

    # Caller-side retry policy
    RETRY_ATTEMPTS: int = 3
    RETRY_MIN_WAIT_SECONDS: float = 1.0
    RETRY_MAX_WAIT_SECONDS: float = 10.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # json or text

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
