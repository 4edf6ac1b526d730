from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    APP_NAME: str = "FieldSync Offline Core"
    VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "sqlite:///./fieldsync.db"

    # Remote authority
    REMOTE_API_URL: Optional[str] = None
    REMOTE_TIMEOUT: float = 10.0

    # Sync queue
    SYNC_MAX_ATTEMPTS: int = 5  # transient failures before an item is parked as failed
    SYNC_MAX_CONFLICT_ROUNDS: int = 3  # re-submissions of one item per drain after a rewrite

    # Connectivity
    CONNECTIVITY_DEBOUNCE_SECONDS: float = 2.0

    # Offline authentication
    SESSION_CACHE_DAYS: int = 7

    class Config:
        env_file = ".env"


settings = Settings()
