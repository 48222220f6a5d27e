from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings, read from FLEET_* environment variables or .env"""

    model_config = SettingsConfigDict(env_prefix="FLEET_", env_file=".env", extra="ignore")

    # === Storage ===
    DATABASE_URL: str = "sqlite+aiosqlite:///./fleet.db"
    SQL_ECHO: bool = False
    STORE_TIMEOUT_SECONDS: float = 5.0

    # === Vehicle lock ===
    REDIS_URL: Optional[str] = None
    LOCK_TIMEOUT_SECONDS: float = 10.0
    LOCK_WAIT_SECONDS: float = 5.0

    # === Events ===
    RABBIT_URL: Optional[str] = None

    # === Business rules ===
    AVAILABILITY_CONCURRENCY: int = 10
    CANCELLATION_CUTOFF_MINUTES: int = 60

    # === System ===
    LOG_LEVEL: str = "INFO"
