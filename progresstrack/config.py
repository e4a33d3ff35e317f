from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Persistence
    STORE_PATH: str = "/data/store.json"
    PERSIST_ENABLED: bool = True

    # Tracking
    TICK_INTERVAL_SECONDS: float = 1.0
    AUTOPLAY: bool = True
    AUTO_COMPLETE_ON_END: bool = False

    # Reconciliation
    RECONCILE_POLL_ENABLED: bool = True  # fallback only, change notifications come first
    RECONCILE_POLL_INTERVAL_SECONDS: float = 1.0
    STORE_WATCH_INTERVAL_SECONDS: float = 0.5

    # System
    LOG_LEVEL: str = "INFO"
    HTTP_SERVER_ENABLED: bool = False
    HTTP_SERVER_PORT: int = 8080
    HTTP_SERVER_TOKEN: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

settings = Settings()
