from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Shared region
    SHARED_ROOT: str = "/data/shared"  # parent of provisioned namespaces
    LOCAL_STATE_DIR: str = "/data/local"
    PERSIST_ENABLED: bool = True

    # Item store
    ITEM_STORE_PATH: str = "/data/habits.json"
    TIMEZONE: str = "UTC"

    # Sync Logic
    SYNC_INTERVAL_SECONDS: int = 60
    RELOAD_WEBHOOK_URLS: List[str] = []

    # System
    LOG_LEVEL: str = "INFO"
    HTTP_SERVER_ENABLED: bool = False
    HTTP_SERVER_PORT: int = 8080
    HTTP_SERVER_TOKEN: Optional[str] = None
    REQUEST_TIMEOUT_SECONDS: int = 10

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

settings = Settings()
