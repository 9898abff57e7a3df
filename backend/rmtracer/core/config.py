from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    APP_NAME: str = "RM Tracer Station"
    VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    # Local persisted storage (offline queue, cached session, reference data)
    DATABASE_URL: str = "sqlite:///./rmtracer_station.db"

    # Hosted backend (Supabase project: patients, tracer, locations, staff, profiles)
    SUPABASE_URL: Optional[str] = None
    SUPABASE_ANON_KEY: Optional[str] = None
    BACKEND_TIMEOUT: float = 10.0

    # Storage keys
    QUEUE_STORAGE_KEY: str = "offline_scan_queue"
    DEAD_LETTER_STORAGE_KEY: str = "offline_scan_dead_letters"
    PROFILE_STORAGE_KEY: str = "app_user_profile"
    REFERENCE_STORAGE_KEY: str = "reference_data"

    # Sync engine
    SYNC_DEBOUNCE_SECONDS: float = 2.0
    SYNC_MAX_ATTEMPTS: Optional[int] = None  # None = retry on every trigger, forever
    CONNECTIVITY_PROBE_INTERVAL: float = 15.0  # 0 disables the background probe

    # Notifications
    TOAST_DURATION_MS: int = 5000
    UNDO_TIMEOUT_MS: int = 5000

    class Config:
        env_file = ".env"


settings = Settings()
