from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./ember.db"
    LOG_LEVEL: str = "INFO"

    SECRET_KEY: str = "change-this-secret-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7  # 7 days

    VAPID_PUBLIC_KEY: str | None = None
    VAPID_PRIVATE_KEY: str | None = None
    VAPID_CLAIM_EMAIL: str = "noreply@embersociety.com"

    CORS_ORIGINS: str = "http://localhost:5173"

    UPLOAD_DIR: str = "./uploads"
    MAX_UPLOAD_BYTES: int = 50 * 1024 * 1024

    RUN_EVENT_REMINDERS: bool = True
    EVENT_REMINDER_INTERVAL_MINUTES: int = 60
    # Equal to the interval so consecutive sweeps tile the timeline;
    # EventReminderLog keeps late or repeated sweeps from double-notifying.
    EVENT_REMINDER_TOLERANCE_MINUTES: int = 60

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

@lru_cache
def get_settings():
    return Settings()
