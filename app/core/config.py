from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str
    DB_POOL_TIMEOUT: int = 5  # seconds

    REDIS_URL: str = "redis://localhost:6379/0"

    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 480  # one station shift

    QUOTA_CACHE_TTL: int = 60  # seconds
    QUOTA_EXPIRY_WARNING_DAYS: int = 3
    LOW_QUOTA_THRESHOLD_PCT: float = 20.0
    CRITICAL_QUOTA_THRESHOLD_PCT: float = 10.0

    LEDGER_LOCK_TIMEOUT: float = 2.0  # seconds
    LEDGER_CAS_RETRIES: int = 3

    REPORT_TIMEZONE: str = "UTC"
    ANALYTICS_CATCH_UP_WINDOW: int = 500

    NOTIFICATION_WEBHOOK_URL: str = "http://localhost:9000/notifications"
    WEBHOOK_TIMEOUT: int = 10
    WEBHOOK_RETRIES: int = 3

    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_BACKEND: str = "redis://localhost:6379/2"

    API_TITLE: str = "Fuel Quota Ledger"
    API_DESCRIPTION: str = "Per-vehicle fuel quota ledger, dispensing transactions and consumption analytics"
    API_VERSION: str = "1.0.0"

    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
