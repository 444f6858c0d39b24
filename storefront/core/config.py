"""
Storefront Inventory - Configuration
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    SERVICE_NAME: str = "storefront-inventory"
    SERVICE_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # ── PostgreSQL ────────────────────────────────────────────
    POSTGRES_HOST: str = "storefront-db"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "storefront_db"
    POSTGRES_USER: str = "storefront_user"
    POSTGRES_PASSWORD: str = "storefront_pass"
    DATABASE_URL: str | None = None  # full override, e.g. sqlite+aiosqlite:///./dev.db

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # ── Redis ─────────────────────────────────────────────────
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""

    @property
    def redis_url(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    @property
    def celery_broker_url(self) -> str:
        return self.redis_url

    @property
    def celery_result_backend(self) -> str:
        return self.redis_url

    # ── Auth (tokens are issued by the identity provider) ─────
    JWT_SECRET_KEY: str = "CHANGE_ME_IN_PRODUCTION"
    JWT_ALGORITHM: str = "HS256"

    # ── Reservations ───────────────────────────────────────────
    CART_RESERVATION_DEFAULT_MINUTES: int = 15
    ORDER_RESERVATION_DEFAULT_MINUTES: int = 60
    REAPER_INTERVAL_SECONDS: int = 60

    # ── External triggers ──────────────────────────────────────
    CRON_SECRET: str = ""             # empty: sweep endpoint open (development)
    PAYMENT_WEBHOOK_SECRET: str = ""  # empty: webhook signature not checked

    # ── Slip verification policy ───────────────────────────────
    SLIP_AMOUNT_TOLERANCE_PERCENT: int = 1
    SLIP_DUPLICATE_TOLERANCE_PERCENT: int = 5
    SLIP_RATE_LIMIT_MAX_REQUESTS: int = 100
    SLIP_RATE_LIMIT_WINDOW_SECONDS: int = 60

    # ── Compare-and-set retry ──────────────────────────────────
    OPT_LOCK_MAX_RETRIES: int = 5
    OPT_LOCK_BASE_DELAY_MS: int = 50      # base exponential backoff delay in ms
    OPT_LOCK_MAX_DELAY_MS: int = 1000     # max backoff cap in ms
    OPT_LOCK_JITTER_MS: int = 50          # random jitter range in ms

    # ── Idempotency ────────────────────────────────────────────
    IDEMPOTENCY_KEY_TTL_SECONDS: int = 86400

    # ── Observability ─────────────────────────────────────────
    METRICS_ENABLED: bool = True
    HEALTH_CHECK_TIMEOUT: float = 5.0


@lru_cache()
def get_settings() -> Settings:
    return Settings()
