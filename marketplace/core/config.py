"""
Marketplace — Configuration
All settings are read from environment variables (or .env file).
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    SERVICE_NAME: str = "marketplace"
    SERVICE_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 3001
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["http://localhost:4321"]

    # ── Game database (PostgreSQL) ────────────────────────────
    POSTGRES_HOST: str = "game-db"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "otserv"
    POSTGRES_USER: str = "otserv"
    POSTGRES_PASSWORD: str = "otserv"
    DATABASE_URL: str | None = None  # full override, e.g. sqlite+aiosqlite:///./dev.db
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_ECHO: bool = False

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # ── JWT (tokens issued by the account service) ────────────
    JWT_SECRET_KEY: str = "CHANGE_ME_IN_PRODUCTION"
    JWT_ALGORITHM: str = "HS256"
    AUTH_COOKIE_NAME: str = "access_token"
    ADMIN_GROUP_ID: int = 10

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

    IDEMPOTENCY_KEY_TTL_SECONDS: int = 86400

    # ── MercadoPago ───────────────────────────────────────────
    MP_ACCESS_TOKEN: str = ""
    MP_API_BASE_URL: str = "https://api.mercadopago.com"
    MP_CURRENCY_ID: str = "ARS"
    MP_STATEMENT_DESCRIPTOR: str = "OTS MARKETPLACE"
    GATEWAY_TIMEOUT_SECONDS: float = 5.0
    FRONTEND_URL: str = "http://localhost:4321"
    BACKEND_URL: str = "http://localhost:3001"

    # ── Delivery ──────────────────────────────────────────────
    DEPOT_ROOT_PID: int = 0
    CONFLICT_MAX_RETRIES: int = 5
    CONFLICT_BASE_DELAY_MS: int = 20      # base exponential backoff delay in ms
    CONFLICT_MAX_DELAY_MS: int = 500      # max backoff cap in ms
    CONFLICT_JITTER_MS: int = 20          # random jitter range in ms

    # ── Reconciliation ────────────────────────────────────────
    # No expiry is applied unless an operator sets a cutoff.
    PENDING_ORDER_EXPIRY_MINUTES: int | None = None
    RECONCILE_INTERVAL_SECONDS: int = 300
    RECONCILE_BATCH_SIZE: int = 100

    # ── Observability ─────────────────────────────────────────
    METRICS_ENABLED: bool = True
    HEALTH_CHECK_TIMEOUT: float = 5.0


@lru_cache()
def get_settings() -> Settings:
    return Settings()
