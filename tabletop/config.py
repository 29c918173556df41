import os
from functools import lru_cache

from pydantic_settings import BaseSettings

# Heroku sets DATABASE_URL and PORT without a prefix; map them to
# the TABLETOP_-prefixed names that pydantic-settings expects.
if "DATABASE_URL" in os.environ and "TABLETOP_DATABASE_URL" not in os.environ:
    _url = os.environ["DATABASE_URL"]
    if _url.startswith("postgres://"):
        _url = _url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif _url.startswith("postgresql://"):
        _url = _url.replace("postgresql://", "postgresql+asyncpg://", 1)
    os.environ["TABLETOP_DATABASE_URL"] = _url

if "PORT" in os.environ and "TABLETOP_PORT" not in os.environ:
    os.environ["TABLETOP_PORT"] = os.environ["PORT"]


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./tabletop.db"
    JWT_SECRET: str = "dev-secret-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 1440
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ORIGINS: list[str] = ["http://localhost:5173"]
    LOG_LEVEL: str = "INFO"

    # Seconds between timer sweeps (reminders, expiry, cleanup).
    SWEEP_INTERVAL: float = 30.0
    TURN_TIMEOUT_MINUTES: int = 60

    # Outbound delivery.  Unset URLs disable the channel.
    EMAIL_API_URL: str | None = None
    EMAIL_API_KEY: str | None = None
    EMAIL_FROM: str = "gm@tabletop.local"
    PUSH_GATEWAY_URL: str | None = None
    DELIVERY_TIMEOUT: float = 10.0

    ALLOW_TEST_NOTIFICATIONS: bool = False

    model_config = {"env_prefix": "TABLETOP_"}


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
