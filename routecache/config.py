import logging
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_ignore_empty=True, extra="ignore"
    )
    REDIS_URL: str = "redis://localhost:6379"
    CACHED_ROUTES_KEY_PREFIX: str = "cached-routes"
    # Storage TTL in wall-clock minutes, unrelated to a bucket's blocks_to_live
    CACHED_ROUTES_TTL_MINUTES: int = 2
    # The cache must fail fast, so these are much tighter than the client defaults
    CACHE_TIMEOUT_MS: int = 100
    CACHE_MAX_RETRIES: int = 1
    CACHE_RETRY_BACKOFF_MS: int = 20
    LOG_LEVEL: str = "INFO"


settings = Settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
