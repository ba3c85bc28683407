import os
from pydantic_settings import BaseSettings
from typing import List

# fastcache-style minimum: four stores of 32 MB each
MIN_CACHE_BYTES = 128 * 1024 * 1024

class Settings(BaseSettings):
    PROJECT_NAME: str = "Deflix - Debrid flicks"
    VERSION: str = "0.2.0"

    # Server
    BIND_ADDR: str = "localhost"
    PORT: int = 8080
    # Base used in stream URLs delivered to Stremio, later used to redirect to the debrid provider
    STREAM_URL_ADDR: str = "http://localhost:8080"
    LOG_LEVEL: str = "INFO"

    # Caches (persisted to CACHE_PATH/cache in regular intervals)
    CACHE_PATH: str = ""
    CACHE_MAX_BYTES: int = MIN_CACHE_BYTES
    CACHE_PERSIST_INTERVAL: float = 3600.0

    # TTLs in seconds
    CREDENTIAL_TTL: float = 24 * 3600.0
    INVALID_CREDENTIAL_TTL: float = 300.0  # 0 disables negative caching
    TORRENT_TTL: float = 12 * 3600.0
    PARTIAL_TORRENT_TTL: float = 600.0
    AVAILABILITY_TTL: float = 3600.0
    REDIRECT_TTL: float = 3 * 3600.0
    STREAM_URL_TTL: float = 3600.0

    # Timeouts in seconds
    CREDENTIAL_CHECK_TIMEOUT: float = 5.0
    PROVIDER_TIMEOUT: float = 5.0
    INDEXER_TIMEOUT: float = 7.0
    SEARCH_TIMEOUT: float = 10.0

    # Tier 1: Indexers (order decides which metadata wins on duplicate hashes)
    INDEXERS: List[str] = ["yts", "torrentio", "zilean"]
    YTS_API_URL: str = "https://yts.mx/api/v2"
    TORRENTIO_URL: str = "https://torrentio.strem.fun"
    ZILEAN_API_URL: str = "https://zileanfortheweebs.midnightignite.me"  # Midnight's public Zilean instance

    # Tier 2: Debrid provider (API keys are supplied per request by the user, never configured here)
    REALDEBRID_API_URL: str = "https://api.real-debrid.com/rest/1.0"
    AVAILABILITY_BATCH_SIZE: int = 100
    UNLOCK_POLL_ATTEMPTS: int = 3
    UNLOCK_POLL_INTERVAL: float = 0.5

    class Config:
        env_file = ".env"

    @property
    def cache_dir(self) -> str:
        user_cache = os.environ.get("XDG_CACHE_HOME") or os.path.expanduser("~/.cache")
        base = self.CACHE_PATH.rstrip("/") or os.path.join(user_cache, "deflix-stremio")
        return os.path.join(base, "cache")

    @property
    def store_max_bytes(self) -> int:
        return max(self.CACHE_MAX_BYTES, MIN_CACHE_BYTES) // 4

settings = Settings()
