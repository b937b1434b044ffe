from pydantic import AnyUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "dev"
    SERVICE_PORT: int = 8080
    LOG_JSON: bool = True
    LOG_LEVEL: str = "INFO"
    # Start routers with the HTTP app
    PIPES_ENABLED: bool = True

    # Sources: "memory" or "redis"
    SOURCE_BACKEND: Literal["memory", "redis"] = "memory"
    SOURCE_REDIS_URL: AnyUrl | None = None
    QUEUE_NAME: str = "iot-queue"
    STREAM_NAME: str = "iot-stream"

    # Queue pipe
    QUEUE_VISIBILITY_TIMEOUT_S: float = 300.0
    QUEUE_WAIT_TIME_S: float = 20.0
    QUEUE_BATCH_SIZE: int = 1
    QUEUE_CONCURRENCY: int = 1

    # Stream pipe
    STREAM_PARTITIONS: int = 1
    STREAM_RETENTION_S: float = 86400.0
    STREAM_STARTING_POSITION: Literal["LATEST", "TRIM_HORIZON"] = "LATEST"
    STREAM_BATCH_SIZE: int = 100
    STREAM_WAIT_TIME_S: float = 1.0
    STREAM_RETRY_DELAY_S: float = 1.0

    # Invocation
    INVOKE_TIMEOUT_S: float = 120.0
    MAX_PAYLOAD_SIZE: int = 262144
    POLL_BACKOFF_BASE_S: float = 0.5
    POLL_BACKOFF_MAX_S: float = 30.0

    # Cache endpoint handed to the processor
    CACHE_BACKEND: Literal["memory", "redis"] = "memory"
    REDIS_ENDPOINT: str = "localhost"
    REDIS_PORT: int = 6379

    # Processor
    DEDUP_RULES: str = ""  # Comma-separated eventType=seconds pairs
    DEDUP_RULES_FILE: str | None = None
    DEDUP_DEFAULT_TTL_S: int | None = None
    CACHE_FAILURE_POLICY: Literal["fail", "degrade"] = "fail"
    MAX_ATTEMPTS: int | None = None
    ATTEMPTS_TTL_S: int = 86400

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
