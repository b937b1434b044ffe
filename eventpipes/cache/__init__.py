"""Cache clients available to the event processor."""

from .base import CacheClient
from .memory import InMemoryCache
from .redis_cache import RedisCache

__all__ = [
    "CacheClient",
    "InMemoryCache",
    "RedisCache",
]
