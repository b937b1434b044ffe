"""Redis cache client."""
import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError
from .base import CacheClient
from ..errors import CacheUnavailable

log = structlog.get_logger()

# Counter and its TTL are created together; later increments keep the TTL
INCR_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 and tonumber(ARGV[1]) > 0 then
  redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return count
"""


class RedisCache(CacheClient):
    """Redis implementation of the processor cache.

    Connects to a single endpoint given as host and port. Every command
    touches exactly one key; RedisError is re-raised as CacheUnavailable.
    """

    def __init__(self, host: str, port: int, socket_timeout: float = 5.0):
        """
        Initialize Redis cache client.

        Args:
            host: Cache endpoint host
            port: Cache endpoint port
            socket_timeout: Connect and read timeout in seconds
        """
        self.host = host
        self.port = port
        self.socket_timeout = socket_timeout
        self._client: Redis | None = None
        self._incr_script = None

    def _get_client(self) -> Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = Redis(
                host=self.host,
                port=self.port,
                decode_responses=False,
                socket_connect_timeout=self.socket_timeout,
                socket_timeout=self.socket_timeout,
            )
        return self._client

    async def get(self, key: str) -> bytes | None:
        try:
            return await self._get_client().get(key)
        except RedisError as e:
            log.error("cache.get_failed", key=key, error=str(e))
            raise CacheUnavailable(str(e)) from e

    async def set_if_absent(self, key: str, value: bytes, ttl: int | None = None) -> bool:
        try:
            stored = await self._get_client().set(key, value, nx=True, ex=ttl)
            return bool(stored)
        except RedisError as e:
            log.error("cache.set_failed", key=key, error=str(e))
            raise CacheUnavailable(str(e)) from e

    async def incr(self, key: str, ttl: int | None = None) -> int:
        try:
            if self._incr_script is None:
                self._incr_script = self._get_client().register_script(INCR_SCRIPT)
            count = await self._incr_script(keys=[key], args=[ttl or 0])
            return int(count)
        except RedisError as e:
            log.error("cache.incr_failed", key=key, error=str(e))
            raise CacheUnavailable(str(e)) from e

    async def expire(self, key: str, ttl: int) -> bool:
        try:
            return bool(await self._get_client().expire(key, ttl))
        except RedisError as e:
            log.error("cache.expire_failed", key=key, error=str(e))
            raise CacheUnavailable(str(e)) from e

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._get_client().delete(key))
        except RedisError as e:
            log.error("cache.delete_failed", key=key, error=str(e))
            raise CacheUnavailable(str(e)) from e

    async def ping(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            True if Redis is accessible, False otherwise
        """
        try:
            return bool(await self._get_client().ping())
        except Exception as e:
            log.warning("cache.health_check_failed", error=str(e))
            return False

    async def close(self):
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
            self._incr_script = None
