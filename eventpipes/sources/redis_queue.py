"""Redis-backed queue source.

Messages live in three keys:

- ``<name>:bodies``    hash of message id -> body
- ``<name>:visible``   sorted set of message id scored by visible-at (epoch ms)
- ``<name>:receives``  hash of message id -> receive count

Receiving moves a message's score forward by the visibility window; a
receipt handle is ``<id>:<visible-at>`` and only the latest one deletes.
"""
import asyncio
import time
import uuid
import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError
from .base import QueueSource
from ..event_models import Event, EventOrigin, SourceKind
from ..errors import SourceUnavailable

log = structlog.get_logger()

SEND_SCRIPT = """
redis.call('HSET', KEYS[1], ARGV[1], ARGV[2])
redis.call('ZADD', KEYS[2], ARGV[3], ARGV[1])
return 1
"""

RECEIVE_SCRIPT = """
local now = tonumber(ARGV[1])
local until_ms = now + tonumber(ARGV[2])
local ids = redis.call('ZRANGEBYSCORE', KEYS[2], '-inf', now, 'LIMIT', 0, tonumber(ARGV[3]))
local out = {}
for _, id in ipairs(ids) do
  redis.call('ZADD', KEYS[2], until_ms, id)
  local count = redis.call('HINCRBY', KEYS[3], id, 1)
  table.insert(out, id)
  table.insert(out, redis.call('HGET', KEYS[1], id))
  table.insert(out, tostring(until_ms))
  table.insert(out, tostring(count))
end
return out
"""

DELETE_SCRIPT = """
local score = redis.call('ZSCORE', KEYS[2], ARGV[1])
if score and tonumber(score) == tonumber(ARGV[2]) then
  redis.call('ZREM', KEYS[2], ARGV[1])
  redis.call('HDEL', KEYS[1], ARGV[1])
  redis.call('HDEL', KEYS[3], ARGV[1])
  return 1
end
return 0
"""


def _now_ms() -> int:
    return int(time.time() * 1000)


def _text(value) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


class RedisQueue(QueueSource):
    """Redis implementation of the at-least-once queue."""

    def __init__(self, redis_url: str, name: str = "queue", poll_interval: float = 0.5):
        """
        Initialize Redis queue.

        Args:
            redis_url: Redis connection URL
            name: Key prefix for this queue
            poll_interval: Seconds between empty receive attempts while long-polling
        """
        self.redis_url = redis_url
        self.name = name
        self.poll_interval = poll_interval
        self._keys = [f"{name}:bodies", f"{name}:visible", f"{name}:receives"]
        self._client: Redis | None = None
        self._scripts = None

    def _get_client(self) -> Redis:
        """Get or create Redis client and register the queue scripts."""
        if self._client is None:
            self._client = Redis.from_url(
                self.redis_url,
                decode_responses=False,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
            self._scripts = {
                "send": self._client.register_script(SEND_SCRIPT),
                "receive": self._client.register_script(RECEIVE_SCRIPT),
                "delete": self._client.register_script(DELETE_SCRIPT),
            }
        return self._client

    def _script(self, name: str):
        self._get_client()
        return self._scripts[name]

    async def send(self, body: str) -> str:
        message_id = uuid.uuid4().hex
        try:
            await self._script("send")(keys=self._keys, args=[message_id, body, _now_ms()])
        except RedisError as e:
            log.error("queue.send_failed", queue=self.name, error=str(e))
            raise SourceUnavailable(str(e)) from e
        log.info("queue.message_sent", queue=self.name, message_id=message_id)
        return message_id

    async def receive(
        self,
        max_messages: int = 1,
        visibility_timeout: float = 300.0,
        wait_time: float = 0.0,
    ) -> list[Event]:
        deadline = time.monotonic() + wait_time
        while True:
            try:
                raw = await self._script("receive")(
                    keys=self._keys,
                    args=[_now_ms(), int(visibility_timeout * 1000), max_messages],
                )
            except RedisError as e:
                log.error("queue.receive_failed", queue=self.name, error=str(e))
                raise SourceUnavailable(str(e)) from e

            events = self._decode(raw)
            if events or time.monotonic() >= deadline:
                return events
            await asyncio.sleep(min(self.poll_interval, max(0.0, deadline - time.monotonic())))

    @staticmethod
    def _decode(raw) -> list[Event]:
        events = []
        for i in range(0, len(raw or []), 4):
            message_id, body, until_ms, count = raw[i:i + 4]
            if body is None:
                # Body removed by a concurrent delete
                continue
            events.append(
                Event(
                    payload=_text(body),
                    origin=EventOrigin(
                        kind=SourceKind.QUEUE,
                        handle=f"{_text(message_id)}:{_text(until_ms)}",
                        receive_count=int(_text(count)),
                    ),
                )
            )
        return events

    async def delete(self, handle: str) -> bool:
        message_id, _, until_ms = handle.rpartition(":")
        try:
            deleted = await self._script("delete")(keys=self._keys, args=[message_id, until_ms])
        except RedisError as e:
            log.error("queue.delete_failed", queue=self.name, error=str(e))
            raise SourceUnavailable(str(e)) from e
        return bool(deleted)

    async def health_check(self) -> bool:
        try:
            return bool(await self._get_client().ping())
        except Exception as e:
            log.warning("queue.health_check_failed", queue=self.name, error=str(e))
            return False

    async def close(self):
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
            self._scripts = None
