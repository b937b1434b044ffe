"""Redis Streams partitioned log source."""
import time
import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError
from .base import StreamSource, StartingPosition, partition_for
from ..event_models import Event, EventOrigin, SourceKind
from ..errors import SourceUnavailable

log = structlog.get_logger()


def _text(value) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


class RedisStreamSource(StreamSource):
    """Redis Streams implementation of the partitioned log.

    Each partition is its own stream key, ``<name>:<partition>``. Records
    carry their payload in the ``data`` field and are trimmed by MINID on
    append once they fall outside the retention window.
    """

    def __init__(
        self,
        redis_url: str,
        name: str = "stream",
        partitions: int = 1,
        retention_s: float = 86400.0,
    ):
        """
        Initialize Redis stream source.

        Args:
            redis_url: Redis connection URL
            name: Key prefix for the partition streams
            partitions: Number of partitions
            retention_s: Seconds a record is retained
        """
        if partitions < 1:
            raise ValueError("partitions must be >= 1")
        self.redis_url = redis_url
        self.name = name
        self.retention_s = retention_s
        self._partitions = [str(i) for i in range(partitions)]
        self._client: Redis | None = None

    def _get_client(self) -> Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = Redis.from_url(
                self.redis_url,
                decode_responses=False,
                socket_connect_timeout=5,
                socket_timeout=None,  # XREAD BLOCK outlives a short read timeout
            )
        return self._client

    def _key(self, partition: str) -> str:
        return f"{self.name}:{partition}"

    async def put(self, data: str, partition_key: str) -> tuple[str, str]:
        partition = self._partitions[partition_for(partition_key, len(self._partitions))]
        min_id = int((time.time() - self.retention_s) * 1000)
        try:
            entry_id = await self._get_client().xadd(
                self._key(partition),
                {"data": data},
                id="*",
                minid=min_id,
                approximate=True,
            )
        except RedisError as e:
            log.error("stream.put_failed", stream=self.name, partition=partition, error=str(e))
            raise SourceUnavailable(str(e)) from e
        return partition, _text(entry_id)

    async def list_partitions(self) -> list[str]:
        return list(self._partitions)

    async def starting_position(self, partition: str, policy: StartingPosition) -> str:
        if policy == StartingPosition.TRIM_HORIZON:
            return "0-0"
        try:
            newest = await self._get_client().xrevrange(self._key(partition), count=1)
        except RedisError as e:
            raise SourceUnavailable(str(e)) from e
        if not newest:
            return "0-0"
        return _text(newest[0][0])

    async def read(
        self,
        partition: str,
        after: str,
        limit: int = 100,
        wait_time: float = 0.0,
    ) -> list[Event]:
        # BLOCK 0 means forever in Redis, so no wait is expressed as None
        block = int(wait_time * 1000) or None
        try:
            response = await self._get_client().xread(
                {self._key(partition): after},
                count=limit,
                block=block,
            )
        except RedisError as e:
            log.error("stream.read_failed", stream=self.name, partition=partition, error=str(e))
            raise SourceUnavailable(str(e)) from e

        events = []
        for _key, entries in response or []:
            for entry_id, fields in entries:
                data = fields.get(b"data", fields.get("data"))
                if data is None:
                    continue
                sequence = _text(entry_id)
                events.append(
                    Event(
                        payload=_text(data),
                        origin=EventOrigin(
                            kind=SourceKind.STREAM,
                            handle=sequence,
                            partition=partition,
                            arrival_time=int(sequence.split("-", 1)[0]) / 1000,
                        ),
                    )
                )
        return events

    async def health_check(self) -> bool:
        try:
            return bool(await self._get_client().ping())
        except Exception as e:
            log.warning("stream.health_check_failed", stream=self.name, error=str(e))
            return False

    async def close(self):
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
