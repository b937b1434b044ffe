"""Pipeline service wiring sources, cache, processor and routers together."""
import asyncio
from typing import Any
import structlog
from ..cache.base import CacheClient
from ..cache.memory import InMemoryCache
from ..cache.redis_cache import RedisCache
from ..config import Settings, get_settings
from ..metrics.collector import collector, EVENTS_PRODUCED_TOTAL
from ..processor.dedup import EventProcessor
from ..processor.rules import load_dedup_rules_file, parse_dedup_rules
from ..router.base import PipeRouter
from ..router.queue import QueueRouter
from ..router.stream import StreamRouter
from ..sources.base import QueueSource, StartingPosition, StreamSource
from ..sources.memory import InMemoryQueue, InMemoryStream
from ..sources.redis_queue import RedisQueue
from ..sources.redis_stream import RedisStreamSource

log = structlog.get_logger()


class PipelineService:
    """
    Owns both pipes and the processor they feed.

    The queue pipe and the stream pipe share nothing but the processor, and
    through it the cache.
    """

    def __init__(
        self,
        queue: QueueSource,
        stream: StreamSource,
        cache: CacheClient,
        processor: EventProcessor,
        routers: list[PipeRouter],
    ):
        self.queue = queue
        self.stream = stream
        self.cache = cache
        self.processor = processor
        self.routers = routers

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PipelineService":
        settings = settings or get_settings()
        queue, stream = _create_sources(settings)
        cache = _create_cache(settings)
        processor = _create_processor(settings, cache)

        common = dict(
            invoke_timeout=settings.INVOKE_TIMEOUT_S,
            max_payload_size=settings.MAX_PAYLOAD_SIZE,
            backoff_base=settings.POLL_BACKOFF_BASE_S,
            backoff_max=settings.POLL_BACKOFF_MAX_S,
        )
        routers = [
            QueueRouter(
                queue,
                processor,
                batch_size=settings.QUEUE_BATCH_SIZE,
                visibility_timeout=settings.QUEUE_VISIBILITY_TIMEOUT_S,
                wait_time=settings.QUEUE_WAIT_TIME_S,
                concurrency=settings.QUEUE_CONCURRENCY,
                **common,
            ),
            StreamRouter(
                stream,
                processor,
                batch_size=settings.STREAM_BATCH_SIZE,
                wait_time=settings.STREAM_WAIT_TIME_S,
                starting_position=StartingPosition(settings.STREAM_STARTING_POSITION),
                retry_delay=settings.STREAM_RETRY_DELAY_S,
                **common,
            ),
        ]
        return cls(queue, stream, cache, processor, routers)

    async def send_message(self, body: str) -> str:
        """Producer side: enqueue a message on the source queue."""
        message_id = await self.queue.send(body)
        collector.increment(EVENTS_PRODUCED_TOTAL, labels={"source": "queue"})
        return message_id

    async def put_record(self, data: str, partition_key: str) -> tuple[str, str]:
        """Producer side: append a record to the source stream."""
        partition, sequence = await self.stream.put(data, partition_key)
        collector.increment(EVENTS_PRODUCED_TOTAL, labels={"source": "stream"})
        return partition, sequence

    async def start(self):
        """Start every router; if one fails, stop the ones already started and re-raise."""
        started: list[PipeRouter] = []
        try:
            for router in self.routers:
                await router.start()
                started.append(router)
        except Exception as e:
            log.error("pipeline.start_failed", error=str(e), started=[r.name for r in started])
            await asyncio.gather(*(router.stop() for router in started))
            raise
        log.info("pipeline.started", pipes=[r.name for r in self.routers])

    async def stop(self):
        await asyncio.gather(*(router.stop() for router in self.routers))
        await self.queue.close()
        await self.stream.close()
        await self.cache.close()
        log.info("pipeline.stopped")

    async def health(self) -> dict[str, bool]:
        return {
            "cache": await self.cache.ping(),
            "queue": await self.queue.health_check(),
            "stream": await self.stream.health_check(),
        }

    def stats(self) -> list[dict[str, Any]]:
        return [router.stats() for router in self.routers]


def _create_sources(settings: Settings) -> tuple[QueueSource, StreamSource]:
    """
    Create the queue and stream sources based on configuration.

    Returns:
        (queue, stream) for the SOURCE_BACKEND setting
    """
    if settings.SOURCE_BACKEND == "redis":
        if not settings.SOURCE_REDIS_URL:
            raise ValueError("SOURCE_REDIS_URL is required when SOURCE_BACKEND=redis")
        url = str(settings.SOURCE_REDIS_URL)
        log.info("sources.selected", type="redis", url=url)
        return (
            RedisQueue(url, name=settings.QUEUE_NAME),
            RedisStreamSource(
                url,
                name=settings.STREAM_NAME,
                partitions=settings.STREAM_PARTITIONS,
                retention_s=settings.STREAM_RETENTION_S,
            ),
        )

    log.info("sources.selected", type="memory")
    return (
        InMemoryQueue(name=settings.QUEUE_NAME),
        InMemoryStream(
            name=settings.STREAM_NAME,
            partitions=settings.STREAM_PARTITIONS,
            retention_s=settings.STREAM_RETENTION_S,
        ),
    )


def _create_cache(settings: Settings) -> CacheClient:
    if settings.CACHE_BACKEND == "redis":
        log.info("cache.selected", type="redis", host=settings.REDIS_ENDPOINT, port=settings.REDIS_PORT)
        return RedisCache(settings.REDIS_ENDPOINT, settings.REDIS_PORT)
    log.info("cache.selected", type="memory")
    return InMemoryCache()


def _create_processor(settings: Settings, cache: CacheClient) -> EventProcessor:
    rules = parse_dedup_rules(settings.DEDUP_RULES)
    if settings.DEDUP_RULES_FILE:
        rules = {**load_dedup_rules_file(settings.DEDUP_RULES_FILE), **rules}
    return EventProcessor(
        cache,
        dedup_ttls=rules,
        default_ttl=settings.DEDUP_DEFAULT_TTL_S,
        cache_failure_policy=settings.CACHE_FAILURE_POLICY,
        max_attempts=settings.MAX_ATTEMPTS,
        attempts_ttl=settings.ATTEMPTS_TTL_S,
    )
