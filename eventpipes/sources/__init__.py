"""Queue and stream sources."""

from .base import QueueSource, StreamSource, StartingPosition, partition_for
from .memory import InMemoryQueue, InMemoryStream
from .redis_queue import RedisQueue
from .redis_stream import RedisStreamSource

__all__ = [
    "QueueSource",
    "StreamSource",
    "StartingPosition",
    "partition_for",
    "InMemoryQueue",
    "InMemoryStream",
    "RedisQueue",
    "RedisStreamSource",
]
