"""Pipe routers connecting a source to the event processor."""

from .base import PipeRouter
from .queue import QueueRouter
from .stream import StreamRouter, PartitionAssignment
from .transform import transform, serialize

__all__ = [
    "PipeRouter",
    "QueueRouter",
    "StreamRouter",
    "PartitionAssignment",
    "transform",
    "serialize",
]
