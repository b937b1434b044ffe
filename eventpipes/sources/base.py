"""Base interfaces for the queue and stream sources."""
import hashlib
from abc import ABC, abstractmethod
from enum import Enum
from ..event_models import Event


class StartingPosition(str, Enum):
    """Where a stream reader begins when it has no cursor yet."""
    LATEST = "LATEST"
    TRIM_HORIZON = "TRIM_HORIZON"


def partition_for(partition_key: str, partition_count: int) -> int:
    """Map a partition key onto a partition index via its md5 digest."""
    digest = hashlib.md5(partition_key.encode("utf-8")).digest()
    return int.from_bytes(digest, "big") % partition_count


class QueueSource(ABC):
    """At-least-once message queue with a per-message visibility window."""

    @abstractmethod
    async def send(self, body: str) -> str:
        """
        Enqueue an opaque payload.

        Returns:
            The message id
        """
        pass

    @abstractmethod
    async def receive(
        self,
        max_messages: int = 1,
        visibility_timeout: float = 300.0,
        wait_time: float = 0.0,
    ) -> list[Event]:
        """
        Receive up to max_messages visible messages.

        Each returned message is hidden from other receivers for
        visibility_timeout seconds and carries a fresh receipt handle as its
        origin handle. Waits up to wait_time seconds for a message to
        become available.

        Raises:
            SourceUnavailable: If the backend cannot be reached
        """
        pass

    @abstractmethod
    async def delete(self, handle: str) -> bool:
        """
        Acknowledge a received message.

        Args:
            handle: Receipt handle from the latest receive of the message

        Returns:
            True if deleted, False if the handle is stale or unknown
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    async def close(self):
        pass


class StreamSource(ABC):
    """Ordered, partitioned append log.

    Positions are opaque, totally ordered per partition, and a read
    returns records strictly after the given position.
    """

    @abstractmethod
    async def put(self, data: str, partition_key: str) -> tuple[str, str]:
        """
        Append a record.

        Returns:
            (partition, sequence number) of the stored record
        """
        pass

    @abstractmethod
    async def list_partitions(self) -> list[str]:
        pass

    @abstractmethod
    async def starting_position(self, partition: str, policy: StartingPosition) -> str:
        """
        Resolve a starting position to a concrete cursor.

        LATEST yields the sequence of the newest record, so nothing already
        in the log is read. TRIM_HORIZON yields a cursor before the oldest
        retained record.
        """
        pass

    @abstractmethod
    async def read(
        self,
        partition: str,
        after: str,
        limit: int = 100,
        wait_time: float = 0.0,
    ) -> list[Event]:
        """
        Read up to limit records following position after, in log order.

        Raises:
            SourceUnavailable: If the backend cannot be reached
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    async def close(self):
        pass
