"""Base interface for the processor's key-value cache."""
from abc import ABC, abstractmethod


class CacheClient(ABC):
    """Single-key atomic operations available to the event processor.

    No operation spans more than one key; idempotency logic must be built
    from these alone. Backend failures raise CacheUnavailable.
    """

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Return the value stored at key, or None if absent or expired."""
        pass

    @abstractmethod
    async def set_if_absent(self, key: str, value: bytes, ttl: int | None = None) -> bool:
        """
        Atomically store value at key unless the key already exists.

        Args:
            key: Cache key
            value: Value to store
            ttl: Optional expiry in seconds

        Returns:
            True if the value was stored, False if the key was already present
        """
        pass

    @abstractmethod
    async def incr(self, key: str, ttl: int | None = None) -> int:
        """
        Atomically increment an integer counter.

        The ttl is applied when the counter is created and left untouched
        on later increments.

        Returns:
            The counter value after incrementing
        """
        pass

    @abstractmethod
    async def expire(self, key: str, ttl: int) -> bool:
        """Set a ttl on an existing key. Returns False if the key is absent."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it existed."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Check that the cache endpoint is reachable."""
        pass

    async def close(self):
        """Release any connection held by the client."""
        pass
