"""Contract between a pipe router and its target."""
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class EventHandler(Protocol):
    """Target invoked by a pipe router.

    Receives the serialized invocation payload. Returning normally means
    success; raising means failure. The return value is not consumed.
    """

    async def handle(self, payload: bytes) -> Any:
        ...
