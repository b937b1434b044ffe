"""Envelope transform applied between a source and the processor."""
import orjson
from ..errors import TransformError
from ..event_models import Event, TransformedMessage


def transform(event: Event, max_payload_size: int) -> TransformedMessage:
    """
    Wrap a raw payload into the ``{"body": payload}`` envelope.

    Origin metadata is dropped here, so the processor sees the same shape
    whichever source the event came from.

    Raises:
        TransformError: If the payload exceeds max_payload_size bytes
    """
    size = len(event.payload.encode("utf-8"))
    if size > max_payload_size:
        raise TransformError(f"payload of {size} bytes exceeds {max_payload_size} byte limit")
    return TransformedMessage(body=event.payload)


def serialize(message: TransformedMessage) -> bytes:
    """Invocation payload bytes, e.g. ``{"body":"{\\"temp\\":72}"}``."""
    return orjson.dumps({"body": message.body})
