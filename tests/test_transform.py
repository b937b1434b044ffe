"""Tests for the invocation envelope transform."""
import orjson
import pytest
from pydantic import ValidationError
from eventpipes.errors import TransformError
from eventpipes.event_models import Event, EventOrigin, SourceKind, TransformedMessage
from eventpipes.router.transform import serialize, transform


def _queue_event(payload: str) -> Event:
    return Event(payload=payload, origin=EventOrigin(kind=SourceKind.QUEUE, handle="m1:abc", receive_count=3))


def _stream_event(payload: str) -> Event:
    return Event(payload=payload, origin=EventOrigin(kind=SourceKind.STREAM, handle="42", partition="0"))


def test_queue_payload_envelope_is_bit_exact():
    """Queue message {"temp":72} becomes {"body":"{\"temp\":72}"}."""
    message = transform(_queue_event('{"temp":72}'), max_payload_size=1024)
    assert serialize(message) == b'{"body":"{\\"temp\\":72}"}'


def test_stream_payload_envelope_is_bit_exact():
    """Stream record {"temp":75} becomes {"body":"{\"temp\":75}"}."""
    message = transform(_stream_event('{"temp":75}'), max_payload_size=1024)
    assert serialize(message) == b'{"body":"{\\"temp\\":75}"}'


def test_both_sources_collapse_to_same_envelope():
    """Identical payloads from either source produce identical invocations."""
    payload = '{"eventId":"e-1","eventType":"temperature"}'
    from_queue = serialize(transform(_queue_event(payload), 1024))
    from_stream = serialize(transform(_stream_event(payload), 1024))
    assert from_queue == from_stream
    assert list(orjson.loads(from_queue).keys()) == ["body"]


def test_origin_metadata_is_dropped():
    """Only the body survives the transform."""
    message = transform(_queue_event("plain text"), 1024)
    assert message.model_dump() == {"body": "plain text"}


def test_payload_at_limit_is_accepted():
    message = transform(_queue_event("x" * 16), max_payload_size=16)
    assert message.body == "x" * 16


def test_oversized_payload_raises_transform_error():
    with pytest.raises(TransformError):
        transform(_queue_event("x" * 17), max_payload_size=16)


def test_size_limit_counts_utf8_bytes():
    """Multi-byte characters count by encoded size."""
    with pytest.raises(TransformError):
        transform(_stream_event("é" * 9), max_payload_size=16)


def test_envelope_rejects_extra_fields():
    with pytest.raises(ValidationError):
        TransformedMessage(body="x", source="queue")


def test_non_json_payload_is_carried_verbatim():
    message = transform(_queue_event('not "json"'), 1024)
    assert orjson.loads(serialize(message)) == {"body": 'not "json"'}
