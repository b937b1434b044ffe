"""Tests for the producer and pipe listing endpoints."""
import pytest
from httpx import AsyncClient, ASGITransport
from eventpipes.main import app, pipeline


@pytest.mark.asyncio
async def test_send_queue_message():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        before = len(pipeline.queue)
        response = await client.post("/v1/queue/messages", json={"body": '{"temp":72}'})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "accepted"
        assert data["message_id"]
        assert len(pipeline.queue) == before + 1


@pytest.mark.asyncio
async def test_put_stream_record():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post(
            "/v1/stream/records",
            json={"data": '{"temp":75}', "partition_key": "sensor-1"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "accepted"
        assert data["partition"] in await pipeline.stream.list_partitions()
        assert int(data["sequence_number"]) >= 1


@pytest.mark.asyncio
async def test_partition_key_length_is_validated():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post("/v1/stream/records", json={"data": "x", "partition_key": ""})
        assert response.status_code == 422


@pytest.mark.asyncio
async def test_list_pipes():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/v1/pipes")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert [p["kind"] for p in data["pipes"]] == ["queue", "stream"]
        assert data["pipes"][0]["name"] == "queue-pipe"
        assert data["pipes"][1]["name"] == "stream-pipe"
