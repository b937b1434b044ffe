from fastapi import APIRouter, HTTPException, Request
from .schemas import (
    SendMessageRequest,
    SendMessageResponse,
    PutRecordRequest,
    PutRecordResponse,
    PipeListResponse,
)
from ..errors import SourceUnavailable
from ..services.pipeline import PipelineService

router = APIRouter(prefix="/v1")


def _pipeline(request: Request) -> PipelineService:
    return request.app.state.pipeline


@router.post("/queue/messages", response_model=SendMessageResponse)
async def send_message(req: SendMessageRequest, request: Request):
    try:
        message_id = await _pipeline(request).send_message(req.body)
    except SourceUnavailable as e:
        raise HTTPException(503, detail=f"Queue unavailable: {e}")
    return SendMessageResponse(message_id=message_id)


@router.post("/stream/records", response_model=PutRecordResponse)
async def put_record(req: PutRecordRequest, request: Request):
    try:
        partition, sequence = await _pipeline(request).put_record(req.data, req.partition_key)
    except SourceUnavailable as e:
        raise HTTPException(503, detail=f"Stream unavailable: {e}")
    return PutRecordResponse(partition=partition, sequence_number=sequence)


@router.get("/pipes", response_model=PipeListResponse)
async def list_pipes(request: Request):
    pipes = _pipeline(request).stats()
    return PipeListResponse(total=len(pipes), pipes=pipes)
