from pydantic import BaseModel, Field
from typing import Any, Dict, List

class SendMessageRequest(BaseModel):
    body: str = Field(..., description="Opaque message payload")

class SendMessageResponse(BaseModel):
    message_id: str
    status: str = "accepted"

class PutRecordRequest(BaseModel):
    data: str = Field(..., description="Opaque record payload")
    partition_key: str = Field(..., min_length=1, max_length=256)

class PutRecordResponse(BaseModel):
    partition: str
    sequence_number: str
    status: str = "accepted"

class PipeListResponse(BaseModel):
    total: int
    pipes: List[Dict[str, Any]]
