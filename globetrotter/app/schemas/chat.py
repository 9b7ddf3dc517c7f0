"""
Chat Pydantic schemas.

Used by the REST history/polling endpoints and, serialized to JSON, as the
`message` payload of WebSocket events.
"""

from enum import Enum
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from globetrotter.app.models.enums import MessageKind


class ChatAction(str, Enum):
    JOIN = "join"
    SEND = "send"
    LEAVE = "leave"


class ChatActionRequest(BaseModel):
    """
    Schema for POST /trips/{display_id}/chat (polling fallback).

    `body` is required for `send`; checked by the chat service.
    """
    action: ChatAction = Field(..., description="join or send")
    body: Optional[str] = Field(default=None, description="Message text for send")


class ChatMessageResponse(BaseModel):
    id: int
    sequence: int
    kind: MessageKind
    body: str
    sender_id: Optional[int] = None
    sender_username: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ChatHistoryResponse(BaseModel):
    trip_id: int = Field(..., description="Trip display ID")
    messages: list[ChatMessageResponse]


class ChatActionResponse(BaseModel):
    trip_id: int
    action: ChatAction
    is_member: bool
    message: Optional[ChatMessageResponse] = None
