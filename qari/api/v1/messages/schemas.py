from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class MessageCreate(BaseModel):
    receiver_id: UUID
    content: str = Field(..., min_length=1, max_length=4000)
    student_id: Optional[UUID] = Field(None, description="Student the message is about, if any")

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("content must not be blank")
        return v


class MessageResponse(BaseModel):
    id: UUID
    sender_id: UUID
    receiver_id: UUID
    content: str
    timestamp: datetime
    is_read: bool
    student_id: Optional[UUID] = None

    class Config:
        from_attributes = True


class ConversationSummary(BaseModel):
    counterparty_id: UUID
    counterparty_name: str
    last_message: str
    last_message_time: datetime
    unread_count: int


class MarkReadResponse(BaseModel):
    marked: int
