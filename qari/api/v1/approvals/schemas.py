from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from qari.core.enums import AccountRole, JoinRequestStatus, ReviewDecision


class JoinRequestResponse(BaseModel):
    id: UUID
    account_id: UUID
    role: AccountRole
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    age: Optional[int] = None
    status: JoinRequestStatus
    reviewed_by: Optional[UUID] = None
    reviewed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ReviewRequest(BaseModel):
    decision: ReviewDecision = Field(..., description="accept or reject")


class PendingCountResponse(BaseModel):
    pending: int
