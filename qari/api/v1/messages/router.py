from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from qari.api.v1.live.views import derive_conversations
from qari.auth.rbac import require_approved
from qari.core.exceptions import ServiceError
from qari.core.models import Account
from qari.db.session import get_db

from . import service
from .schemas import ConversationSummary, MarkReadResponse, MessageCreate, MessageResponse

router = APIRouter(prefix="/api/v1/messages", tags=["messages"])


@router.post("", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    payload: MessageCreate,
    db: AsyncSession = Depends(get_db),
    sender: Account = Depends(require_approved),
):
    try:
        return await service.send_message(db, sender, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/conversations", response_model=List[ConversationSummary])
async def list_conversations(
    db: AsyncSession = Depends(get_db),
    account: Account = Depends(require_approved),
):
    """One entry per counterparty, most recent conversation first."""
    messages = await service.list_messages_involving(db, account.id)
    directory = await service.account_directory(db)
    return derive_conversations(messages, directory, account.id)


@router.get("/with/{counterparty_id}", response_model=List[MessageResponse])
async def get_thread(
    counterparty_id: UUID,
    db: AsyncSession = Depends(get_db),
    account: Account = Depends(require_approved),
):
    return await service.get_thread(db, account.id, counterparty_id)


@router.post("/with/{counterparty_id}/read", response_model=MarkReadResponse)
async def mark_thread_read(
    counterparty_id: UUID,
    db: AsyncSession = Depends(get_db),
    account: Account = Depends(require_approved),
):
    try:
        return MarkReadResponse(marked=await service.mark_thread_read(db, account.id, counterparty_id))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
