"""Direct messages between accounts."""

import logging
from typing import Dict, List
from uuid import UUID

from fastapi import status
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from qari.core.exceptions import ServiceError, WriteFailure
from qari.core.models import Account, Message

from .schemas import MessageCreate

logger = logging.getLogger(__name__)


def _between(a: UUID, b: UUID):
    return or_(
        and_(Message.sender_id == a, Message.receiver_id == b),
        and_(Message.sender_id == b, Message.receiver_id == a),
    )


async def send_message(db: AsyncSession, sender: Account, payload: MessageCreate) -> Message:
    if payload.receiver_id == sender.id:
        raise ServiceError("You cannot message yourself", status.HTTP_400_BAD_REQUEST)
    receiver = await db.get(Account, payload.receiver_id)
    if not receiver:
        raise ServiceError("Recipient not found", status.HTTP_404_NOT_FOUND)
    message = Message(
        sender_id=sender.id,
        receiver_id=receiver.id,
        content=payload.content,
        student_id=payload.student_id,
    )
    db.add(message)
    try:
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise WriteFailure.from_exception("Failed to send message", e) from e
    await db.refresh(message)
    return message


async def get_thread(db: AsyncSession, a: UUID, b: UUID) -> List[Message]:
    """Both directions, oldest first."""
    result = await db.execute(
        select(Message).where(_between(a, b)).order_by(Message.timestamp.asc(), Message.id.asc())
    )
    return list(result.scalars().all())


async def list_messages_involving(db: AsyncSession, account_id: UUID) -> List[Message]:
    """Every message sent or received by the account, newest first."""
    result = await db.execute(
        select(Message)
        .where(or_(Message.sender_id == account_id, Message.receiver_id == account_id))
        .order_by(Message.timestamp.desc())
    )
    return list(result.scalars().all())


async def mark_thread_read(db: AsyncSession, reader_id: UUID, counterparty_id: UUID) -> int:
    """Mark every unread message from counterparty to reader as read."""
    try:
        result = await db.execute(
            update(Message)
            .where(
                Message.sender_id == counterparty_id,
                Message.receiver_id == reader_id,
                Message.is_read.is_(False),
            )
            .values(is_read=True)
        )
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise WriteFailure.from_exception("Failed to mark messages as read", e) from e
    return result.rowcount


async def account_directory(db: AsyncSession) -> Dict[UUID, str]:
    """Display names of every account, keyed by id."""
    result = await db.execute(select(Account.id, Account.name))
    return {row.id: row.name for row in result}
