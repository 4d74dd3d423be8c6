"""
Account directory, admin permissions and the account removal cascade.

Removing an account never deletes students: a removed parent or teacher is
unlinked from their students, the account's messages are deleted, then the
account itself, all in one transaction.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from qari.core.enums import AccountRole
from qari.core.exceptions import ServiceError, WriteFailure
from qari.core.models import Account, JoinRequest, Message, Student

from .schemas import AccountRemovalResponse

logger = logging.getLogger(__name__)


async def get_account(db: AsyncSession, account_id: UUID) -> Account:
    account = await db.get(Account, account_id)
    if not account:
        raise ServiceError("Account not found", status.HTTP_404_NOT_FOUND)
    return account


async def list_accounts(
    db: AsyncSession,
    role: Optional[AccountRole] = None,
    approved_only: bool = True,
) -> List[Account]:
    q = select(Account)
    if role is not None:
        q = q.where(Account.role == role.value)
    if approved_only:
        q = q.where(Account.approved.is_(True))
    q = q.order_by(Account.name)
    result = await db.execute(q)
    return list(result.scalars().all())


async def list_approved_parents(db: AsyncSession) -> List[Account]:
    return await list_accounts(db, role=AccountRole.PARENT)


async def list_approved_teachers(db: AsyncSession) -> List[Account]:
    return await list_accounts(db, role=AccountRole.TEACHER)


async def set_admin_status(db: AsyncSession, account_id: UUID, is_admin: bool, actor: Account) -> Account:
    """Grant or revoke admin rights. Teachers only; an admin cannot revoke their own rights."""
    account = await get_account(db, account_id)
    if account.role != AccountRole.TEACHER.value:
        raise ServiceError("Only teacher accounts can hold admin rights", status.HTTP_400_BAD_REQUEST)
    if account.id == actor.id and not is_admin:
        raise ServiceError("You cannot revoke your own admin rights", status.HTTP_400_BAD_REQUEST)
    account.admin = is_admin
    try:
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise WriteFailure.from_exception("Failed to update admin rights", e) from e
    await db.refresh(account)
    logger.info("Admin rights of %s set to %s by %s", account.id, is_admin, actor.id)
    return account


async def remove_account_and_dependents(
    db: AsyncSession, account_id: UUID, actor: Account
) -> AccountRemovalResponse:
    account = await get_account(db, account_id)
    if account.id == actor.id:
        raise ServiceError("You cannot remove your own account", status.HTTP_400_BAD_REQUEST)
    role = AccountRole(account.role)

    try:
        unlinked = 0
        if role == AccountRole.PARENT:
            result = await db.execute(
                update(Student).where(Student.parent_id == account.id).values(parent_id=None)
            )
            unlinked = result.rowcount
        elif role == AccountRole.TEACHER:
            result = await db.execute(
                update(Student).where(Student.teacher_id == account.id).values(teacher_id=None)
            )
            unlinked = result.rowcount

        result = await db.execute(
            delete(Message).where(
                or_(Message.sender_id == account.id, Message.receiver_id == account.id)
            )
        )
        deleted_messages = result.rowcount
        await db.execute(delete(JoinRequest).where(JoinRequest.account_id == account.id))
        await db.delete(account)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error("Removal of account %s rolled back", account_id, exc_info=True)
        raise WriteFailure.from_exception("Failed to remove account", e) from e

    logger.info(
        "Removed %s account %s: %d students unlinked, %d messages deleted",
        role.value, account_id, unlinked, deleted_messages,
    )
    return AccountRemovalResponse(
        account_id=account_id,
        role=role,
        students_unlinked=unlinked,
        messages_deleted=deleted_messages,
    )
