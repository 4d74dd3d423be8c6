"""
Signup approval workflow.

register_account turns a new (or recovered) identity into an account. The very
first teacher is bootstrapped as an approved administrator without a join
request; every other signup gets an unapproved account plus a pending join
request. An administrator then accepts or rejects the request; accepting a
student also enrolls them with the reviewing teacher.
"""

import asyncio
import logging
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from qari.auth import services as auth_service
from qari.auth.models import Identity
from qari.auth.schemas import AuthResult, RegisterRequest, RegisterResponse
from qari.core.config import settings
from qari.core.enums import AccountRole, JoinRequestStatus, ReviewDecision
from qari.core.exceptions import (
    AuthError,
    AuthErrorKind,
    LookupTimeout,
    ServiceError,
    WriteFailure,
)
from qari.core.models import Account, JoinRequest, Message, Student
from qari.core.models.base import utcnow

from .schemas import JoinRequestResponse

logger = logging.getLogger(__name__)

APPROVAL_NOTE = "Approved by supervisor"


def _request_to_response(r: JoinRequest) -> JoinRequestResponse:
    return JoinRequestResponse.model_validate(r)


async def get_account(db: AsyncSession, account_id: UUID) -> Optional[Account]:
    return await db.get(Account, account_id)


async def has_any_teacher(db: AsyncSession) -> bool:
    result = await db.execute(
        select(Account.id).where(Account.role == AccountRole.TEACHER.value).limit(1)
    )
    return result.first() is not None


async def _lookup_account(db: AsyncSession, identity_id: UUID) -> Optional[Account]:
    try:
        return await asyncio.wait_for(
            get_account(db, identity_id),
            timeout=settings.profile_lookup_timeout_seconds,
        )
    except asyncio.TimeoutError as e:
        raise LookupTimeout() from e


async def _abandon_identity(db: AsyncSession, auth: AuthResult) -> None:
    """Sign out an identity whose profile could not be set up, so no profile-less session survives."""
    await db.rollback()
    try:
        await auth_service.sign_out(db, auth.identity_id, auth.session_id)
    except ServiceError:
        logger.error("Could not sign out identity %s after failed registration", auth.identity_id, exc_info=True)


async def _raise_join_request(db: AsyncSession, account: Account, age: Optional[int]) -> Optional[UUID]:
    """Create the pending join request. Failure is logged, not raised: the account stays pending."""
    account_id = account.id
    request = JoinRequest(
        account_id=account.id,
        role=account.role,
        name=account.name,
        email=account.email,
        phone=account.phone,
        age=age if account.role == AccountRole.STUDENT.value else None,
        status=JoinRequestStatus.PENDING.value,
    )
    try:
        db.add(request)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.warning(
            "Join request for account %s was not created; the account remains pending for manual approval",
            account_id,
            exc_info=True,
        )
        return None
    return request.id


async def register_account(db: AsyncSession, payload: RegisterRequest) -> RegisterResponse:
    # 1. Identity: create it, or recover an existing one with the same credentials
    recovered = False
    try:
        auth = await auth_service.sign_up(db, payload.email, payload.password)
    except AuthError as e:
        if e.kind != AuthErrorKind.EMAIL_ALREADY_IN_USE:
            raise
        auth = await auth_service.sign_in(db, payload.email, payload.password)
        recovered = True
        logger.info("Recovering registration for existing identity %s", auth.identity_id)

    # 2. Existing profile: a recovered registration is idempotent
    try:
        existing = await _lookup_account(db, auth.identity_id)
    except LookupTimeout:
        logger.error("Account lookup timed out while registering identity %s", auth.identity_id)
        await _abandon_identity(db, auth)
        raise
    if existing is not None and recovered:
        return RegisterResponse(
            account_id=existing.id,
            role=AccountRole(existing.role),
            approved=existing.approved,
            admin=existing.admin,
            recovered=True,
            join_request_id=None,
            access_token=auth.access_token,
            refresh_token=auth.refresh_token,
        )

    # 3. Bootstrap: the first teacher in the system is approved and made admin
    bootstrap = False
    if payload.role == AccountRole.TEACHER:
        try:
            bootstrap = not await has_any_teacher(db)
        except SQLAlchemyError:
            await db.rollback()
            logger.warning("Teacher lookup failed; registering %s without bootstrap", auth.identity_id, exc_info=True)

    # 4. Account document
    account = Account(
        id=auth.identity_id,
        role=payload.role.value,
        name=payload.name,
        email=auth.email,
        phone=payload.phone,
        approved=bootstrap,
        rejected=False,
        admin=bootstrap,
    )
    try:
        db.add(account)
        await db.commit()
    except Exception as e:
        logger.error("Failed to create account for identity %s", auth.identity_id, exc_info=True)
        await _abandon_identity(db, auth)
        raise WriteFailure.from_exception("Failed to create account", e) from e

    # 5. Join request for everyone but the bootstrap teacher
    join_request_id = None
    if bootstrap:
        logger.info("Bootstrapped first teacher %s as administrator", auth.identity_id)
    else:
        join_request_id = await _raise_join_request(db, account, payload.age)

    return RegisterResponse(
        account_id=auth.identity_id,
        role=payload.role,
        approved=bootstrap,
        admin=bootstrap,
        recovered=recovered,
        join_request_id=join_request_id,
        access_token=auth.access_token,
        refresh_token=auth.refresh_token,
    )


async def _apply_decision(
    db: AsyncSession,
    account: Account,
    decision: ReviewDecision,
    reviewer: Account,
    name: Optional[str] = None,
    age: Optional[int] = None,
) -> None:
    """Stage the account-side writes of a review. Caller commits."""
    if decision == ReviewDecision.REJECT:
        account.approved = False
        account.rejected = True
        return

    account.approved = True
    account.rejected = False
    if account.role == AccountRole.STUDENT.value and await db.get(Student, account.id) is None:
        db.add(
            Student(
                id=account.id,
                name=name or account.name,
                age=age or 0,
                teacher_id=reviewer.id,
                enrollment_date=date.today(),
                notes=APPROVAL_NOTE,
            )
        )


async def review_join_request(
    db: AsyncSession,
    request_id: UUID,
    decision: ReviewDecision,
    reviewer: Account,
) -> JoinRequestResponse:
    """
    Accept or reject a pending request. The status change is a conditional
    update on status=pending, so a request can be reviewed only once even when
    two administrators act at the same time.
    """
    request = await db.get(JoinRequest, request_id)
    if not request:
        raise ServiceError("Join request not found", status.HTTP_404_NOT_FOUND)
    if request.status != JoinRequestStatus.PENDING.value:
        raise ServiceError(
            f"Join request has already been reviewed (current: {request.status})",
            status.HTTP_409_CONFLICT,
        )
    account = await db.get(Account, request.account_id)
    if not account:
        raise ServiceError("Applicant account no longer exists", status.HTTP_404_NOT_FOUND)

    new_status = (
        JoinRequestStatus.ACCEPTED if decision == ReviewDecision.ACCEPT else JoinRequestStatus.REJECTED
    )
    try:
        claimed = await db.execute(
            update(JoinRequest)
            .where(
                JoinRequest.id == request_id,
                JoinRequest.status == JoinRequestStatus.PENDING.value,
            )
            .values(status=new_status.value, reviewed_by=reviewer.id, reviewed_at=utcnow())
        )
        if claimed.rowcount != 1:
            await db.rollback()
            raise ServiceError("Join request has already been reviewed", status.HTTP_409_CONFLICT)
        await _apply_decision(db, account, decision, reviewer, name=request.name, age=request.age)
        await db.commit()
    except ServiceError:
        raise
    except Exception as e:
        await db.rollback()
        raise WriteFailure.from_exception("Failed to review join request", e) from e

    await db.refresh(request)
    logger.info(
        "Join request %s for %s account %s %s by %s",
        request.id, account.role, account.id, new_status.value, reviewer.id,
    )
    return _request_to_response(request)


async def review_account(
    db: AsyncSession,
    account_id: UUID,
    decision: ReviewDecision,
    reviewer: Account,
) -> Account:
    """
    Review by account. Goes through the pending join request when there is one;
    otherwise (its creation failed at signup) applies the decision to the account directly.
    """
    account = await db.get(Account, account_id)
    if not account:
        raise ServiceError("Account not found", status.HTTP_404_NOT_FOUND)
    pending = (await db.execute(
        select(JoinRequest).where(
            JoinRequest.account_id == account_id,
            JoinRequest.status == JoinRequestStatus.PENDING.value,
        )
    )).scalars().first()
    if pending is not None:
        await review_join_request(db, pending.id, decision, reviewer)
        await db.refresh(account)
        return account

    try:
        await _apply_decision(db, account, decision, reviewer)
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise WriteFailure.from_exception("Failed to review account", e) from e
    await db.refresh(account)
    return account


async def purge_rejected_account(db: AsyncSession, account_id: UUID) -> None:
    """
    Remove the messages, join requests, account document and credentials of a
    rejected applicant in one transaction. An identity whose account is already
    gone is removed on its own. Until the commit the applicant still reads as rejected.
    """
    account = await db.get(Account, account_id)
    if account is not None and not account.rejected:
        raise ServiceError("Only rejected accounts can be removed this way", status.HTTP_409_CONFLICT)
    try:
        messages = await db.execute(
            delete(Message).where(or_(Message.sender_id == account_id, Message.receiver_id == account_id))
        )
        requests = await db.execute(delete(JoinRequest).where(JoinRequest.account_id == account_id))
        await db.flush()
        if account is not None:
            await db.delete(account)
            await db.flush()
        identity = await db.get(Identity, account_id)
        if identity is not None:
            await db.delete(identity)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error("Purge of rejected account %s rolled back", account_id, exc_info=True)
        raise WriteFailure.from_exception("Failed to remove rejected account", e) from e
    logger.info(
        "Purged rejected account %s (%d messages, %d join requests)",
        account_id, messages.rowcount, requests.rowcount,
    )


async def list_join_requests(
    db: AsyncSession,
    role: Optional[AccountRole] = None,
    status_filter: Optional[JoinRequestStatus] = JoinRequestStatus.PENDING,
) -> List[JoinRequestResponse]:
    q = select(JoinRequest)
    if role is not None:
        q = q.where(JoinRequest.role == role.value)
    if status_filter is not None:
        q = q.where(JoinRequest.status == status_filter.value)
    q = q.order_by(JoinRequest.created_at.desc())
    rows = (await db.execute(q)).scalars().all()
    return [_request_to_response(r) for r in rows]


async def pending_requests_count(db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count(JoinRequest.id)).where(JoinRequest.status == JoinRequestStatus.PENDING.value)
    )
    return result.scalar_one()
