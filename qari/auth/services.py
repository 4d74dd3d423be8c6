"""
Credential service: email/password identities and their sessions.

Knows nothing about roles or approval; the registration workflow in
qari.api.v1.approvals builds on sign_up / sign_in / sign_out.
"""

import logging
from typing import AsyncIterator, Optional
from uuid import UUID

from fastapi import status
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qari.auth.models import AuthSession, Identity
from qari.auth.schemas import AccountInfo, AuthResult, CurrentIdentity, LoginResponse
from qari.auth.security import (
    create_access_token,
    create_refresh_token,
    decode_access_token,
    hash_password,
    verify_password,
)
from qari.core.change_feed import ChangeFeed
from qari.core.enums import AccountRole
from qari.core.exceptions import (
    AuthError,
    AuthErrorKind,
    ProfileMissing,
    RoleMismatch,
    ServiceError,
    WriteFailure,
    clean_error_message,
)
from qari.core.models import Account
from qari.core.models.base import utcnow
from qari.core.streams import distinct_until_changed, live_query

logger = logging.getLogger(__name__)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


async def get_identity_by_email(db: AsyncSession, email: str) -> Optional[Identity]:
    result = await db.execute(select(Identity).where(Identity.email == _normalize_email(email)))
    return result.scalar_one_or_none()


async def _open_session(db: AsyncSession, identity: Identity) -> AuthResult:
    """Add a session row for `identity` (caller commits) and mint its tokens."""
    refresh_token, expires_at = create_refresh_token()
    auth_session = AuthSession(
        identity_id=identity.id,
        refresh_token=refresh_token,
        expires_at=expires_at,
    )
    db.add(auth_session)
    await db.flush()
    return AuthResult(
        identity_id=identity.id,
        email=identity.email,
        session_id=auth_session.id,
        access_token=create_access_token(identity_id=identity.id, session_id=auth_session.id),
        refresh_token=refresh_token,
    )


async def sign_up(db: AsyncSession, email: str, password: str) -> AuthResult:
    """Create an identity and sign it in."""
    if await get_identity_by_email(db, email):
        raise AuthError(AuthErrorKind.EMAIL_ALREADY_IN_USE)
    try:
        identity = Identity(email=_normalize_email(email), password_hash=hash_password(password))
        db.add(identity)
        await db.flush()
        result = await _open_session(db, identity)
        await db.commit()
    except IntegrityError as e:
        # Lost a race with a concurrent sign-up for the same email
        await db.rollback()
        raise AuthError(AuthErrorKind.EMAIL_ALREADY_IN_USE) from e
    except Exception as e:
        await db.rollback()
        raise AuthError(AuthErrorKind.OTHER, clean_error_message(str(e))) from e
    logger.info("Identity %s signed up", result.identity_id)
    return result


async def sign_in(db: AsyncSession, email: str, password: str) -> AuthResult:
    identity = await get_identity_by_email(db, email)
    if not identity:
        raise AuthError(AuthErrorKind.USER_NOT_FOUND)
    if not verify_password(password, identity.password_hash):
        raise AuthError(AuthErrorKind.INVALID_CREDENTIALS)
    try:
        result = await _open_session(db, identity)
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise AuthError(AuthErrorKind.OTHER, clean_error_message(str(e))) from e
    return result


async def sign_out(db: AsyncSession, identity_id: UUID, session_id: Optional[UUID] = None) -> int:
    """Revoke one session, or every active session of the identity. Returns the number revoked."""
    stmt = select(AuthSession).where(
        AuthSession.identity_id == identity_id,
        AuthSession.revoked_at.is_(None),
    )
    if session_id is not None:
        stmt = stmt.where(AuthSession.id == session_id)
    sessions = (await db.execute(stmt)).scalars().all()
    now = utcnow()
    for auth_session in sessions:
        auth_session.revoked_at = now
    try:
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise WriteFailure.from_exception("Failed to sign out", e) from e
    return len(sessions)


async def current_identity(db: AsyncSession, token: str) -> Optional[CurrentIdentity]:
    """Resolve an access token to its identity; None when invalid, expired or signed out."""
    try:
        payload = decode_access_token(token)
        identity_id = UUID(payload["sub"])
        session_id = UUID(payload["sid"])
    except (JWTError, KeyError, ValueError, TypeError):
        return None

    auth_session = await db.get(AuthSession, session_id)
    if not auth_session or auth_session.identity_id != identity_id or not auth_session.is_active:
        return None
    identity = await db.get(Identity, identity_id)
    if not identity:
        return None
    return CurrentIdentity(id=identity.id, email=identity.email, session_id=auth_session.id)


async def refresh_access_token(db: AsyncSession, refresh_token: str) -> str:
    result = await db.execute(select(AuthSession).where(AuthSession.refresh_token == refresh_token))
    auth_session = result.scalar_one_or_none()
    if not auth_session or not auth_session.is_active:
        raise ServiceError("Session expired. Please sign in again.", status.HTTP_401_UNAUTHORIZED)
    return create_access_token(identity_id=auth_session.identity_id, session_id=auth_session.id)


async def delete_identity(db: AsyncSession, identity_id: UUID) -> bool:
    identity = await db.get(Identity, identity_id)
    if not identity:
        return False
    try:
        await db.delete(identity)
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise WriteFailure.from_exception("Failed to delete credentials", e) from e
    logger.info("Identity %s deleted", identity_id)
    return True


async def has_active_session(db: AsyncSession, identity_id: UUID) -> bool:
    result = await db.execute(
        select(AuthSession).where(
            AuthSession.identity_id == identity_id,
            AuthSession.revoked_at.is_(None),
            AuthSession.expires_at > utcnow(),
        )
    )
    return result.first() is not None


def auth_state_changes(
    session_factory: async_sessionmaker, feed: ChangeFeed, identity_id: UUID
) -> AsyncIterator[bool]:
    """Emits whether the identity is signed in, initially and whenever that changes."""

    async def fetch(db: AsyncSession) -> bool:
        return await has_active_session(db, identity_id)

    return distinct_until_changed(
        live_query(session_factory, feed, [AuthSession.__tablename__, Identity.__tablename__], fetch)
    )


async def login(db: AsyncSession, email: str, password: str, role: AccountRole) -> LoginResponse:
    """
    Portal sign-in. Credentials alone are not enough: the identity must still
    have an account document (deleted accounts count as disabled) and the
    account must belong to the requested portal. Either failure signs out.
    """
    result = await sign_in(db, email, password)
    account = await db.get(Account, result.identity_id)
    if not account:
        await sign_out(db, result.identity_id, result.session_id)
        raise ProfileMissing()
    if account.role != role.value:
        await sign_out(db, result.identity_id, result.session_id)
        raise RoleMismatch()
    return LoginResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        account=AccountInfo.model_validate(account),
        approval_state=account.approval_state,
    )
