from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from qari.auth import services as auth_service
from qari.auth.schemas import CurrentIdentity
from qari.core.exceptions import ProfileMissing
from qari.core.models import Account
from qari.db.session import get_db


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login-oauth")


async def get_current_identity(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> CurrentIdentity:
    """Resolve the signed-in identity from the bearer token."""
    identity = await auth_service.current_identity(db, token)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


async def load_account_or_sign_out(db: AsyncSession, identity: CurrentIdentity) -> Account:
    """Account of the identity. A missing account means it was disabled: the session is revoked."""
    account = await db.get(Account, identity.id)
    if account is None:
        await auth_service.sign_out(db, identity.id, identity.session_id)
        raise ProfileMissing()
    return account


async def get_current_account(
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> Account:
    try:
        return await load_account_or_sign_out(db, identity)
    except ProfileMissing as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
