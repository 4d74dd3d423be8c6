from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from qari.api.v1.approvals import service as approval_service
from qari.auth import services as auth_service
from qari.auth.dependencies import get_current_account, get_current_identity, load_account_or_sign_out
from qari.auth.schemas import (
    AccountInfo,
    CurrentIdentity,
    LoginRequest,
    LoginResponse,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    TokenResponse,
)
from qari.core.exceptions import ServiceError
from qari.core.models import Account
from qari.db.session import get_db

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=http_status.HTTP_201_CREATED,
)
async def register(
    payload: RegisterRequest,
    db: AsyncSession = Depends(get_db),
) -> RegisterResponse:
    try:
        return await approval_service.register_account(db, payload)
    except ServiceError as e:
        if e.status_code == http_status.HTTP_500_INTERNAL_SERVER_ERROR:
            raise HTTPException(status_code=e.status_code, detail="Internal server error")
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/login",
    response_model=LoginResponse,
    status_code=http_status.HTTP_200_OK,
)
async def login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> LoginResponse:
    try:
        return await auth_service.login(db, payload.email, payload.password, payload.role)
    except ServiceError as e:
        if e.status_code in {
            http_status.HTTP_401_UNAUTHORIZED,
            http_status.HTTP_403_FORBIDDEN,
        }:
            raise HTTPException(status_code=e.status_code, detail=e.message)
        if e.status_code == http_status.HTTP_500_INTERNAL_SERVER_ERROR:
            raise HTTPException(status_code=e.status_code, detail="Internal server error")
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/login-oauth")
async def login_oauth(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
):
    """Form login for the OpenAPI docs. Any portal; the account must still exist."""
    try:
        result = await auth_service.sign_in(db, form_data.username.strip(), form_data.password)
        identity = CurrentIdentity(id=result.identity_id, email=result.email, session_id=result.session_id)
        await load_account_or_sign_out(db, identity)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {
        "access_token": result.access_token,
        "token_type": "bearer",
    }


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    payload: RefreshRequest,
    db: AsyncSession = Depends(get_db),
) -> TokenResponse:
    try:
        access_token = await auth_service.refresh_access_token(db, payload.refresh_token)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return TokenResponse(access_token=access_token)


@router.post("/logout", status_code=http_status.HTTP_204_NO_CONTENT)
async def logout(
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> None:
    try:
        await auth_service.sign_out(db, identity.id, identity.session_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/me", response_model=AccountInfo)
async def me(account: Account = Depends(get_current_account)) -> Account:
    """Current account, approved or not (the waiting screen polls this)."""
    return account


@router.delete("/me", status_code=http_status.HTTP_204_NO_CONTENT)
async def delete_rejected_me(
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> None:
    """
    A rejected applicant removes their messages, join requests, account and
    credentials. Signed-in credentials without an account are removed as well.
    """
    try:
        await approval_service.purge_rejected_account(db, identity.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
