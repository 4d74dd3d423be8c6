from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from qari.api.v1.approvals import service as approval_service
from qari.api.v1.approvals.schemas import ReviewRequest
from qari.auth.rbac import require_admin, require_approved
from qari.auth.schemas import AccountInfo
from qari.core.enums import AccountRole
from qari.core.exceptions import ServiceError
from qari.core.models import Account
from qari.db.session import get_db

from . import service
from .schemas import AccountRemovalResponse, AdminStatusUpdate

router = APIRouter(prefix="/api/v1/accounts", tags=["accounts"])


@router.get("", response_model=List[AccountInfo])
async def list_accounts(
    role: Optional[AccountRole] = Query(None),
    db: AsyncSession = Depends(get_db),
    _: Account = Depends(require_approved),
):
    """Directory of approved accounts (e.g. parents to link, teachers to message)."""
    return await service.list_accounts(db, role=role)


@router.get("/parents", response_model=List[AccountInfo])
async def list_parents(
    db: AsyncSession = Depends(get_db),
    _: Account = Depends(require_approved),
):
    return await service.list_approved_parents(db)


@router.get("/teachers", response_model=List[AccountInfo])
async def list_teachers(
    db: AsyncSession = Depends(get_db),
    _: Account = Depends(require_approved),
):
    return await service.list_approved_teachers(db)


@router.get("/all", response_model=List[AccountInfo])
async def list_all_accounts(
    role: Optional[AccountRole] = Query(None),
    db: AsyncSession = Depends(get_db),
    _: Account = Depends(require_admin),
):
    """Every account including pending and rejected ones."""
    return await service.list_accounts(db, role=role, approved_only=False)


@router.post("/{account_id}/review", response_model=AccountInfo)
async def review_account(
    account_id: UUID,
    payload: ReviewRequest,
    db: AsyncSession = Depends(get_db),
    reviewer: Account = Depends(require_admin),
):
    """Approve or reject an account directly, e.g. one whose join request was never created."""
    try:
        return await approval_service.review_account(db, account_id, payload.decision, reviewer)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch("/{account_id}/admin", response_model=AccountInfo)
async def set_admin_status(
    account_id: UUID,
    payload: AdminStatusUpdate,
    db: AsyncSession = Depends(get_db),
    actor: Account = Depends(require_admin),
):
    try:
        return await service.set_admin_status(db, account_id, payload.admin, actor)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{account_id}", response_model=AccountRemovalResponse)
async def remove_account(
    account_id: UUID,
    db: AsyncSession = Depends(get_db),
    actor: Account = Depends(require_admin),
):
    """Remove an account: unlink its students, delete its messages, then the account."""
    try:
        return await service.remove_account_and_dependents(db, account_id, actor)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
