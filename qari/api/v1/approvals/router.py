from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from qari.auth.rbac import require_admin, require_roles
from qari.core.enums import AccountRole, JoinRequestStatus
from qari.core.exceptions import ServiceError
from qari.core.models import Account
from qari.db.session import get_db

from . import service
from .schemas import JoinRequestResponse, PendingCountResponse, ReviewRequest

router = APIRouter(prefix="/api/v1/join-requests", tags=["join-requests"])


@router.get("", response_model=List[JoinRequestResponse])
async def list_join_requests(
    role: Optional[AccountRole] = Query(None),
    status_filter: Optional[JoinRequestStatus] = Query(JoinRequestStatus.PENDING, alias="status"),
    db: AsyncSession = Depends(get_db),
    _: Account = Depends(require_admin),
):
    """Join requests, newest first. Pending only unless another status is given."""
    return await service.list_join_requests(db, role=role, status_filter=status_filter)


@router.get("/count", response_model=PendingCountResponse)
async def pending_count(
    db: AsyncSession = Depends(get_db),
    _: Account = Depends(require_roles(AccountRole.TEACHER)),
):
    return PendingCountResponse(pending=await service.pending_requests_count(db))


@router.post("/{request_id}/review", response_model=JoinRequestResponse)
async def review_join_request(
    request_id: UUID,
    payload: ReviewRequest,
    db: AsyncSession = Depends(get_db),
    reviewer: Account = Depends(require_admin),
):
    """Accept or reject a pending join request. Accepting a student enrolls them with the reviewer."""
    try:
        return await service.review_join_request(db, request_id, payload.decision, reviewer)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
