"""Daily records API router."""

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from qari.api.v1.students.service import get_readable_student
from qari.auth.rbac import require_approved, require_roles
from qari.core.enums import AccountRole
from qari.core.exceptions import ServiceError
from qari.core.models import Account
from qari.db.session import get_db

from . import service
from .schemas import (
    DailyRecordCreate,
    DailyRecordResponse,
    DailyStats,
    MonthlyOverviewItem,
    MonthlyReport,
)

router = APIRouter(prefix="/api/v1/records", tags=["records"])

require_teacher = require_roles(AccountRole.TEACHER)


@router.post("", response_model=DailyRecordResponse, status_code=status.HTTP_201_CREATED)
async def add_daily_record(
    payload: DailyRecordCreate,
    db: AsyncSession = Depends(get_db),
    _: Account = Depends(require_teacher),
):
    """Record one day for a student. At most one record per student per day."""
    try:
        return await service.add_daily_record(db, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/date", response_model=List[DailyRecordResponse])
async def records_on_date(
    day: date = Query(..., alias="date"),
    db: AsyncSession = Depends(get_db),
    _: Account = Depends(require_teacher),
):
    return await service.records_on_date(db, day)


@router.get("/stats/daily", response_model=DailyStats)
async def daily_stats(
    day: Optional[date] = Query(None, alias="date", description="Defaults to today"),
    db: AsyncSession = Depends(get_db),
    _: Account = Depends(require_teacher),
):
    return await service.daily_stats(db, day or date.today())


@router.get("/reports/monthly", response_model=List[MonthlyOverviewItem])
async def monthly_overview(
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    mine: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    account: Account = Depends(require_teacher),
):
    """Monthly report for every student; mine=true limits it to the caller's students."""
    return await service.monthly_overview(db, year, month, teacher_id=account.id if mine else None)


@router.get("/students/{student_id}", response_model=List[DailyRecordResponse])
async def list_student_records(
    student_id: UUID,
    limit: Optional[int] = Query(None, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    account: Account = Depends(require_approved),
):
    """Records of one student, newest first. Parents and students see only their own."""
    try:
        await get_readable_student(db, student_id, account)
        return await service.list_records_for_student(db, student_id, limit=limit)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/students/{student_id}/month", response_model=List[DailyRecordResponse])
async def student_records_in_month(
    student_id: UUID,
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    db: AsyncSession = Depends(get_db),
    account: Account = Depends(require_approved),
):
    try:
        await get_readable_student(db, student_id, account)
        return await service.records_in_month(db, year, month, student_id=student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("/students/{student_id}/report", response_model=MonthlyReport)
async def student_monthly_report(
    student_id: UUID,
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    db: AsyncSession = Depends(get_db),
    account: Account = Depends(require_approved),
):
    try:
        await get_readable_student(db, student_id, account)
        return await service.monthly_report(db, student_id, year, month)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
