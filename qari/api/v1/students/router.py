from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from qari.auth.rbac import require_approved, require_roles
from qari.core.enums import AccountRole
from qari.core.exceptions import ServiceError
from qari.core.models import Account
from qari.db.session import get_db

from . import service
from .schemas import (
    ParentLink,
    ProgressUpdate,
    StudentCreate,
    StudentRemovalResponse,
    StudentResponse,
    StudentUpdate,
)

router = APIRouter(prefix="/api/v1/students", tags=["students"])

require_teacher = require_roles(AccountRole.TEACHER)


@router.post("", response_model=StudentResponse, status_code=status.HTTP_201_CREATED)
async def create_student(
    payload: StudentCreate,
    db: AsyncSession = Depends(get_db),
    actor: Account = Depends(require_teacher),
):
    try:
        return await service.create_student(db, payload, actor)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get("", response_model=List[StudentResponse])
async def list_students(
    mine: bool = Query(False, description="Teachers: only students assigned to me"),
    db: AsyncSession = Depends(get_db),
    account: Account = Depends(require_approved),
):
    """Teacher: all students (or own). Parent: own children. Student: own profile."""
    return await service.list_students_for(db, account, mine=mine)


@router.get("/{student_id}", response_model=StudentResponse)
async def get_student(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    account: Account = Depends(require_approved),
):
    try:
        return await service.get_readable_student(db, student_id, account)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.patch("/{student_id}", response_model=StudentResponse)
async def update_student(
    student_id: UUID,
    payload: StudentUpdate,
    db: AsyncSession = Depends(get_db),
    _: Account = Depends(require_teacher),
):
    try:
        return await service.update_student(db, student_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{student_id}/parent", response_model=StudentResponse)
async def link_parent(
    student_id: UUID,
    payload: ParentLink,
    db: AsyncSession = Depends(get_db),
    _: Account = Depends(require_teacher),
):
    try:
        return await service.link_parent(db, student_id, payload.parent_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put("/{student_id}/progress", response_model=StudentResponse)
async def update_progress(
    student_id: UUID,
    payload: ProgressUpdate,
    db: AsyncSession = Depends(get_db),
    _: Account = Depends(require_teacher),
):
    try:
        return await service.update_progress(db, student_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.delete("/{student_id}", response_model=StudentRemovalResponse)
async def remove_student(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    _: Account = Depends(require_teacher),
):
    """Delete a student together with all of their daily records."""
    try:
        return await service.remove_student(db, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
