"""Students of the circle: enrollment, profile, parent link, mushaf position and removal."""

import logging
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from qari.core.enums import AccountRole
from qari.core.exceptions import ServiceError, WriteFailure
from qari.core.models import Account, DailyRecord, Student

from .schemas import (
    ProgressUpdate,
    StudentCreate,
    StudentRemovalResponse,
    StudentUpdate,
)

logger = logging.getLogger(__name__)


# ----- Access helpers -----
def can_read_student(account: Account, student: Student) -> bool:
    """Teachers read every student; a parent reads their children; a student reads themself."""
    if account.role == AccountRole.TEACHER.value:
        return True
    if account.role == AccountRole.PARENT.value:
        return student.parent_id == account.id
    return student.id == account.id


async def _require_account(db: AsyncSession, account_id: UUID, role: AccountRole, label: str) -> Account:
    account = await db.get(Account, account_id)
    if not account or account.role != role.value or not account.approved:
        raise ServiceError(f"{label} must be an approved {role.value} account", status.HTTP_400_BAD_REQUEST)
    return account


async def _commit(db: AsyncSession, action: str) -> None:
    try:
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise WriteFailure.from_exception(action, e) from e


# ----- Queries -----
async def get_student(db: AsyncSession, student_id: UUID) -> Student:
    student = await db.get(Student, student_id)
    if not student:
        raise ServiceError("Student not found", status.HTTP_404_NOT_FOUND)
    return student


async def get_readable_student(db: AsyncSession, student_id: UUID, account: Account) -> Student:
    student = await get_student(db, student_id)
    if not can_read_student(account, student):
        # Same answer as a missing student: do not reveal other families' children
        raise ServiceError("Student not found", status.HTTP_404_NOT_FOUND)
    return student


async def list_students(
    db: AsyncSession,
    teacher_id: Optional[UUID] = None,
    parent_id: Optional[UUID] = None,
) -> List[Student]:
    q = select(Student)
    if teacher_id is not None:
        q = q.where(Student.teacher_id == teacher_id)
    if parent_id is not None:
        q = q.where(Student.parent_id == parent_id)
    q = q.order_by(Student.name)
    result = await db.execute(q)
    return list(result.scalars().all())


async def list_students_for(db: AsyncSession, account: Account, mine: bool = False) -> List[Student]:
    """Students visible to `account`. A teacher sees all, or only their own with mine=True."""
    if account.role == AccountRole.TEACHER.value:
        return await list_students(db, teacher_id=account.id if mine else None)
    if account.role == AccountRole.PARENT.value:
        return await list_students(db, parent_id=account.id)
    student = await db.get(Student, account.id)
    return [student] if student else []


# ----- Writes -----
async def create_student(db: AsyncSession, payload: StudentCreate, actor: Account) -> Student:
    if payload.parent_id is not None:
        await _require_account(db, payload.parent_id, AccountRole.PARENT, "Parent")
    teacher_id = payload.teacher_id or actor.id
    if teacher_id != actor.id:
        await _require_account(db, teacher_id, AccountRole.TEACHER, "Teacher")
    student = Student(
        name=payload.name.strip(),
        age=payload.age,
        parent_id=payload.parent_id,
        teacher_id=teacher_id,
        juz_number=payload.juz_number,
        surah_name=payload.surah_name,
        verse_number=payload.verse_number,
        enrollment_date=payload.enrollment_date or date.today(),
        photo_url=payload.photo_url,
        notes=payload.notes,
    )
    db.add(student)
    await _commit(db, "Failed to add student")
    await db.refresh(student)
    logger.info("Student %s enrolled by %s", student.id, actor.id)
    return student


async def update_student(db: AsyncSession, student_id: UUID, payload: StudentUpdate) -> Student:
    student = await get_student(db, student_id)
    data = payload.model_dump(exclude_unset=True)
    if data.get("teacher_id") is not None:
        await _require_account(db, data["teacher_id"], AccountRole.TEACHER, "Teacher")
    for key, value in data.items():
        if key == "name" and value is not None:
            value = value.strip()
        setattr(student, key, value)
    await _commit(db, "Failed to update student")
    await db.refresh(student)
    return student


async def link_parent(db: AsyncSession, student_id: UUID, parent_id: Optional[UUID]) -> Student:
    student = await get_student(db, student_id)
    if parent_id is not None:
        await _require_account(db, parent_id, AccountRole.PARENT, "Parent")
    student.parent_id = parent_id
    await _commit(db, "Failed to link parent")
    await db.refresh(student)
    return student


def apply_progress(student: Student, juz_number: int, surah_name: str, verse_number: int) -> None:
    student.juz_number = juz_number
    student.surah_name = surah_name
    student.verse_number = verse_number


async def update_progress(db: AsyncSession, student_id: UUID, payload: ProgressUpdate) -> Student:
    student = await get_student(db, student_id)
    apply_progress(student, payload.juz_number, payload.surah_name, payload.verse_number)
    await _commit(db, "Failed to update progress")
    await db.refresh(student)
    return student


async def remove_student(db: AsyncSession, student_id: UUID) -> StudentRemovalResponse:
    """Delete the student's daily records, then the student, in one transaction."""
    student = await get_student(db, student_id)
    try:
        result = await db.execute(delete(DailyRecord).where(DailyRecord.student_id == student_id))
        records_deleted = result.rowcount
        await db.flush()
        await db.delete(student)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error("Removal of student %s rolled back", student_id, exc_info=True)
        raise WriteFailure.from_exception("Failed to remove student", e) from e
    logger.info("Removed student %s with %d daily records", student_id, records_deleted)
    return StudentRemovalResponse(student_id=student_id, records_deleted=records_deleted)
