"""
Daily records: one per student per calendar day.

Report helpers (build_monthly_report, compute_daily_stats) are pure functions
over already-loaded rows so the live dashboard can reuse them on every snapshot.
"""

import calendar
import logging
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from fastapi import status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from qari.api.v1.students.service import apply_progress, get_student, list_students
from qari.core.exceptions import ServiceError, WriteFailure
from qari.core.models import DailyRecord, Student

from .schemas import DailyRecordCreate, DailyStats, MonthlyOverviewItem, MonthlyReport

logger = logging.getLogger(__name__)


def month_range(year: int, month: int) -> Tuple[date, date]:
    """[first day of the month, first day of the next month)."""
    if month < 1 or month > 12:
        raise ServiceError("Month must be between 1 and 12", status.HTTP_400_BAD_REQUEST)
    start = date(year, month, 1)
    end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return start, end


# ----- Writes -----
async def add_daily_record(db: AsyncSession, payload: DailyRecordCreate) -> DailyRecord:
    """
    Store a student's record for one day. A present day with a memorization range
    also moves the student's position to the end of that range.
    """
    student = await get_student(db, payload.student_id)
    existing = await db.execute(
        select(DailyRecord.id).where(
            DailyRecord.student_id == payload.student_id,
            DailyRecord.record_date == payload.record_date,
        )
    )
    if existing.first() is not None:
        raise ServiceError(
            f"A record already exists for this student on {payload.record_date}",
            status.HTTP_409_CONFLICT,
        )

    data = payload.model_dump()
    record = DailyRecord(
        **{k: v for k, v in data.items() if k not in ("attendance_status", "performance", "listener_type")},
        attendance_status=int(payload.attendance_status),
        performance=int(payload.performance) if payload.performance is not None else None,
        listener_type=int(payload.listener_type) if payload.listener_type is not None else None,
    )
    db.add(record)
    if record.is_present and record.has_hifz:
        apply_progress(
            student,
            student.juz_number,
            record.hifz_to_surah,
            record.hifz_to_verse or student.verse_number,
        )
    try:
        await db.commit()
    except Exception as e:
        await db.rollback()
        raise WriteFailure.from_exception("Failed to save daily record", e) from e
    await db.refresh(record)
    logger.info("Daily record %s saved for student %s on %s", record.id, student.id, record.record_date)
    return record


# ----- Queries -----
async def list_records_for_student(
    db: AsyncSession, student_id: UUID, limit: Optional[int] = None
) -> List[DailyRecord]:
    """Newest first."""
    q = (
        select(DailyRecord)
        .where(DailyRecord.student_id == student_id)
        .order_by(DailyRecord.record_date.desc(), DailyRecord.created_at.desc())
    )
    if limit:
        q = q.limit(limit)
    result = await db.execute(q)
    return list(result.scalars().all())


async def records_on_date(
    db: AsyncSession, day: date, student_ids: Optional[Iterable[UUID]] = None
) -> List[DailyRecord]:
    q = select(DailyRecord).where(DailyRecord.record_date == day)
    if student_ids is not None:
        q = q.where(DailyRecord.student_id.in_(list(student_ids)))
    result = await db.execute(q)
    return list(result.scalars().all())


async def records_in_month(
    db: AsyncSession, year: int, month: int, student_id: Optional[UUID] = None
) -> List[DailyRecord]:
    start, end = month_range(year, month)
    q = select(DailyRecord).where(
        DailyRecord.record_date >= start,
        DailyRecord.record_date < end,
    )
    if student_id is not None:
        q = q.where(DailyRecord.student_id == student_id)
    q = q.order_by(DailyRecord.record_date.desc())
    result = await db.execute(q)
    return list(result.scalars().all())


# ----- Reports -----
def build_monthly_report(
    student_id: UUID, year: int, month: int, records: Sequence[DailyRecord]
) -> MonthlyReport:
    days_in_month = calendar.monthrange(year, month)[1]
    present = [r for r in records if r.is_present]
    hifz = [r for r in records if r.has_hifz]
    review_days = sum(1 for r in records if r.has_review)

    verses = 0
    for r in hifz:
        if r.hifz_from_verse is not None and r.hifz_to_verse is not None:
            verses += r.hifz_to_verse - r.hifz_from_verse + 1

    distribution: Dict[str, int] = {}
    for r in records:
        level = r.performance_level
        if level is not None:
            distribution[level.name.lower()] = distribution.get(level.name.lower(), 0) + 1

    return MonthlyReport(
        student_id=student_id,
        year=year,
        month=month,
        days_in_month=days_in_month,
        total_records=len(records),
        present_days=len(present),
        absent_days=len(records) - len(present),
        hifz_days=len(hifz),
        review_days=review_days,
        attendance_rate=len(present) / days_in_month if records else 0.0,
        verses_memorized=verses,
        average_hifz_mistakes=sum(r.hifz_mistakes for r in hifz) / len(hifz) if hifz else 0.0,
        performance_distribution=distribution,
    )


async def monthly_report(db: AsyncSession, student_id: UUID, year: int, month: int) -> MonthlyReport:
    await get_student(db, student_id)
    records = await records_in_month(db, year, month, student_id=student_id)
    return build_monthly_report(student_id, year, month, records)


async def monthly_overview(
    db: AsyncSession, year: int, month: int, teacher_id: Optional[UUID] = None
) -> List[MonthlyOverviewItem]:
    """Monthly report of every student (or one teacher's students)."""
    students = await list_students(db, teacher_id=teacher_id)
    records = await records_in_month(db, year, month)
    by_student: Dict[UUID, List[DailyRecord]] = {}
    for r in records:
        by_student.setdefault(r.student_id, []).append(r)
    return [
        MonthlyOverviewItem(
            student_id=s.id,
            student_name=s.name,
            report=build_monthly_report(s.id, year, month, by_student.get(s.id, [])),
        )
        for s in students
    ]


def compute_daily_stats(day: date, students: Sequence[Student], records: Sequence[DailyRecord]) -> DailyStats:
    """Counts over the day's records that belong to a known student."""
    known = {s.id for s in students}
    relevant = [r for r in records if r.student_id in known]
    present = sum(1 for r in relevant if r.is_present)
    return DailyStats(
        day=day,
        total_students=len(students),
        present=present,
        absent=len(relevant) - present,
        total_records=len(relevant),
        hifz=sum(1 for r in relevant if r.has_hifz),
    )


async def daily_stats(db: AsyncSession, day: date) -> DailyStats:
    students = await list_students(db)
    records = await records_on_date(db, day)
    return compute_daily_stats(day, students, records)
