"""
Live view models.

The pure builders (roster_with_today, derive_conversations) turn loaded rows
into view models. The *_stream functions compose live queries with the
combinators from qari.core.streams; every stream they return must be closed
(aclose) by its consumer, which releases all underlying subscriptions.
"""

import logging
from datetime import date
from typing import AsyncIterator, Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qari.api.v1.messages.schemas import ConversationSummary
from qari.api.v1.records.schemas import DailyRecordResponse, DailyStats
from qari.api.v1.records.service import compute_daily_stats
from qari.api.v1.students.schemas import StudentResponse
from qari.auth.schemas import AccountInfo
from qari.core.change_feed import ChangeFeed
from qari.core.exceptions import ProfileMissing
from qari.core.models import Account, DailyRecord, Message, Student
from qari.core.streams import amap, combine_latest, distinct_until_changed, fan_out, live_query

from .schemas import AccountStatus, StudentToday

logger = logging.getLogger(__name__)

STUDENTS = Student.__tablename__
RECORDS = DailyRecord.__tablename__
MESSAGES = Message.__tablename__
ACCOUNTS = Account.__tablename__


def same_day(value, day: date) -> bool:
    """Calendar match on year, month and day; time of day is ignored."""
    return value.year == day.year and value.month == day.month and value.day == day.day


# ----- Pure builders -----
def roster_with_today(
    students: Sequence[Student], records: Iterable[DailyRecord], today: date
) -> List[StudentToday]:
    """Pair every student with their record dated `today` (first match wins)."""
    todays: Dict[UUID, DailyRecord] = {}
    for record in records:
        if same_day(record.record_date, today):
            todays.setdefault(record.student_id, record)
    return [_student_today(s, todays.get(s.id)) for s in students]


def _student_today(student: Student, record: Optional[DailyRecord]) -> StudentToday:
    return StudentToday(
        student=StudentResponse.model_validate(student),
        record=DailyRecordResponse.model_validate(record) if record is not None else None,
    )


def _recency(message: Message):
    # Identical timestamps: the greater id string counts as the later message
    return (message.timestamp, str(message.id))


def derive_conversations(
    messages: Iterable[Message], directory: Dict[UUID, str], me: UUID
) -> List[ConversationSummary]:
    """
    Group messages by counterparty. Each conversation carries the latest message,
    the count of unread messages addressed to `me` and the counterparty's name.
    Counterparties missing from `directory` are dropped. Most recent first.
    """
    grouped: Dict[UUID, List[Message]] = {}
    for message in messages:
        other = message.receiver_id if message.sender_id == me else message.sender_id
        grouped.setdefault(other, []).append(message)

    conversations = []
    for other, thread in grouped.items():
        name = directory.get(other)
        if name is None:
            continue
        latest = max(thread, key=_recency)
        conversations.append((
            _recency(latest),
            ConversationSummary(
                counterparty_id=other,
                counterparty_name=name,
                last_message=latest.content,
                last_message_time=latest.timestamp,
                unread_count=sum(1 for m in thread if m.receiver_id == me and not m.is_read),
            ),
        ))
    conversations.sort(key=lambda item: item[0], reverse=True)
    return [summary for _, summary in conversations]


# ----- Live queries -----
def students_stream(
    session_factory: async_sessionmaker,
    feed: ChangeFeed,
    teacher_id: Optional[UUID] = None,
    parent_id: Optional[UUID] = None,
) -> AsyncIterator[List[Student]]:
    async def fetch(db: AsyncSession) -> List[Student]:
        q = select(Student)
        if teacher_id is not None:
            q = q.where(Student.teacher_id == teacher_id)
        if parent_id is not None:
            q = q.where(Student.parent_id == parent_id)
        return list((await db.execute(q.order_by(Student.name))).scalars().all())

    return live_query(session_factory, feed, [STUDENTS], fetch)


def records_for_date_stream(
    session_factory: async_sessionmaker,
    feed: ChangeFeed,
    day: date,
    student_id: Optional[UUID] = None,
) -> AsyncIterator[List[DailyRecord]]:
    async def fetch(db: AsyncSession) -> List[DailyRecord]:
        q = select(DailyRecord).where(DailyRecord.record_date == day)
        if student_id is not None:
            q = q.where(DailyRecord.student_id == student_id)
        return list((await db.execute(q.order_by(DailyRecord.created_at))).scalars().all())

    return live_query(session_factory, feed, [RECORDS], fetch)


# ----- Composed views -----
def roster_today_stream(
    session_factory: async_sessionmaker,
    feed: ChangeFeed,
    today: date,
    teacher_id: Optional[UUID] = None,
) -> AsyncIterator[List[StudentToday]]:
    """Teacher dashboard: every student (or the teacher's own) with today's record."""
    return amap(
        combine_latest(
            students_stream(session_factory, feed, teacher_id=teacher_id),
            records_for_date_stream(session_factory, feed, today),
        ),
        lambda pair: roster_with_today(pair[0], pair[1], today),
    )


def children_today_stream(
    session_factory: async_sessionmaker,
    feed: ChangeFeed,
    parent_id: UUID,
    today: date,
) -> AsyncIterator[List[StudentToday]]:
    """
    Parent dashboard: one "today" subscription per child, recombined. When the
    set of children changes every per-child subscription is replaced.
    """

    def child_today(student: Student) -> AsyncIterator[StudentToday]:
        return amap(
            records_for_date_stream(session_factory, feed, today, student_id=student.id),
            lambda records: roster_with_today([student], records, today)[0],
        )

    return fan_out(
        students_stream(session_factory, feed, parent_id=parent_id),
        child_today,
        combine=list,
    )


def conversations_stream(
    session_factory: async_sessionmaker,
    feed: ChangeFeed,
    me: UUID,
) -> AsyncIterator[List[ConversationSummary]]:
    async def fetch_messages(db: AsyncSession) -> List[Message]:
        q = select(Message).where(or_(Message.sender_id == me, Message.receiver_id == me))
        return list((await db.execute(q)).scalars().all())

    async def fetch_directory(db: AsyncSession) -> Dict[UUID, str]:
        return {row.id: row.name for row in await db.execute(select(Account.id, Account.name))}

    return amap(
        combine_latest(
            live_query(session_factory, feed, [MESSAGES], fetch_messages),
            live_query(session_factory, feed, [ACCOUNTS], fetch_directory),
        ),
        lambda pair: derive_conversations(pair[0], pair[1], me),
    )


def dashboard_stats_stream(
    session_factory: async_sessionmaker,
    feed: ChangeFeed,
    day: date,
) -> AsyncIterator[DailyStats]:
    return distinct_until_changed(
        amap(
            combine_latest(
                students_stream(session_factory, feed),
                records_for_date_stream(session_factory, feed, day),
            ),
            lambda pair: compute_daily_stats(day, pair[0], pair[1]),
        )
    )


async def account_status_stream(
    session_factory: async_sessionmaker,
    feed: ChangeFeed,
    account_id: UUID,
) -> AsyncIterator[AccountStatus]:
    """
    The account's approval state as it changes (waiting screen). Raises
    ProfileMissing once the account document is gone.
    """

    async def fetch(db: AsyncSession) -> Optional[AccountStatus]:
        account = await db.get(Account, account_id)
        if account is None:
            return None
        return AccountStatus(account=AccountInfo.model_validate(account), approval_state=account.approval_state)

    source = distinct_until_changed(live_query(session_factory, feed, [ACCOUNTS], fetch))
    try:
        async for status in source:
            if status is None:
                logger.info("Account %s disappeared; closing its live session", account_id)
                raise ProfileMissing()
            yield status
    finally:
        await source.aclose()
