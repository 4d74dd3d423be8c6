"""
One calendar day of attendance and progress for a student.
Categorical fields are stored as integers; decode them with safe_enum_decode.
"""

import uuid

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Text, Uuid

from qari.core.enums import AttendanceStatus, ListenerType, PerformanceLevel, safe_enum_decode
from qari.core.models.base import utcnow
from qari.db.session import Base


class DailyRecord(Base):
    __tablename__ = "daily_records"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("students.id"), nullable=False, index=True)
    record_date = Column(Date, nullable=False, index=True)

    # Hifz (new memorization)
    hifz_from_surah = Column(String(100), nullable=True)
    hifz_from_verse = Column(Integer, nullable=True)
    hifz_to_surah = Column(String(100), nullable=True)
    hifz_to_verse = Column(Integer, nullable=True)
    hifz_mistakes = Column(Integer, nullable=False, default=0)

    # Review (revision of earlier memorization)
    review_from_surah = Column(String(100), nullable=True)
    review_from_verse = Column(Integer, nullable=True)
    review_to_surah = Column(String(100), nullable=True)
    review_to_verse = Column(Integer, nullable=True)
    review_mistakes = Column(Integer, nullable=False, default=0)

    attendance_status = Column(Integer, nullable=False, default=AttendanceStatus.PRESENT.value)
    performance = Column(Integer, nullable=True)
    listener_type = Column(Integer, nullable=True)
    listener_id = Column(Uuid, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    @property
    def attendance(self) -> AttendanceStatus:
        return safe_enum_decode(AttendanceStatus, self.attendance_status, AttendanceStatus.PRESENT)

    @property
    def performance_level(self):
        return safe_enum_decode(PerformanceLevel, self.performance)

    @property
    def listener(self):
        return safe_enum_decode(ListenerType, self.listener_type)

    @property
    def has_hifz(self) -> bool:
        return self.hifz_from_surah is not None and self.hifz_to_surah is not None

    @property
    def has_review(self) -> bool:
        return self.review_from_surah is not None and self.review_to_surah is not None

    @property
    def is_present(self) -> bool:
        return self.attendance is AttendanceStatus.PRESENT
