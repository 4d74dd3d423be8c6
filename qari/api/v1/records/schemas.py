from datetime import date, datetime
from typing import Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from qari.core.enums import AttendanceStatus, ListenerType, PerformanceLevel

_HIFZ_FIELDS = ("hifz_from_surah", "hifz_from_verse", "hifz_to_surah", "hifz_to_verse")
_REVIEW_FIELDS = ("review_from_surah", "review_from_verse", "review_to_surah", "review_to_verse")
_SESSION_FIELDS = ("performance", "listener_type", "listener_id")


class DailyRecordCreate(BaseModel):
    """One day of attendance and progress. Categorical fields take their integer codes."""

    student_id: UUID
    record_date: date = Field(default_factory=date.today)
    hifz_from_surah: Optional[str] = Field(None, max_length=100)
    hifz_from_verse: Optional[int] = Field(None, ge=1)
    hifz_to_surah: Optional[str] = Field(None, max_length=100)
    hifz_to_verse: Optional[int] = Field(None, ge=1)
    hifz_mistakes: int = Field(0, ge=0)
    review_from_surah: Optional[str] = Field(None, max_length=100)
    review_from_verse: Optional[int] = Field(None, ge=1)
    review_to_surah: Optional[str] = Field(None, max_length=100)
    review_to_verse: Optional[int] = Field(None, ge=1)
    review_mistakes: int = Field(0, ge=0)
    attendance_status: AttendanceStatus = AttendanceStatus.PRESENT
    performance: Optional[PerformanceLevel] = None
    listener_type: Optional[ListenerType] = None
    listener_id: Optional[UUID] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_attendance_consistency(self) -> "DailyRecordCreate":
        for field in ("hifz_from_surah", "hifz_to_surah", "review_from_surah", "review_to_surah"):
            value = getattr(self, field)
            if value is not None:
                setattr(self, field, value.strip() or None)
        if self.attendance_status != AttendanceStatus.PRESENT:
            carries_data = any(getattr(self, f) is not None for f in _HIFZ_FIELDS + _REVIEW_FIELDS)
            if carries_data or self.hifz_mistakes or self.review_mistakes:
                raise ValueError("An absent record cannot carry memorization or review data")
            if any(getattr(self, f) is not None for f in _SESSION_FIELDS):
                raise ValueError("An absent record cannot carry a performance or listener")
        if (self.hifz_from_surah is None) != (self.hifz_to_surah is None):
            raise ValueError("A memorization range needs both a start and an end surah")
        if (self.review_from_surah is None) != (self.review_to_surah is None):
            raise ValueError("A review range needs both a start and an end surah")
        return self


class DailyRecordResponse(BaseModel):
    id: UUID
    student_id: UUID
    record_date: date
    hifz_from_surah: Optional[str] = None
    hifz_from_verse: Optional[int] = None
    hifz_to_surah: Optional[str] = None
    hifz_to_verse: Optional[int] = None
    hifz_mistakes: int
    review_from_surah: Optional[str] = None
    review_from_verse: Optional[int] = None
    review_to_surah: Optional[str] = None
    review_to_verse: Optional[int] = None
    review_mistakes: int
    # Decoded leniently from the stored integer codes
    attendance: AttendanceStatus
    performance_level: Optional[PerformanceLevel] = None
    listener: Optional[ListenerType] = None
    listener_id: Optional[UUID] = None
    notes: Optional[str] = None
    has_hifz: bool
    has_review: bool
    is_present: bool
    created_at: datetime

    class Config:
        from_attributes = True


class MonthlyReport(BaseModel):
    student_id: UUID
    year: int
    month: int
    days_in_month: int
    total_records: int
    present_days: int
    absent_days: int
    hifz_days: int
    review_days: int
    attendance_rate: float
    verses_memorized: int
    average_hifz_mistakes: float
    performance_distribution: Dict[str, int] = Field(default_factory=dict)


class MonthlyOverviewItem(BaseModel):
    student_id: UUID
    student_name: str
    report: MonthlyReport


class DailyStats(BaseModel):
    day: date
    total_students: int
    present: int
    absent: int
    total_records: int
    hifz: int
