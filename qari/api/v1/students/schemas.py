from datetime import date
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from qari.core.models.student import DEFAULT_SURAH


class StudentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    age: int = Field(0, ge=0, le=120)
    parent_id: Optional[UUID] = None
    teacher_id: Optional[UUID] = Field(None, description="Defaults to the creating teacher")
    juz_number: int = Field(1, ge=1, le=30)
    surah_name: str = Field(DEFAULT_SURAH, min_length=1, max_length=100)
    verse_number: int = Field(1, ge=1)
    enrollment_date: Optional[date] = None
    photo_url: Optional[str] = Field(None, max_length=1024)
    notes: Optional[str] = None


class StudentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    age: Optional[int] = Field(None, ge=0, le=120)
    teacher_id: Optional[UUID] = None
    photo_url: Optional[str] = Field(None, max_length=1024)
    notes: Optional[str] = None


class ParentLink(BaseModel):
    parent_id: Optional[UUID] = Field(None, description="null unlinks the current parent")


class ProgressUpdate(BaseModel):
    juz_number: int = Field(..., ge=1, le=30)
    surah_name: str = Field(..., min_length=1, max_length=100)
    verse_number: int = Field(..., ge=1)


class StudentResponse(BaseModel):
    id: UUID
    name: str
    age: int
    parent_id: Optional[UUID] = None
    teacher_id: Optional[UUID] = None
    juz_number: int
    surah_name: str
    verse_number: int
    enrollment_date: date
    photo_url: Optional[str] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class StudentRemovalResponse(BaseModel):
    student_id: UUID
    records_deleted: int
