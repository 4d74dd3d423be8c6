"""
Student in the Quran circle with their current position in the mushaf.
parent_id / teacher_id carry no database foreign key: the links are kept
consistent by the account removal cascade (unlink, never delete).
"""

import uuid
from datetime import date

from sqlalchemy import Column, Date, Integer, String, Text, Uuid

from qari.db.session import Base

DEFAULT_SURAH = "الفاتحة"


class Student(Base):
    __tablename__ = "students"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    age = Column(Integer, nullable=False, default=0)
    parent_id = Column(Uuid, nullable=True, index=True)
    teacher_id = Column(Uuid, nullable=True, index=True)
    juz_number = Column(Integer, nullable=False, default=1)
    surah_name = Column(String(100), nullable=False, default=DEFAULT_SURAH)
    verse_number = Column(Integer, nullable=False, default=1)
    enrollment_date = Column(Date, nullable=False, default=date.today)
    photo_url = Column(String(1024), nullable=True)
    notes = Column(Text, nullable=True)
