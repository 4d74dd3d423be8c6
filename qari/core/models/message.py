"""Chat message between two accounts, optionally about one student."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Text, Uuid

from qari.core.models.base import utcnow
from qari.db.session import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sender_id = Column(Uuid, ForeignKey("accounts.id"), nullable=False, index=True)
    receiver_id = Column(Uuid, ForeignKey("accounts.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)
    is_read = Column(Boolean, nullable=False, default=False)
    student_id = Column(Uuid, nullable=True)
