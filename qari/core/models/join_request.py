"""
Join request: raised at signup for every non-bootstrap account.
Status moves pending -> accepted | rejected exactly once.
"""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Uuid

from qari.core.enums import JoinRequestStatus
from qari.core.models.base import utcnow
from qari.db.session import Base


class JoinRequest(Base):
    __tablename__ = "join_requests"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id = Column(Uuid, ForeignKey("accounts.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    age = Column(Integer, nullable=True)  # student requests only
    status = Column(String(20), nullable=False, default=JoinRequestStatus.PENDING.value, index=True)
    reviewed_by = Column(Uuid, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
