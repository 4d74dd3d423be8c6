"""Account: the role-scoped profile of an identity. Primary key is the identity id."""

from sqlalchemy import Boolean, Column, DateTime, String, Uuid

from qari.core.enums import AccountRole, ApprovalState
from qari.core.models.base import utcnow
from qari.db.session import Base


class Account(Base):
    __tablename__ = "accounts"

    # Same value as identities.id (one-to-one, auth-derived key)
    id = Column(Uuid, primary_key=True)
    role = Column(String(20), nullable=False, index=True)  # teacher | parent | student
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    approved = Column(Boolean, nullable=False, default=False)
    rejected = Column(Boolean, nullable=False, default=False)
    # Only meaningful for teachers: may review requests and manage accounts
    admin = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    @property
    def approval_state(self) -> ApprovalState:
        if self.approved:
            return ApprovalState.APPROVED
        if self.rejected:
            return ApprovalState.REJECTED
        return ApprovalState.PENDING

    @property
    def is_teacher(self) -> bool:
        return self.role == AccountRole.TEACHER.value
