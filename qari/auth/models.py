import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import relationship

from qari.core.models.base import utcnow
from qari.db.session import Base


class Identity(Base):
    """Credential record: an email/password pair that can sign in. Profile data lives in accounts."""

    __tablename__ = "identities"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # Stored lower-cased; lookups are case-insensitive
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    sessions = relationship(
        "AuthSession", back_populates="identity", cascade="all, delete-orphan"
    )


class AuthSession(Base):
    """One signed-in session. Access tokens reference it by id and die with it on sign-out."""

    __tablename__ = "auth_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    identity_id = Column(Uuid, ForeignKey("identities.id", ondelete="CASCADE"), nullable=False, index=True)
    refresh_token = Column(String(512), nullable=False, unique=True)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    identity = relationship("Identity", back_populates="sessions")

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None and self.expires_at > utcnow()
