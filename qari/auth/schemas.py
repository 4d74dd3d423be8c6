from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, model_validator

from qari.core.enums import AccountRole, ApprovalState


class AuthResult(BaseModel):
    """Outcome of a successful sign-up or sign-in: the identity plus a fresh session."""

    identity_id: UUID
    email: str
    session_id: UUID
    access_token: str
    refresh_token: str


class CurrentIdentity(BaseModel):
    """Authenticated identity resolved from an access token."""

    id: UUID
    email: str
    session_id: UUID


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: AccountRole
    name: str = Field(..., min_length=1, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    age: Optional[int] = Field(None, ge=0, le=120, description="Student signups only")

    @model_validator(mode="after")
    def normalize_profile(self) -> "RegisterRequest":
        self.name = self.name.strip()
        if not self.name:
            raise ValueError("name must not be blank")
        if self.phone is not None:
            self.phone = self.phone.strip() or None
        if self.role == AccountRole.STUDENT and self.age is None:
            self.age = 0
        if self.role != AccountRole.STUDENT:
            self.age = None
        return self


class RegisterResponse(BaseModel):
    account_id: UUID
    role: AccountRole
    approved: bool
    admin: bool
    recovered: bool = False  # True when an existing identity was signed in instead of created
    join_request_id: Optional[UUID] = None
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    role: AccountRole = Field(..., description="Portal the user is signing in to")


class AccountInfo(BaseModel):
    id: UUID
    role: AccountRole
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    approved: bool
    rejected: bool
    admin: bool

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    account: AccountInfo
    approval_state: ApprovalState


class RefreshRequest(BaseModel):
    refresh_token: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
