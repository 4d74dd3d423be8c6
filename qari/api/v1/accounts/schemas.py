from uuid import UUID

from pydantic import BaseModel

from qari.core.enums import AccountRole


class AdminStatusUpdate(BaseModel):
    admin: bool


class AccountRemovalResponse(BaseModel):
    account_id: UUID
    role: AccountRole
    students_unlinked: int
    messages_deleted: int
