from typing import Optional

from pydantic import BaseModel

from qari.api.v1.records.schemas import DailyRecordResponse
from qari.api.v1.students.schemas import StudentResponse
from qari.auth.schemas import AccountInfo
from qari.core.enums import ApprovalState


class StudentToday(BaseModel):
    """A student with their record for today, if one was entered."""

    student: StudentResponse
    record: Optional[DailyRecordResponse] = None


class AccountStatus(BaseModel):
    account: AccountInfo
    approval_state: ApprovalState
