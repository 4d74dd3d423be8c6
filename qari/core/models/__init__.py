from qari.core.models.account import Account
from qari.core.models.daily_record import DailyRecord
from qari.core.models.join_request import JoinRequest
from qari.core.models.message import Message
from qari.core.models.student import Student

__all__ = [
    "Account",
    "DailyRecord",
    "JoinRequest",
    "Message",
    "Student",
]
