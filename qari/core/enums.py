from enum import Enum, IntEnum
from typing import Any, Optional, Type, TypeVar


class AccountRole(str, Enum):
    TEACHER = "teacher"
    PARENT = "parent"
    STUDENT = "student"


class JoinRequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ReviewDecision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class ApprovalState(str, Enum):
    APPROVED = "approved"
    PENDING = "pending"
    REJECTED = "rejected"


# Categorical record fields are persisted as small integers. The integer value
# of each member is its stored code; bump ENUM_MAPPING_VERSION if codes change.
ENUM_MAPPING_VERSION = 1


class AttendanceStatus(IntEnum):
    PRESENT = 0
    ABSENT_EXCUSED = 1
    ABSENT_UNEXCUSED = 2


class PerformanceLevel(IntEnum):
    EXCELLENT = 0
    VERY_GOOD = 1
    GOOD = 2
    ACCEPTABLE = 3
    WEAK = 4


class ListenerType(IntEnum):
    SHEIKH = 0
    ANOTHER_SHEIKH = 1


E = TypeVar("E", bound=IntEnum)


def safe_enum_decode(enum_cls: Type[E], raw: Any, default: Optional[E] = None) -> Optional[E]:
    """
    Decode a stored integer into enum_cls without failing on legacy data.
    None or a non-integer yields `default`; an out-of-range integer yields the first member.
    """
    if raw is None or isinstance(raw, bool) or not isinstance(raw, int):
        return default
    members = list(enum_cls)
    if raw < 0 or raw >= len(members):
        return members[0]
    return enum_cls(raw)
