import re
from enum import Enum

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthErrorKind(str, Enum):
    EMAIL_ALREADY_IN_USE = "email-already-in-use"
    INVALID_CREDENTIALS = "invalid-credentials"
    USER_NOT_FOUND = "user-not-found"
    OTHER = "other"


_AUTH_ERROR_DEFAULTS = {
    AuthErrorKind.EMAIL_ALREADY_IN_USE: ("Email is already in use", status.HTTP_409_CONFLICT),
    AuthErrorKind.INVALID_CREDENTIALS: ("Invalid email or password", status.HTTP_401_UNAUTHORIZED),
    AuthErrorKind.USER_NOT_FOUND: ("Invalid email or password", status.HTTP_401_UNAUTHORIZED),
    AuthErrorKind.OTHER: ("Authentication failed", status.HTTP_400_BAD_REQUEST),
}


class AuthError(ServiceError):
    """Failure reported by the credential service."""

    def __init__(self, kind: AuthErrorKind, message: str = "") -> None:
        default_message, status_code = _AUTH_ERROR_DEFAULTS[kind]
        super().__init__(message or default_message, status_code)
        self.kind = kind


class ProfileMissing(ServiceError):
    """Authenticated identity has no account document: treated as a disabled account."""

    def __init__(self, message: str = "This account has been disabled or deleted. Please contact the administrator.") -> None:
        super().__init__(message, status.HTTP_403_FORBIDDEN)


class RoleMismatch(ServiceError):
    def __init__(self, message: str = "Account type does not match the selected portal") -> None:
        super().__init__(message, status.HTTP_403_FORBIDDEN)


class WriteFailure(ServiceError):
    """A single or batched store write failed."""

    def __init__(self, message: str = "Failed to save changes", status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(clean_error_message(message), status_code)

    @classmethod
    def from_exception(cls, action: str, exc: BaseException) -> "WriteFailure":
        detail = clean_error_message(str(exc))
        return cls(f"{action}: {detail}" if detail else action)


class LookupTimeout(ServiceError):
    def __init__(self, message: str = "Timed out while contacting the database") -> None:
        super().__init__(message, status.HTTP_504_GATEWAY_TIMEOUT)


# "Firestore (11.0.1):" / "sqlalchemy (2.0.25)" style version prefixes
_VERSION_PREFIX_RE = re.compile(r"\b[\w.\-]+ \(\d+\.\d+\.\d+\):?\s*")
# "[cloud_firestore/permission-denied]" -> "[permission-denied]"
_NAMESPACE_RE = re.compile(r"\[[\w.\-]+/")
# "(sqlite3.IntegrityError)" / "(psycopg.errors.UniqueViolation)"
_DRIVER_CLASS_RE = re.compile(r"\((?:[a-z_]\w*\.)+\w+\)\s*")
_JARGON_PREFIXES = ("Exception: ", "Error: ")


def clean_error_message(message: str) -> str:
    """Strip version numbers and internal namespaces from store/auth error text before display."""
    if not message:
        return ""
    cleaned = _VERSION_PREFIX_RE.sub("", message)
    cleaned = _NAMESPACE_RE.sub("[", cleaned)
    cleaned = _DRIVER_CLASS_RE.sub("", cleaned)
    for prefix in _JARGON_PREFIXES:
        cleaned = cleaned.replace(prefix, "")
    # Drop SQLAlchemy's trailing "[SQL: ...]" / "(Background on this error ...)" blocks
    cleaned = cleaned.split("\n[SQL:", 1)[0].split("\n(Background on this error", 1)[0]
    return cleaned.strip()
