from fastapi import Depends, HTTPException, status

from qari.auth.dependencies import get_current_account
from qari.core.enums import AccountRole
from qari.core.models import Account


AWAITING_APPROVAL_MESSAGE = "Your account is awaiting approval by an administrator."


async def require_approved(
    account: Account = Depends(get_current_account),
) -> Account:
    """Require an approved account. Pending and rejected accounts may only use the waiting-room endpoints."""
    if not account.approved:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=AWAITING_APPROVAL_MESSAGE,
        )
    return account


def require_roles(*roles: AccountRole):
    """
    Dependency factory restricting an endpoint to approved accounts of the given roles.

    Example:
        Depends(require_roles(AccountRole.TEACHER))
    """
    allowed = {r.value for r in roles}

    async def _checker(account: Account = Depends(require_approved)) -> Account:
        if account.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return account

    return _checker


async def require_admin(
    account: Account = Depends(require_roles(AccountRole.TEACHER)),
) -> Account:
    """Require an approved teacher holding admin rights (reviews requests, manages accounts)."""
    if not account.admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only an administrator can perform this action",
        )
    return account
