"""
Role-based access guards.
"""

from typing import List
from fastapi import Depends
from trust_backend.app.models.enums import UserRole
from trust_backend.app.core.dependencies import get_current_user
from trust_backend.app.core.exceptions import InsufficientPermissionsError

# Role groups used by the trust account routers
READ_ROLES = [UserRole.ADMIN, UserRole.ACCOUNTANT, UserRole.SALES_AGENT]
FINANCE_ROLES = [UserRole.ADMIN, UserRole.ACCOUNTANT]


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/{trust_account_id}/close")
        async def close(current_user: dict = Depends(require_role(FINANCE_ROLES))):
            ...

    Raises:
        InsufficientPermissionsError 403 if the token role is missing,
        unknown or not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        try:
            user_role = UserRole(current_user.get("role"))
        except ValueError:
            raise InsufficientPermissionsError("Invalid role in token")

        if user_role not in allowed_roles:
            raise InsufficientPermissionsError(
                f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker
