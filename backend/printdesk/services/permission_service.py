# Overview: Role-based permission checks for users.

"""
Permission Checking

WHY: Routes and the production-eligibility gate ask one question: does this
user hold this permission code? Roles map to permission sets in
permissions.DEFAULT_ROLE_PERMISSIONS.

DESIGN PRINCIPLES:
- Fail closed: unknown roles, inactive users and unknown codes are denied
- Denials are logged; grants are not
"""

import logging

from ..permissions import ALL_PERMISSION_CODES, DEFAULT_ROLE_PERMISSIONS


logger = logging.getLogger(__name__)


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission."""
    pass


def get_user_permissions(user) -> set[str]:
    if user is None or not user.is_active:
        return set()
    return set(DEFAULT_ROLE_PERMISSIONS.get(user.role, set()))


def has_permission(user, permission_code: str) -> bool:
    if permission_code not in ALL_PERMISSION_CODES:
        return False
    return permission_code in get_user_permissions(user)


def require_permission(user, permission_code: str, resource: str | None = None) -> None:
    """
    Raises:
        PermissionDeniedError: user lacks the permission
    """
    if has_permission(user, permission_code):
        return
    logger.warning(
        "Permission denied: user=%s role=%s permission=%s resource=%s",
        getattr(user, "id", None), getattr(user, "role", None), permission_code, resource,
    )
    raise PermissionDeniedError(f"Missing permission: {permission_code}")
