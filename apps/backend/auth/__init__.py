"""
Authentication & Authorization
==============================
Password hashing, session tokens, the current-user dependency and RBAC.
"""

from .dependencies import (
    clear_session_cookie,
    get_current_user,
    require_system_admin,
    set_session_cookie,
    user_from_token,
)
from .passwords import hash_password, validate_password_strength, verify_password
from .rbac import (
    ROLE_HIERARCHY,
    OrgAccess,
    ProjectAccess,
    can_manage_user,
    check_project_access,
    check_role_change,
    get_membership,
    has_role,
    require_org_role,
    require_project_role,
)
from .tokens import create_session_token, decode_session_token

__all__ = [
    "clear_session_cookie",
    "get_current_user",
    "require_system_admin",
    "set_session_cookie",
    "user_from_token",
    "hash_password",
    "validate_password_strength",
    "verify_password",
    "ROLE_HIERARCHY",
    "OrgAccess",
    "ProjectAccess",
    "can_manage_user",
    "check_project_access",
    "check_role_change",
    "get_membership",
    "has_role",
    "require_org_role",
    "require_project_role",
    "create_session_token",
    "decode_session_token",
]
