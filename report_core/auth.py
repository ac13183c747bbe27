"""
Authorization

User roles, report privileges, and the authorization gates the report
service checks before each operation. Authentication itself happens in
front of this application; requests arrive with the caller's identity and
role in headers.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from fastapi import HTTPException, Request, status

from .reports.exceptions import AuthorizationError

logger = logging.getLogger(__name__)

USER_HEADER = "X-Report-User"
ROLE_HEADER = "X-Report-Role"


class UserRole(Enum):
    """User roles for authorization"""
    NEW_USER = "new_user"    # No permissions - needs admin approval
    VIEWER = "viewer"        # Can browse report definitions
    OPERATOR = "operator"    # Can also run and render reports
    ADMIN = "admin"          # Full access - can manage definitions, macros, renderers


class Privilege(Enum):
    """Report privileges"""
    VIEW_REPORTS = "View Reports"
    RUN_REPORTS = "Run Reports"
    MANAGE_REPORTS = "Manage Reports"


ROLE_HIERARCHY = {
    UserRole.NEW_USER: 0,  # No permissions
    UserRole.VIEWER: 1,
    UserRole.OPERATOR: 2,
    UserRole.ADMIN: 3
}

# Minimum role holding each privilege
PRIVILEGE_ROLES = {
    Privilege.VIEW_REPORTS: UserRole.VIEWER,
    Privilege.RUN_REPORTS: UserRole.OPERATOR,
    Privilege.MANAGE_REPORTS: UserRole.ADMIN,
}


@dataclass
class UserSession:
    """Identity of the caller for one request"""
    username: str
    role: UserRole
    login_time: datetime = field(default_factory=datetime.now)

    def has_permission(self, required_role: UserRole) -> bool:
        """Check if user has required permission level"""
        return ROLE_HIERARCHY[self.role] >= ROLE_HIERARCHY[required_role]

    def has_privilege(self, privilege: Privilege) -> bool:
        return self.has_permission(PRIVILEGE_ROLES[privilege])

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses"""
        return {
            'username': self.username,
            'role': self.role.value,
            'login_time': self.login_time.isoformat()
        }


class AuthorizationGate(Protocol):
    """What the report service checks before each operation"""

    def check(self, privilege: Privilege) -> None:
        ...


class AllowAll:
    """Gate that grants every privilege; for trusted in-process callers"""

    def check(self, privilege: Privilege):
        return None


class SessionAuthorizer:
    """Gate backed by a user session's role"""

    def __init__(self, session: UserSession):
        self.session = session

    def check(self, privilege: Privilege):
        """
        Raises:
            AuthorizationError: If the session's role does not hold privilege
        """
        if not self.session.has_privilege(privilege):
            logger.warning(f"Denied '{privilege.value}' to {self.session.username} ({self.session.role.value})")
            raise AuthorizationError(privilege.value, self.session.username)


# ============================================================================
# FastAPI Dependencies
# ============================================================================

async def require_session(request: Request) -> UserSession:
    """
    FastAPI dependency resolving the caller's session from request headers

    Usage:
        @router.get("/api/reports/schemas")
        async def list_schemas(session: UserSession = Depends(require_session)):
            return {"user": session.username}
    """
    username = request.headers.get(USER_HEADER)
    if not username:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    role_value = request.headers.get(ROLE_HEADER, UserRole.VIEWER.value).lower()
    try:
        role = UserRole(role_value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unknown role: {role_value}"
        )
    return UserSession(username=username, role=role)


def get_authorizer(session: Optional[UserSession]) -> AuthorizationGate:
    """Gate for a session; AllowAll when there is none"""
    if session is None:
        return AllowAll()
    return SessionAuthorizer(session)
