"""
OEE Monitor - Permission System

This module defines the permission system for role-based access control
in the OEE Monitor API. It handles user roles, permissions,
and authorization checks.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Set

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import structlog

from oee_monitor.auth.jwt_handler import JWTError, verify_access_token
from oee_monitor.utils.exceptions import AuthenticationError

logger = structlog.get_logger()

# Security scheme
security = HTTPBearer()


class UserRole(str, Enum):
    """User role enumeration."""
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    OPERATOR = "operator"
    VIEWER = "viewer"


class Permission(str, Enum):
    """Permission enumeration."""
    # Production intervals
    PRODUCTION_READ = "production:read"
    PRODUCTION_WRITE = "production:write"
    PRODUCTION_DELETE = "production:delete"

    # OEE and history
    OEE_READ = "oee:read"
    OEE_CALCULATE = "oee:calculate"
    ANALYTICS_READ = "analytics:read"

    # Alerts
    ALERTS_READ = "alerts:read"
    ALERTS_EVALUATE = "alerts:evaluate"

    # System configuration (alert thresholds)
    SYSTEM_CONFIG = "system:config"


ROLE_PERMISSIONS: Dict[UserRole, Set[Permission]] = {
    UserRole.ADMIN: set(Permission),
    UserRole.SUPERVISOR: {
        Permission.PRODUCTION_READ,
        Permission.PRODUCTION_WRITE,
        Permission.PRODUCTION_DELETE,
        Permission.OEE_READ,
        Permission.OEE_CALCULATE,
        Permission.ANALYTICS_READ,
        Permission.ALERTS_READ,
        Permission.ALERTS_EVALUATE,
    },
    UserRole.OPERATOR: {
        Permission.PRODUCTION_READ,
        Permission.PRODUCTION_WRITE,
        Permission.OEE_READ,
        Permission.OEE_CALCULATE,
        Permission.ALERTS_READ,
    },
    UserRole.VIEWER: {
        Permission.PRODUCTION_READ,
        Permission.OEE_READ,
        Permission.ANALYTICS_READ,
        Permission.ALERTS_READ,
    },
}


class UserContext:
    """User context for authorization."""

    def __init__(self, user_id: str, role: UserRole, permissions: Set[Permission],
                 additional_data: Optional[Dict[str, Any]] = None):
        self.user_id = user_id
        self.role = role
        self.permissions = permissions
        self.additional_data = additional_data or {}

    def has_permission(self, permission: Permission) -> bool:
        """Check if user has a specific permission."""
        return permission in self.permissions

    def has_any_permission(self, permissions: List[Permission]) -> bool:
        """Check if user has any of the specified permissions."""
        return any(permission in self.permissions for permission in permissions)

    def is_role(self, role: UserRole) -> bool:
        return self.role == role


def get_user_permissions(role: UserRole) -> Set[Permission]:
    """Get permissions for a specific role."""
    return ROLE_PERMISSIONS.get(role, set())


def create_user_context(user_data: Dict[str, Any]) -> UserContext:
    """Create user context from token claims."""
    user_id = user_data.get("user_id") or user_data.get("sub")
    role_str = user_data.get("role")

    if not user_id:
        raise AuthenticationError("Missing user ID in token")

    if not role_str:
        raise AuthenticationError("Missing role in token")

    try:
        role = UserRole(role_str)
    except ValueError:
        raise AuthenticationError(f"Invalid role: {role_str}")

    return UserContext(
        user_id=user_id,
        role=role,
        permissions=get_user_permissions(role),
        additional_data=user_data
    )


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> UserContext:
    """Get current user from JWT token."""
    try:
        payload = verify_access_token(credentials.credentials)
    except JWTError as e:
        logger.warning("JWT authentication failed", error=str(e))
        raise AuthenticationError("Invalid or expired token")

    user_context = create_user_context(payload)
    logger.debug("User authenticated", user_id=user_context.user_id, role=user_context.role)
    return user_context

