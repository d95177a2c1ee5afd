"""
Authentication and authorization for the panel.

Credential store, permission resolver, token service and stream tickets.
"""

from .models import User, Role
from .database import UserDatabase
from .jwt_handler import JWTHandler, TokenKind, TokenPayload
from .tickets import Ticket, TicketBroker
from .user_manager import LoginResult, UserManager
from .permissions import (
    ADMIN_ROLE_ID,
    ALL_PERMISSIONS,
    DEFAULT_ROLE_ID,
    DEFAULT_ROLES,
    Permission,
    PermissionResolver,
    PermissionSet,
    permission_catalogue,
)

__all__ = [
    # Models and store
    "User",
    "Role",
    "UserDatabase",
    # Tokens and tickets
    "JWTHandler",
    "TokenKind",
    "TokenPayload",
    "Ticket",
    "TicketBroker",
    "LoginResult",
    "UserManager",
    # RBAC
    "ADMIN_ROLE_ID",
    "ALL_PERMISSIONS",
    "DEFAULT_ROLE_ID",
    "DEFAULT_ROLES",
    "Permission",
    "PermissionResolver",
    "PermissionSet",
    "permission_catalogue",
]
