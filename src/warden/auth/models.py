"""
Credential store data models.

Data classes for panel users and roles.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from .permissions import PermissionSet


@dataclass
class User:
    """
    Panel user account.

    Attributes:
        username: Unique, immutable identifier
        password_hash: Bcrypt hashed password
        role_id: Role this user holds
        token_version: Bumped on password/role change and logout; tokens
            carrying an older value no longer validate
        created_at: Account creation timestamp
        last_login: Last successful login
    """
    username: str
    password_hash: str
    role_id: str
    token_version: int
    created_at: datetime
    last_login: Optional[datetime] = None

    def to_public_dict(self) -> Dict[str, Any]:
        """User fields that are safe to return to clients (no hash)."""
        return {
            "username": self.username,
            "roleId": self.role_id,
            "createdAt": self.created_at.isoformat(),
            "lastLogin": self.last_login.isoformat() if self.last_login else None,
        }


@dataclass
class Role:
    """
    User role for RBAC.

    Attributes:
        role_id: Unique role identifier (e.g., "admin", "viewer")
        name: Display name
        description: Human-readable description
        permissions: Granted permissions
        is_system: Built-in roles cannot be deleted
        color: Display color
        created_at: Creation timestamp
        updated_at: Last modification timestamp
    """
    role_id: str
    name: str
    description: str
    permissions: PermissionSet
    is_system: bool
    color: Optional[str]
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.role_id,
            "name": self.name,
            "description": self.description,
            "permissions": self.permissions.to_list(),
            "isSystem": self.is_system,
            "color": self.color,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
