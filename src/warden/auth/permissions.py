"""
Permission catalogue and Role-Based Access Control (RBAC) for the panel.

This module provides:
- The catalogue of panel permissions
- PermissionSet, a role's grants with an explicit "all permissions" variant
- The built-in system roles
- PermissionResolver, which answers allow/deny against the live store

Role grants are always read from the store at check time. A role edit is
visible to every holder of that role on their next request.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Protocol, Set, Union

from loguru import logger

from ..errors import PermissionDeniedError


class Permission(str, Enum):
    """
    Enum of all permissions in the panel.

    Each permission gates a group of routes or a streaming action.
    """
    # Dashboard
    DASHBOARD_VIEW = "dashboard.view"
    DASHBOARD_STATS = "dashboard.stats"

    # Server
    SERVER_VIEW_STATUS = "server.view_status"
    SERVER_START = "server.start"
    SERVER_STOP = "server.stop"
    SERVER_RESTART = "server.restart"
    SERVER_QUICK_SETTINGS = "server.quick_settings"

    # Console
    CONSOLE_VIEW = "console.view"           # Read logs, open the stream
    CONSOLE_EXECUTE = "console.execute"     # Send commands

    # Performance
    PERFORMANCE_VIEW = "performance.view"

    # Players
    PLAYERS_VIEW = "players.view"
    PLAYERS_EDIT = "players.edit"
    PLAYERS_KICK = "players.kick"
    PLAYERS_BAN = "players.ban"
    PLAYERS_UNBAN = "players.unban"
    PLAYERS_WHITELIST = "players.whitelist"
    PLAYERS_OP = "players.op"
    PLAYERS_PERMISSIONS = "players.permissions"
    PLAYERS_TELEPORT = "players.teleport"
    PLAYERS_KILL = "players.kill"
    PLAYERS_RESPAWN = "players.respawn"
    PLAYERS_GAMEMODE = "players.gamemode"
    PLAYERS_GIVE = "players.give"
    PLAYERS_HEAL = "players.heal"
    PLAYERS_EFFECTS = "players.effects"
    PLAYERS_CLEAR_INVENTORY = "players.clear_inventory"
    PLAYERS_MESSAGE = "players.message"

    # Chat
    CHAT_VIEW = "chat.view"
    CHAT_SEND = "chat.send"

    # Backups
    BACKUPS_VIEW = "backups.view"
    BACKUPS_CREATE = "backups.create"
    BACKUPS_RESTORE = "backups.restore"
    BACKUPS_DELETE = "backups.delete"
    BACKUPS_DOWNLOAD = "backups.download"

    # Scheduler
    SCHEDULER_VIEW = "scheduler.view"
    SCHEDULER_EDIT = "scheduler.edit"

    # Worlds
    WORLDS_VIEW = "worlds.view"
    WORLDS_MANAGE = "worlds.manage"

    # Mods
    MODS_VIEW = "mods.view"
    MODS_INSTALL = "mods.install"
    MODS_DELETE = "mods.delete"
    MODS_CONFIG = "mods.config"
    MODS_TOGGLE = "mods.toggle"

    # Plugins
    PLUGINS_VIEW = "plugins.view"
    PLUGINS_INSTALL = "plugins.install"
    PLUGINS_DELETE = "plugins.delete"
    PLUGINS_CONFIG = "plugins.config"
    PLUGINS_TOGGLE = "plugins.toggle"

    # Config files
    CONFIG_VIEW = "config.view"
    CONFIG_EDIT = "config.edit"

    # Assets
    ASSETS_VIEW = "assets.view"
    ASSETS_MANAGE = "assets.manage"

    # Panel users and roles
    USERS_VIEW = "users.view"
    USERS_CREATE = "users.create"
    USERS_EDIT = "users.edit"
    USERS_DELETE = "users.delete"
    ROLES_VIEW = "roles.view"
    ROLES_MANAGE = "roles.manage"

    # Activity log
    ACTIVITY_VIEW = "activity.view"
    ACTIVITY_CLEAR = "activity.clear"

    # Game server authentication
    HYTALE_AUTH_MANAGE = "hytale_auth.manage"

    # Panel settings
    SETTINGS_VIEW = "settings.view"
    SETTINGS_EDIT = "settings.edit"

    # Native updates
    UPDATES_VIEW = "updates.view"
    UPDATES_CHECK = "updates.check"
    UPDATES_DOWNLOAD = "updates.download"
    UPDATES_APPLY = "updates.apply"
    UPDATES_CONFIG = "updates.config"


PERMISSION_DESCRIPTIONS: Dict[Permission, str] = {
    Permission.DASHBOARD_VIEW: "View dashboard",
    Permission.DASHBOARD_STATS: "View dashboard statistics",
    Permission.SERVER_VIEW_STATUS: "View server status",
    Permission.SERVER_START: "Start server",
    Permission.SERVER_STOP: "Stop server",
    Permission.SERVER_RESTART: "Restart server",
    Permission.SERVER_QUICK_SETTINGS: "Edit quick settings",
    Permission.CONSOLE_VIEW: "View console",
    Permission.CONSOLE_EXECUTE: "Execute console commands",
    Permission.PERFORMANCE_VIEW: "View performance metrics",
    Permission.PLAYERS_VIEW: "View player list",
    Permission.PLAYERS_EDIT: "Edit player data",
    Permission.PLAYERS_KICK: "Kick players",
    Permission.PLAYERS_BAN: "Ban players",
    Permission.PLAYERS_UNBAN: "Unban players",
    Permission.PLAYERS_WHITELIST: "Manage whitelist",
    Permission.PLAYERS_OP: "Manage operator status",
    Permission.PLAYERS_PERMISSIONS: "Manage player permissions",
    Permission.PLAYERS_TELEPORT: "Teleport players",
    Permission.PLAYERS_KILL: "Kill players",
    Permission.PLAYERS_RESPAWN: "Respawn players",
    Permission.PLAYERS_GAMEMODE: "Change game mode",
    Permission.PLAYERS_GIVE: "Give items",
    Permission.PLAYERS_HEAL: "Heal players",
    Permission.PLAYERS_EFFECTS: "Manage effects",
    Permission.PLAYERS_CLEAR_INVENTORY: "Clear inventory",
    Permission.PLAYERS_MESSAGE: "Send messages",
    Permission.CHAT_VIEW: "View chat",
    Permission.CHAT_SEND: "Send chat messages",
    Permission.BACKUPS_VIEW: "View backups",
    Permission.BACKUPS_CREATE: "Create backups",
    Permission.BACKUPS_RESTORE: "Restore backups",
    Permission.BACKUPS_DELETE: "Delete backups",
    Permission.BACKUPS_DOWNLOAD: "Download backups",
    Permission.SCHEDULER_VIEW: "View scheduler",
    Permission.SCHEDULER_EDIT: "Edit scheduler",
    Permission.WORLDS_VIEW: "View worlds",
    Permission.WORLDS_MANAGE: "Manage worlds",
    Permission.MODS_VIEW: "View mods",
    Permission.MODS_INSTALL: "Install mods",
    Permission.MODS_DELETE: "Delete mods",
    Permission.MODS_CONFIG: "Edit mod configuration",
    Permission.MODS_TOGGLE: "Enable/disable mods",
    Permission.PLUGINS_VIEW: "View plugins",
    Permission.PLUGINS_INSTALL: "Install plugins",
    Permission.PLUGINS_DELETE: "Delete plugins",
    Permission.PLUGINS_CONFIG: "Edit plugin configuration",
    Permission.PLUGINS_TOGGLE: "Enable/disable plugins",
    Permission.CONFIG_VIEW: "View configuration",
    Permission.CONFIG_EDIT: "Edit configuration",
    Permission.ASSETS_VIEW: "View assets",
    Permission.ASSETS_MANAGE: "Manage assets",
    Permission.USERS_VIEW: "View users",
    Permission.USERS_CREATE: "Create users",
    Permission.USERS_EDIT: "Edit users",
    Permission.USERS_DELETE: "Delete users",
    Permission.ROLES_VIEW: "View roles",
    Permission.ROLES_MANAGE: "Manage roles",
    Permission.ACTIVITY_VIEW: "View activity log",
    Permission.ACTIVITY_CLEAR: "Clear activity log",
    Permission.HYTALE_AUTH_MANAGE: "Manage game server authentication",
    Permission.SETTINGS_VIEW: "View settings",
    Permission.SETTINGS_EDIT: "Edit settings",
    Permission.UPDATES_VIEW: "View update status",
    Permission.UPDATES_CHECK: "Check for updates",
    Permission.UPDATES_DOWNLOAD: "Download updates",
    Permission.UPDATES_APPLY: "Apply updates (restart server)",
    Permission.UPDATES_CONFIG: "Configure auto-update settings",
}

ALL_PERMISSIONS: FrozenSet[str] = frozenset(p.value for p in Permission)

# Serialized form of the "all permissions" grant
WILDCARD = "*"

PermissionLike = Union[Permission, str]


def permission_name(permission: PermissionLike) -> str:
    """Plain string form of a permission."""
    return permission.value if isinstance(permission, Permission) else permission


@dataclass(frozen=True)
class PermissionSet:
    """
    Permissions granted by a role.

    Either every permission (``grants_all``) or an explicit set. The ``*``
    string only appears in :meth:`to_list` / :meth:`from_list`.

    Attributes:
        grants_all: Whether the set grants every permission unconditionally
        permissions: Explicit grants (empty when grants_all)
    """
    grants_all: bool = False
    permissions: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def all(cls) -> "PermissionSet":
        return cls(grants_all=True)

    @classmethod
    def of(cls, *permissions: PermissionLike) -> "PermissionSet":
        return cls(permissions=frozenset(permission_name(p) for p in permissions))

    @classmethod
    def from_list(cls, entries: Iterable[str]) -> "PermissionSet":
        """Parse the stored/serialized list form."""
        entries = list(entries)
        if WILDCARD in entries:
            return cls.all()
        return cls(permissions=frozenset(permission_name(e) for e in entries))

    def to_list(self) -> List[str]:
        """Serialized list form, ``["*"]`` for the all-permissions set."""
        if self.grants_all:
            return [WILDCARD]
        return sorted(self.permissions)

    def grants(self, permission: PermissionLike) -> bool:
        name = permission_name(permission)
        if not name:
            return False
        if self.grants_all:
            return True
        return name in self.permissions

    def expand(self) -> Set[str]:
        """Concrete permission names, the full catalogue for grants_all."""
        if self.grants_all:
            return set(ALL_PERMISSIONS)
        return set(self.permissions)

    def unknown(self) -> Set[str]:
        """Grants that are not in the catalogue."""
        return set(self.permissions) - ALL_PERMISSIONS


@dataclass(frozen=True)
class RoleTemplate:
    """Definition of a built-in role, seeded into the store on first start."""
    role_id: str
    name: str
    description: str
    color: str
    permissions: PermissionSet


ADMIN_ROLE_ID = "admin"
DEFAULT_ROLE_ID = "viewer"

DEFAULT_ROLES: List[RoleTemplate] = [
    RoleTemplate(
        role_id=ADMIN_ROLE_ID,
        name="Administrator",
        description="Full access to all features",
        color="#ef4444",
        permissions=PermissionSet.all(),
    ),
    RoleTemplate(
        role_id="moderator",
        name="Moderator",
        description="Player management and chat moderation",
        color="#3b82f6",
        permissions=PermissionSet.of(
            Permission.DASHBOARD_VIEW,
            Permission.DASHBOARD_STATS,
            Permission.SERVER_VIEW_STATUS,
            Permission.CONSOLE_VIEW,
            Permission.PERFORMANCE_VIEW,
            Permission.PLAYERS_VIEW,
            Permission.PLAYERS_KICK,
            Permission.PLAYERS_BAN,
            Permission.PLAYERS_UNBAN,
            Permission.PLAYERS_WHITELIST,
            Permission.CHAT_VIEW,
            Permission.CHAT_SEND,
            Permission.ACTIVITY_VIEW,
        ),
    ),
    RoleTemplate(
        role_id="operator",
        name="Operator",
        description="Server management and technical tasks",
        color="#22c55e",
        permissions=PermissionSet.of(
            Permission.DASHBOARD_VIEW,
            Permission.DASHBOARD_STATS,
            Permission.SERVER_VIEW_STATUS,
            Permission.SERVER_START,
            Permission.SERVER_STOP,
            Permission.SERVER_RESTART,
            Permission.SERVER_QUICK_SETTINGS,
            Permission.CONSOLE_VIEW,
            Permission.CONSOLE_EXECUTE,
            Permission.PERFORMANCE_VIEW,
            Permission.PLAYERS_VIEW,
            Permission.PLAYERS_KICK,
            Permission.PLAYERS_OP,
            Permission.CHAT_VIEW,
            Permission.CHAT_SEND,
            Permission.BACKUPS_VIEW,
            Permission.BACKUPS_CREATE,
            Permission.BACKUPS_RESTORE,
            Permission.SCHEDULER_VIEW,
            Permission.SCHEDULER_EDIT,
            Permission.WORLDS_VIEW,
            Permission.WORLDS_MANAGE,
            Permission.MODS_VIEW,
            Permission.MODS_INSTALL,
            Permission.MODS_CONFIG,
            Permission.MODS_TOGGLE,
            Permission.PLUGINS_VIEW,
            Permission.PLUGINS_INSTALL,
            Permission.PLUGINS_CONFIG,
            Permission.PLUGINS_TOGGLE,
            Permission.CONFIG_VIEW,
            Permission.CONFIG_EDIT,
            Permission.ACTIVITY_VIEW,
        ),
    ),
    RoleTemplate(
        role_id=DEFAULT_ROLE_ID,
        name="Viewer",
        description="Read-only access to basic information",
        color="#6b7280",
        permissions=PermissionSet.of(
            Permission.DASHBOARD_VIEW,
            Permission.DASHBOARD_STATS,
            Permission.SERVER_VIEW_STATUS,
            Permission.CONSOLE_VIEW,
            Permission.PERFORMANCE_VIEW,
            Permission.PLAYERS_VIEW,
            Permission.CHAT_VIEW,
            Permission.BACKUPS_VIEW,
            Permission.SCHEDULER_VIEW,
            Permission.WORLDS_VIEW,
            Permission.MODS_VIEW,
            Permission.PLUGINS_VIEW,
            Permission.CONFIG_VIEW,
            Permission.ASSETS_VIEW,
            Permission.ACTIVITY_VIEW,
        ),
    ),
]

SYSTEM_ROLE_IDS: FrozenSet[str] = frozenset(r.role_id for r in DEFAULT_ROLES)


def permission_catalogue() -> List[Dict[str, str]]:
    """Catalogue entries for display, grouped by category prefix."""
    return [
        {
            "id": p.value,
            "category": p.value.split(".", 1)[0],
            "description": PERMISSION_DESCRIPTIONS.get(p, p.value),
        }
        for p in Permission
    ]


class RoleStore(Protocol):
    """What the resolver needs from the credential store."""

    def get_user(self, username: str): ...

    def get_role(self, role_id: str): ...


class PermissionResolver:
    """
    Checks if a user has permission to perform an action.

    Every call looks up the user and then the user's role in the store.
    Unknown users, users whose role no longer exists and empty permission
    strings are all denied.
    """

    def __init__(self, store: RoleStore):
        """
        Initialize resolver.

        Args:
            store: Credential store exposing get_user / get_role
        """
        self.store = store

    def _permission_set(self, username: str) -> Optional[PermissionSet]:
        if not username:
            return None
        user = self.store.get_user(username)
        if user is None:
            return None
        role = self.store.get_role(user.role_id)
        if role is None:
            logger.warning(f"User {username!r} references missing role {user.role_id!r}")
            return None
        return role.permissions

    def check(self, username: str, required: PermissionLike) -> bool:
        """
        Check if a user holds a permission.

        Args:
            username: User to check
            required: Permission that is required

        Returns:
            bool: True if the user's role grants the permission
        """
        if not permission_name(required):
            return False
        permissions = self._permission_set(username)
        return permissions is not None and permissions.grants(required)

    def check_all(self, username: str, *required: PermissionLike) -> bool:
        """True if the user holds every listed permission (AND)."""
        if not required:
            return False
        permissions = self._permission_set(username)
        return permissions is not None and all(permissions.grants(p) for p in required)

    def check_any(self, username: str, *required: PermissionLike) -> bool:
        """True if the user holds at least one listed permission (OR)."""
        permissions = self._permission_set(username)
        return permissions is not None and any(permissions.grants(p) for p in required)

    def list_permissions(self, username: str) -> Set[str]:
        """
        Get all permissions for a user.

        Returns:
            Set of permission names; the full catalogue for an all-permissions
            role, empty for unknown users
        """
        permissions = self._permission_set(username)
        if permissions is None:
            return set()
        return permissions.expand()

    def require(self, username: str, required: PermissionLike) -> None:
        """
        Require a permission, raising PermissionDeniedError if not authorized.

        Raises:
            PermissionDeniedError: If the user doesn't have the permission
        """
        if not self.check(username, required):
            raise PermissionDeniedError(username, permission_name(required))
