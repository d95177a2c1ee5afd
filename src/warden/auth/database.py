"""
SQLite credential store.

Thread-safe store for panel users and roles. Every operation opens its own
connection and runs under one ``threading.RLock``, so a write is visible to
the next read from any thread. Token versions are bumped in the same UPDATE
that changes a password or role, and a role's permission set lives in one
JSON column that is replaced as a whole.
"""

import json
import re
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional

import bcrypt
from loguru import logger

from ..errors import RoleError, RoleNotFound, UserError, UserNotFound
from .models import Role, User
from .permissions import ADMIN_ROLE_ID, DEFAULT_ROLE_ID, DEFAULT_ROLES, PermissionSet

USERNAME_RE = re.compile(r"^[A-Za-z0-9_-]{3,32}$")
ROLE_ID_RE = re.compile(r"^[a-z0-9_-]{2,32}$")
COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72  # bcrypt only reads the first 72 bytes
MAX_ROLE_NAME_LENGTH = 64
MAX_ROLE_DESCRIPTION_LENGTH = 256
DEFAULT_BCRYPT_ROUNDS = 12


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class UserDatabase:
    """
    Thread-safe credential store.

    Manages users and roles using SQLite.
    All operations are protected by threading.RLock for thread safety.
    """

    def __init__(self, db_path: Path, bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS):
        """
        Initialize database.

        Args:
            db_path: Path to SQLite database file
            bcrypt_rounds: bcrypt cost factor for new hashes
        """
        self.db_path = Path(db_path)
        self.bcrypt_rounds = bcrypt_rounds
        self._lock = threading.RLock()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Create tables if they don't exist and seed the system roles."""
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS roles (
                    role_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    color TEXT,
                    permissions TEXT NOT NULL,
                    is_system INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    username TEXT PRIMARY KEY,
                    password_hash TEXT NOT NULL,
                    role_id TEXT NOT NULL REFERENCES roles(role_id),
                    token_version INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    last_login TEXT
                )
            """)

            conn.execute("CREATE INDEX IF NOT EXISTS idx_users_role ON users(role_id)")

            now = _now().isoformat()
            for template in DEFAULT_ROLES:
                conn.execute("""
                    INSERT OR IGNORE INTO roles
                        (role_id, name, description, color, permissions, is_system, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, 1, ?, ?)
                """, (
                    template.role_id,
                    template.name,
                    template.description,
                    template.color,
                    json.dumps(template.permissions.to_list()),
                    now,
                    now,
                ))

        logger.info(f"User database initialized: {self.db_path}")

    # ========================================================================
    # Row mapping
    # ========================================================================

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            username=row["username"],
            password_hash=row["password_hash"],
            role_id=row["role_id"],
            token_version=row["token_version"],
            created_at=datetime.fromisoformat(row["created_at"]),
            last_login=_parse_time(row["last_login"]),
        )

    @staticmethod
    def _row_to_role(row: sqlite3.Row) -> Role:
        return Role(
            role_id=row["role_id"],
            name=row["name"],
            description=row["description"],
            permissions=PermissionSet.from_list(json.loads(row["permissions"])),
            is_system=bool(row["is_system"]),
            color=row["color"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _count_role(conn: sqlite3.Connection, role_id: str) -> int:
        return conn.execute("SELECT COUNT(*) FROM users WHERE role_id = ?", (role_id,)).fetchone()[0]

    # ========================================================================
    # Passwords
    # ========================================================================

    def hash_password(self, password: str) -> str:
        """
        Hash a new password.

        Raises:
            UserError: If the password is shorter than 8 characters or longer than 72 bytes
        """
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            raise UserError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        encoded = password.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            raise UserError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.bcrypt_rounds)).decode("utf-8")

    def check_password(self, password_hash: str, password: str) -> bool:
        """
        Verify a password against a stored hash.

        Returns:
            True if password matches, False otherwise
        """
        if not isinstance(password, str):
            return False
        encoded = password.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            return False
        try:
            return bcrypt.checkpw(encoded, password_hash.encode("utf-8"))
        except ValueError:
            logger.error("Stored password hash is malformed")
            return False

    def verify_password(self, user: User, password: str) -> bool:
        """Verify password against user's hash."""
        return self.check_password(user.password_hash, password)

    # ========================================================================
    # User Operations
    # ========================================================================

    def create_user(self, username: str, password: str, role_id: str = DEFAULT_ROLE_ID) -> User:
        """
        Create new user with hashed password.

        Args:
            username: Unique username (3-32 characters: letters, digits, _ or -)
            password: Plain text password (will be hashed)
            role_id: Role to assign

        Returns:
            Created User object

        Raises:
            UserError: Invalid username/password or username already exists
            RoleNotFound: If the role does not exist
        """
        if not isinstance(username, str) or not USERNAME_RE.match(username):
            raise UserError("Username must be 3-32 characters, alphanumeric with _ or -")

        password_hash = self.hash_password(password)
        user = User(
            username=username,
            password_hash=password_hash,
            role_id=role_id,
            token_version=0,
            created_at=_now(),
        )

        with self._lock, self._connect() as conn:
            if conn.execute("SELECT 1 FROM roles WHERE role_id = ?", (role_id,)).fetchone() is None:
                raise RoleNotFound(role_id)
            try:
                conn.execute("""
                    INSERT INTO users (username, password_hash, role_id, token_version, created_at)
                    VALUES (?, ?, ?, 0, ?)
                """, (user.username, user.password_hash, user.role_id, user.created_at.isoformat()))
            except sqlite3.IntegrityError:
                raise UserError("Username already exists") from None

        logger.info(f"User created: {username!r} with role: {role_id!r}")
        return user

    def get_user(self, username: str) -> Optional[User]:
        """
        Get user by username.

        Returns:
            User object if found, None otherwise
        """
        if not isinstance(username, str) or not username:
            return None
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE username = ?", (username,)).fetchone()
        return self._row_to_user(row) if row else None

    def list_users(self) -> List[User]:
        """Get all users, ordered by username."""
        with self._lock, self._connect() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY username").fetchall()
        return [self._row_to_user(row) for row in rows]

    def count_users(self) -> int:
        with self._lock, self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]

    def update_user(
        self,
        username: str,
        new_password: Optional[str] = None,
        role_id: Optional[str] = None,
    ) -> int:
        """
        Change a user's password and/or role and invalidate their tokens.

        Every check runs before anything is written, and both changes land in
        one statement with a single token version bump.

        Returns:
            The user's new token version

        Raises:
            UserNotFound: If the user does not exist
            RoleNotFound: If the role does not exist
            UserError: Unacceptable password, or this would leave no administrator
        """
        if new_password is None and role_id is None:
            raise UserError("Nothing to update")
        password_hash = self.hash_password(new_password) if new_password is not None else None

        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT role_id FROM users WHERE username = ?", (username,)).fetchone()
            if row is None:
                raise UserNotFound(username)
            if role_id is not None:
                if conn.execute("SELECT 1 FROM roles WHERE role_id = ?", (role_id,)).fetchone() is None:
                    raise RoleNotFound(role_id)
                if (row["role_id"] == ADMIN_ROLE_ID and role_id != ADMIN_ROLE_ID
                        and self._count_role(conn, ADMIN_ROLE_ID) <= 1):
                    raise UserError("Cannot demote the last administrator")

            conn.execute("""
                UPDATE users
                SET password_hash = COALESCE(?, password_hash),
                    role_id = COALESCE(?, role_id),
                    token_version = token_version + 1
                WHERE username = ?
            """, (password_hash, role_id, username))
            version = conn.execute(
                "SELECT token_version FROM users WHERE username = ?", (username,)
            ).fetchone()[0]

        if password_hash is not None:
            logger.info(f"Password changed for {username!r}, tokens invalidated")
        if role_id is not None:
            logger.info(f"Role of {username!r} changed to {role_id!r}, tokens invalidated")
        return version

    def update_password(self, username: str, new_password: str) -> int:
        """Replace a user's password. See ``update_user``."""
        return self.update_user(username, new_password=new_password)

    def update_role(self, username: str, role_id: str) -> int:
        """Assign a different role. See ``update_user``."""
        return self.update_user(username, role_id=role_id)

    def delete_user(self, username: str) -> bool:
        """
        Delete a user.

        Returns:
            True if deletion succeeded, False if the user does not exist

        Raises:
            UserError: If the user is the last administrator
        """
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT role_id FROM users WHERE username = ?", (username,)).fetchone()
            if row is None:
                return False
            if row["role_id"] == ADMIN_ROLE_ID and self._count_role(conn, ADMIN_ROLE_ID) <= 1:
                raise UserError("Cannot delete the last administrator")
            conn.execute("DELETE FROM users WHERE username = ?", (username,))

        logger.info(f"User deleted: {username!r}")
        return True

    def record_login(self, username: str) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("UPDATE users SET last_login = ? WHERE username = ?", (_now().isoformat(), username))

    # ========================================================================
    # Token versions
    # ========================================================================

    def get_token_version(self, username: str) -> Optional[int]:
        """Current token version, or None for unknown users."""
        if not isinstance(username, str) or not username:
            return None
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT token_version FROM users WHERE username = ?", (username,)).fetchone()
        return row[0] if row else None

    def bump_token_version(self, username: str) -> int:
        """
        Increment a user's token version.

        Returns:
            The new version

        Raises:
            UserNotFound: If the user does not exist
        """
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                "UPDATE users SET token_version = token_version + 1 WHERE username = ?", (username,)
            )
            if cursor.rowcount == 0:
                raise UserNotFound(username)
            return conn.execute(
                "SELECT token_version FROM users WHERE username = ?", (username,)
            ).fetchone()[0]

    # ========================================================================
    # Role Operations
    # ========================================================================

    def get_role(self, role_id: str) -> Optional[Role]:
        if not isinstance(role_id, str) or not role_id:
            return None
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT * FROM roles WHERE role_id = ?", (role_id,)).fetchone()
        return self._row_to_role(row) if row else None

    def list_roles(self) -> List[Role]:
        """System roles first, then custom roles by id."""
        with self._lock, self._connect() as conn:
            rows = conn.execute("SELECT * FROM roles ORDER BY is_system DESC, role_id").fetchall()
        return [self._row_to_role(row) for row in rows]

    @staticmethod
    def _validate_role_fields(
        name: str,
        description: str,
        permissions: PermissionSet,
        color: Optional[str],
    ) -> None:
        if not isinstance(name, str) or not name.strip() or len(name) > MAX_ROLE_NAME_LENGTH:
            raise RoleError(f"Role name must be 1-{MAX_ROLE_NAME_LENGTH} characters")
        if not isinstance(description, str) or len(description) > MAX_ROLE_DESCRIPTION_LENGTH:
            raise RoleError(f"Role description must be at most {MAX_ROLE_DESCRIPTION_LENGTH} characters")
        if permissions.unknown():
            raise RoleError("Role contains unknown permissions")
        if color is not None and not COLOR_RE.match(color):
            raise RoleError("Color must be a #rrggbb value")

    def create_role(
        self,
        role_id: str,
        name: str,
        permissions: PermissionSet,
        description: str = "",
        color: Optional[str] = None,
    ) -> Role:
        """
        Create a custom role.

        Raises:
            RoleError: Invalid fields or the role id is taken
        """
        if not isinstance(role_id, str) or not ROLE_ID_RE.match(role_id):
            raise RoleError("Role id must be 2-32 characters: lowercase letters, digits, _ or -")
        self._validate_role_fields(name, description, permissions, color)

        now = _now()
        role = Role(
            role_id=role_id,
            name=name.strip(),
            description=description,
            permissions=permissions,
            is_system=False,
            color=color,
            created_at=now,
            updated_at=now,
        )

        with self._lock, self._connect() as conn:
            try:
                conn.execute("""
                    INSERT INTO roles
                        (role_id, name, description, color, permissions, is_system, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, 0, ?, ?)
                """, (
                    role.role_id,
                    role.name,
                    role.description,
                    role.color,
                    json.dumps(role.permissions.to_list()),
                    now.isoformat(),
                    now.isoformat(),
                ))
            except sqlite3.IntegrityError:
                raise RoleError("Role already exists") from None

        logger.info(f"Role created: {role_id!r}")
        return role

    def update_role_definition(
        self,
        role_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        permissions: Optional[PermissionSet] = None,
        color: Optional[str] = None,
    ) -> Role:
        """
        Edit a role. Omitted fields keep their value.

        All fields, including the permission set, are written by one UPDATE.

        Raises:
            RoleNotFound: If the role does not exist
            RoleError: Invalid fields, or an attempt to narrow the administrator role
        """
        with self._lock:
            current = self.get_role(role_id)
            if current is None:
                raise RoleNotFound(role_id)
            if role_id == ADMIN_ROLE_ID and permissions is not None and not permissions.grants_all:
                raise RoleError("The administrator role must keep all permissions")

            updated = Role(
                role_id=current.role_id,
                name=name.strip() if name is not None else current.name,
                description=description if description is not None else current.description,
                permissions=permissions if permissions is not None else current.permissions,
                is_system=current.is_system,
                color=color if color is not None else current.color,
                created_at=current.created_at,
                updated_at=_now(),
            )
            self._validate_role_fields(updated.name, updated.description, updated.permissions, updated.color)

            with self._connect() as conn:
                conn.execute("""
                    UPDATE roles
                    SET name = ?, description = ?, color = ?, permissions = ?, updated_at = ?
                    WHERE role_id = ?
                """, (
                    updated.name,
                    updated.description,
                    updated.color,
                    json.dumps(updated.permissions.to_list()),
                    updated.updated_at.isoformat(),
                    role_id,
                ))

        logger.info(f"Role updated: {role_id!r}")
        return updated

    def delete_role(self, role_id: str) -> None:
        """
        Delete a custom role.

        Raises:
            RoleNotFound: If the role does not exist
            RoleError: System role, or role still assigned to users
        """
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT is_system FROM roles WHERE role_id = ?", (role_id,)).fetchone()
            if row is None:
                raise RoleNotFound(role_id)
            if row["is_system"]:
                raise RoleError("System roles cannot be deleted")
            in_use = self._count_role(conn, role_id)
            if in_use:
                raise RoleError(f"Role is assigned to {in_use} user(s)")
            conn.execute("DELETE FROM roles WHERE role_id = ?", (role_id,))

        logger.info(f"Role deleted: {role_id!r}")

    # ========================================================================
    # Bootstrap
    # ========================================================================

    def ensure_bootstrap_admin(self, username: str, password: str) -> Optional[User]:
        """
        Create the first administrator when the user table is empty.

        Returns:
            The created user, or None if users already exist or no
            credentials were configured
        """
        with self._lock:
            if self.count_users() > 0:
                return None
            if not username or not password:
                logger.warning("No users exist and no bootstrap administrator is configured")
                return None
            user = self.create_user(username, password, ADMIN_ROLE_ID)

        logger.info(f"Bootstrap administrator created: {username!r}")
        return user
