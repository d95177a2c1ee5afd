"""
User authentication manager.

Combines the credential store, the token service and the permission resolver
into the login / refresh / logout flow and the user and role management rules.
"""

import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from loguru import logger

from ..config import Settings
from ..errors import InvalidCredentials, InvalidToken, UserError, UserNotFound
from .database import UserDatabase
from .jwt_handler import JWTHandler, TokenKind, TokenPayload
from .models import Role, User
from .permissions import DEFAULT_ROLE_ID, PermissionResolver, PermissionSet


@dataclass
class LoginResult:
    """Tokens and role information returned by a successful login."""
    access_token: str
    refresh_token: str
    role: str
    permissions: List[str] = field(default_factory=list)
    token_type: str = "bearer"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "role": self.role,
            "permissions": self.permissions,
        }


class UserManager:
    """
    User authentication and authorization manager.

    Combines user database and JWT handling to provide:
    - User login/logout and token refresh
    - Access token authentication
    - User and role administration
    """

    def __init__(
        self,
        db: UserDatabase,
        jwt: JWTHandler,
        resolver: Optional[PermissionResolver] = None,
    ):
        """
        Initialize manager.

        Args:
            db: Credential store
            jwt: Token service bound to the same store
            resolver: Permission resolver (defaults to one over ``db``)
        """
        self.db = db
        self.jwt = jwt
        self.resolver = resolver or PermissionResolver(db)
        self._dummy_hash: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "UserManager":
        """Build the store, token service and resolver from settings."""
        db = UserDatabase(settings.db_path, bcrypt_rounds=settings.bcrypt_rounds)
        jwt = JWTHandler(
            settings.resolve_secret(),
            db,
            access_ttl=settings.access_token_ttl,
            refresh_ttl=settings.refresh_token_ttl,
        )
        return cls(db, jwt)

    # ========================================================================
    # Authentication
    # ========================================================================

    def _dummy(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = self.db.hash_password(secrets.token_urlsafe(24))
        return self._dummy_hash

    def verify_credentials(self, username: str, password: str) -> User:
        """
        Check a username/password pair.

        Unknown users still pay for one bcrypt comparison so response time
        does not reveal whether the account exists.

        Returns:
            The authenticated User

        Raises:
            InvalidCredentials: Unknown user or wrong password
        """
        user = self.db.get_user(username)
        if user is None:
            self.db.check_password(self._dummy(), password)
            logger.warning(f"Login failed: {username!r}")
            raise InvalidCredentials()

        if not self.db.verify_password(user, password):
            logger.warning(f"Login failed: {username!r}")
            raise InvalidCredentials()

        return user

    def login(self, username: str, password: str) -> LoginResult:
        """
        Authenticate user and return tokens.

        Raises:
            InvalidCredentials: Unknown user or wrong password
        """
        user = self.verify_credentials(username, password)
        self.db.record_login(user.username)

        result = LoginResult(
            access_token=self.jwt.issue_access_token(user.username),
            refresh_token=self.jwt.issue_refresh_token(user.username),
            role=user.role_id,
            permissions=sorted(self.resolver.list_permissions(user.username)),
        )

        logger.info(f"User logged in: {user.username!r}")
        return result

    def refresh(self, refresh_token: str) -> Tuple[str, str]:
        """
        Exchange a refresh token for a new token pair.

        Returns:
            (access_token, refresh_token)

        Raises:
            InvalidToken: If the refresh token does not validate
        """
        payload = self.jwt.validate(refresh_token, TokenKind.REFRESH)
        if payload is None:
            raise InvalidToken()

        try:
            access_token = self.jwt.issue_access_token(payload.username)
            new_refresh_token = self.jwt.issue_refresh_token(payload.username)
        except UserNotFound:
            raise InvalidToken() from None

        logger.debug(f"Tokens refreshed for user {payload.username!r}")
        return access_token, new_refresh_token

    def authenticate(self, access_token: str) -> TokenPayload:
        """
        Validate an access token.

        Raises:
            InvalidToken: If the token does not validate
        """
        payload = self.jwt.validate(access_token, TokenKind.ACCESS)
        if payload is None:
            raise InvalidToken()
        return payload

    def logout(self, username: str) -> None:
        """Invalidate every token the user holds."""
        self.jwt.invalidate_all(username)
        logger.info(f"User logged out: {username!r}")

    # ========================================================================
    # User administration
    # ========================================================================

    def list_users(self) -> List[User]:
        return self.db.list_users()

    def create_user(self, username: str, password: str, role_id: Optional[str] = None) -> User:
        return self.db.create_user(username, password, role_id or DEFAULT_ROLE_ID)

    def update_user(
        self,
        actor: str,
        username: str,
        password: Optional[str] = None,
        role_id: Optional[str] = None,
    ) -> User:
        """
        Change a user's password and/or role. Both invalidate the user's tokens.

        Args:
            actor: User performing the change
            username: User being changed

        Raises:
            UserError: Nothing to update, own role change, unacceptable password,
                or demoting the last administrator
            UserNotFound: If the user does not exist
            RoleNotFound: If the role does not exist
        """
        if not password and not role_id:
            raise UserError("Nothing to update")
        if role_id and username == actor:
            raise UserError("Cannot change your own role")
        self.db.update_user(username, new_password=password or None, role_id=role_id or None)

        user = self.db.get_user(username)
        if user is None:
            raise UserNotFound(username)
        return user

    def delete_user(self, actor: str, username: str) -> None:
        """
        Delete a user.

        Raises:
            UserError: Self-deletion or last administrator
            UserNotFound: If the user does not exist
        """
        if username == actor:
            raise UserError("Cannot delete your own account")
        if not self.db.delete_user(username):
            raise UserNotFound(username)
        logger.info(f"User {username!r} deleted by {actor!r}")

    # ========================================================================
    # Role administration
    # ========================================================================

    def list_roles(self) -> List[Role]:
        return self.db.list_roles()

    def create_role(
        self,
        role_id: str,
        name: str,
        permissions: Iterable[str],
        description: str = "",
        color: Optional[str] = None,
    ) -> Role:
        return self.db.create_role(
            role_id,
            name,
            PermissionSet.from_list(permissions),
            description=description,
            color=color,
        )

    def update_role(
        self,
        role_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        permissions: Optional[Iterable[str]] = None,
        color: Optional[str] = None,
    ) -> Role:
        return self.db.update_role_definition(
            role_id,
            name=name,
            description=description,
            permissions=PermissionSet.from_list(permissions) if permissions is not None else None,
            color=color,
        )

    def delete_role(self, role_id: str) -> None:
        self.db.delete_role(role_id)
