"""
JWT token generation and validation.

Access and refresh tokens carry the user's token version. A token is only
valid while that version equals the live value in the credential store, so
bumping the version (logout, password or role change) revokes every token
issued before it. There is no blacklist.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Protocol, Union

import jwt
from loguru import logger

from ..config import MIN_SECRET_BYTES
from ..errors import ConfigurationInsecure, UserNotFound

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 15
REFRESH_TOKEN_EXPIRE_DAYS = 7

REQUIRED_CLAIMS = ["exp", "iat", "sub"]


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass
class TokenPayload:
    """
    Decoded and validated JWT payload.

    Attributes:
        username: Subject of the token
        token_version: Version the token was issued under
        kind: Token kind ("access" or "refresh")
        exp: Expiration timestamp
        iat: Issued at timestamp
        jti: JWT ID
    """
    username: str
    token_version: int
    kind: TokenKind
    exp: datetime
    iat: datetime
    jti: str


class TokenVersionStore(Protocol):
    def get_token_version(self, username: str) -> Optional[int]: ...

    def bump_token_version(self, username: str) -> int: ...


class JWTHandler:
    """
    JWT token handler.

    Creates and validates JWT tokens for authentication.
    """

    def __init__(
        self,
        secret_key: str,
        store: TokenVersionStore,
        access_ttl: Union[int, float, timedelta] = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
        refresh_ttl: Union[int, float, timedelta] = timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS),
    ):
        """
        Initialize handler.

        Args:
            secret_key: Secret key for signing tokens (at least 32 bytes)
            store: Credential store holding live token versions
            access_ttl: Access token lifetime (seconds or timedelta)
            refresh_ttl: Refresh token lifetime (seconds or timedelta)

        Raises:
            ConfigurationInsecure: If the secret is missing or too short
        """
        if not secret_key or len(secret_key.encode("utf-8")) < MIN_SECRET_BYTES:
            raise ConfigurationInsecure([f"JWT secret must be at least {MIN_SECRET_BYTES} bytes"])

        self._secret_key = secret_key
        self.store = store
        self.access_ttl = access_ttl if isinstance(access_ttl, timedelta) else timedelta(seconds=access_ttl)
        self.refresh_ttl = refresh_ttl if isinstance(refresh_ttl, timedelta) else timedelta(seconds=refresh_ttl)

    def _issue(self, username: str, kind: TokenKind, lifetime: timedelta) -> str:
        version = self.store.get_token_version(username)
        if version is None:
            raise UserNotFound(username)

        now = datetime.now(timezone.utc)
        payload = {
            "sub": username,
            "ver": version,
            "type": kind.value,
            "iat": int(now.timestamp()),
            "exp": int((now + lifetime).timestamp()),
            "jti": secrets.token_urlsafe(16),
        }

        token = jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)
        logger.debug(f"{kind.value.capitalize()} token created for user {username!r}")
        return token

    def issue_access_token(self, username: str) -> str:
        """
        Create JWT access token.

        Raises:
            UserNotFound: If the username no longer exists
        """
        return self._issue(username, TokenKind.ACCESS, self.access_ttl)

    def issue_refresh_token(self, username: str) -> str:
        """
        Create refresh token (long-lived).

        Raises:
            UserNotFound: If the username no longer exists
        """
        return self._issue(username, TokenKind.REFRESH, self.refresh_ttl)

    def validate(self, token: str, expected_kind: TokenKind = TokenKind.ACCESS) -> Optional[TokenPayload]:
        """
        Verify and decode JWT token.

        Checks signature, expiry, token kind and the live token version.
        Callers cannot tell which check failed.

        Args:
            token: JWT token string
            expected_kind: Kind the caller is about to use the token as

        Returns:
            TokenPayload if valid, None if invalid
        """
        if not isinstance(token, str) or not token:
            return None

        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError:
            logger.debug("Token has expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.debug(f"Invalid token: {type(e).__name__}")
            return None

        if payload.get("type") != TokenKind(expected_kind).value:
            logger.debug("Token kind mismatch")
            return None

        username = payload["sub"]
        version = payload.get("ver")
        if not isinstance(username, str) or not isinstance(version, int) or isinstance(version, bool):
            return None

        # Always a live read; a cached version would let revoked tokens through
        live_version = self.store.get_token_version(username)
        if live_version is None or live_version != version:
            logger.debug(f"Stale token version for user {username!r}")
            return None

        return TokenPayload(
            username=username,
            token_version=version,
            kind=TokenKind(payload["type"]),
            exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            jti=str(payload.get("jti", "")),
        )

    def invalidate_all(self, username: str) -> int:
        """
        Revoke every outstanding token for a user.

        Returns:
            The user's new token version

        Raises:
            UserNotFound: If the user does not exist
        """
        version = self.store.bump_token_version(username)
        logger.info(f"All tokens invalidated for user {username!r}")
        return version
