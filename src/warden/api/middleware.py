"""
Request middleware: CORS, error mapping, bearer-token authentication, and
the ``require_permission`` route decorator.
"""

import functools
from typing import Awaitable, Callable, FrozenSet, Iterable

from aiohttp import web
from loguru import logger

from ..auth.permissions import PermissionLike, permission_name
from ..errors import (
    InvalidCredentials,
    InvalidTicket,
    InvalidToken,
    PermissionDeniedError,
    RateLimited,
    RejectedInput,
    RoleError,
    RoleNotFound,
    TicketStoreFull,
    UserError,
    UserNotFound,
)
from .keys import MANAGER_KEY

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

# Reachable without a bearer token
PUBLIC_PATHS: FrozenSet[str] = frozenset({
    "/api/health",
    "/api/auth/login",
    "/api/auth/refresh",
})


def error_response(message: str, status: int, **extra) -> web.Response:
    return web.json_response({"success": False, "error": message, **extra}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Map core exceptions to HTTP responses. Internals never reach the client."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except (RejectedInput, UserError, RoleError) as e:
        return error_response(str(e), 400)
    except (InvalidToken, InvalidCredentials, InvalidTicket) as e:
        response = error_response(str(e), 401)
        response.headers["WWW-Authenticate"] = "Bearer"
        return response
    except PermissionDeniedError as e:
        return error_response(
            "Insufficient permissions",
            403,
            required=e.required_permission,
        )
    except (UserNotFound, RoleNotFound) as e:
        return error_response(str(e), 404)
    except RateLimited as e:
        response = error_response(str(e), 429)
        response.headers["Retry-After"] = str(e.retry_after)
        return response
    except TicketStoreFull as e:
        return error_response(str(e), 503)
    except Exception:
        logger.exception(f"Unhandled error on {request.method} {request.path}")
        return error_response("Internal server error", 500)


def _bearer_token(request: web.Request) -> str:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return ""
    return auth_header[7:].strip()  # Remove 'Bearer ' prefix


@web.middleware
async def auth_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """
    Authenticate every API request outside PUBLIC_PATHS.

    Sets ``request["user"]`` to the token's username.

    Raises:
        InvalidToken: Missing, malformed, expired or revoked token
    """
    if request.method == "OPTIONS" or request.path in PUBLIC_PATHS or not request.path.startswith("/api/"):
        return await handler(request)

    token = _bearer_token(request)
    if not token:
        raise InvalidToken()

    payload = request.app[MANAGER_KEY].authenticate(token)
    request["user"] = payload.username
    return await handler(request)


def require_permission(*permissions: PermissionLike, any_of: bool = False) -> Callable[[Handler], Handler]:
    """
    Route decorator requiring permissions of the authenticated user.

    Args:
        permissions: Permissions to require
        any_of: Require at least one instead of all of them

    Raises:
        PermissionDeniedError: If the user's role does not grant them
    """
    names = [permission_name(p) for p in permissions]

    def decorator(handler: Handler) -> Handler:
        @functools.wraps(handler)
        async def wrapper(request: web.Request) -> web.StreamResponse:
            username = request.get("user")
            if not username:
                raise InvalidToken()

            resolver = request.app[MANAGER_KEY].resolver
            allowed = resolver.check_any(username, *names) if any_of else resolver.check_all(username, *names)
            if not allowed:
                logger.warning(f"Permission denied for {username!r} on {request.method} {request.path}")
                raise PermissionDeniedError(username, ", ".join(names))

            return await handler(request)
        return wrapper
    return decorator


def cors_middleware(allowed_origins: Iterable[str]):
    """
    Build a CORS middleware for the configured origins.

    ``*`` allows every origin. Requests from other origins get no CORS headers.
    """
    origins = {o.strip() for o in allowed_origins if o.strip()}
    allow_all = "*" in origins

    @web.middleware
    async def middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        if request.method == "OPTIONS":
            # Preflight request
            response: web.StreamResponse = web.Response(status=204)
        else:
            response = await handler(request)

        origin = request.headers.get("Origin")
        if origin and (allow_all or origin in origins):
            response.headers["Access-Control-Allow-Origin"] = "*" if allow_all else origin
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
            if not allow_all:
                response.headers["Vary"] = "Origin"
        return response

    return middleware
