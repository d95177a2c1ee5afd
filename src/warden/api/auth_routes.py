"""
Authentication and user management endpoints.

POST /api/auth/login       {"username", "password"} -> tokens, role, permissions
POST /api/auth/refresh     {"refresh_token"} -> new token pair
POST /api/auth/logout      invalidate every token of the caller
POST /api/auth/ws-ticket   single-use console stream ticket
GET  /api/auth/me          caller's role and permissions
/api/auth/users[/{username}]  user administration
"""

import asyncio

from aiohttp import web
from loguru import logger

from ..auth.permissions import Permission
from ..errors import InvalidCredentials, InvalidToken
from .keys import LIMITS_KEY, MANAGER_KEY, TICKETS_KEY
from .middleware import require_permission
from .schemas import CreateUserRequest, LoginRequest, RefreshRequest, UpdateUserRequest, parse_body

routes = web.RouteTableDef()


def _client_address(request: web.Request) -> str:
    return request.remote or "unknown"


@routes.post("/api/auth/login")
async def handle_login(request: web.Request) -> web.Response:
    """
    Handle login request.

    Only failed attempts count toward the per-address limit.
    """
    limiter = request.app[LIMITS_KEY].login
    address = _client_address(request)
    # Counted up front; given back unless the credentials were wrong
    stamp = limiter.reserve(address)
    failed = False

    try:
        body = await parse_body(request, LoginRequest)
        # bcrypt is slow on purpose; keep it off the event loop
        result = await asyncio.to_thread(request.app[MANAGER_KEY].login, body.username, body.password)
    except InvalidCredentials:
        failed = True
        raise
    finally:
        if not failed:
            limiter.release(address, stamp)

    return web.json_response(result.to_dict())


@routes.post("/api/auth/refresh")
async def handle_refresh(request: web.Request) -> web.Response:
    request.app[LIMITS_KEY].refresh.hit(_client_address(request))
    body = await parse_body(request, RefreshRequest)

    access_token, refresh_token = request.app[MANAGER_KEY].refresh(body.refresh_token)
    return web.json_response({
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer",
    })


@routes.post("/api/auth/logout")
async def handle_logout(request: web.Request) -> web.Response:
    request.app[MANAGER_KEY].logout(request["user"])
    return web.json_response({"success": True, "message": "Logged out successfully"})


@routes.post("/api/auth/ws-ticket")
@require_permission(Permission.CONSOLE_VIEW)
async def handle_ws_ticket(request: web.Request) -> web.Response:
    username = request["user"]
    request.app[LIMITS_KEY].tickets.hit(username)

    ticket = request.app[TICKETS_KEY].issue(username)
    return web.json_response({"ticket": ticket.ticket_id, "expiresIn": ticket.expires_in})


@routes.get("/api/auth/me")
async def handle_me(request: web.Request) -> web.Response:
    manager = request.app[MANAGER_KEY]
    user = manager.db.get_user(request["user"])
    if user is None:
        raise InvalidToken()

    return web.json_response({
        "username": user.username,
        "role": user.role_id,
        "permissions": sorted(manager.resolver.list_permissions(user.username)),
    })


# ============================================================================
# User management
# ============================================================================

@routes.get("/api/auth/users")
@require_permission(Permission.USERS_VIEW)
async def handle_list_users(request: web.Request) -> web.Response:
    users = request.app[MANAGER_KEY].list_users()
    return web.json_response({"users": [u.to_public_dict() for u in users]})


@routes.post("/api/auth/users")
@require_permission(Permission.USERS_CREATE)
async def handle_create_user(request: web.Request) -> web.Response:
    body = await parse_body(request, CreateUserRequest)
    manager = request.app[MANAGER_KEY]

    user = await asyncio.to_thread(manager.create_user, body.username, body.password, body.role_id)
    logger.info(f"User {user.username!r} created by {request['user']!r}")
    return web.json_response({"success": True, "user": user.to_public_dict()}, status=201)


@routes.put("/api/auth/users/{username}")
@require_permission(Permission.USERS_EDIT)
async def handle_update_user(request: web.Request) -> web.Response:
    body = await parse_body(request, UpdateUserRequest)
    manager = request.app[MANAGER_KEY]

    user = await asyncio.to_thread(
        manager.update_user,
        request["user"],
        request.match_info["username"],
        body.password,
        body.role_id,
    )
    return web.json_response({"success": True, "user": user.to_public_dict()})


@routes.delete("/api/auth/users/{username}")
@require_permission(Permission.USERS_DELETE)
async def handle_delete_user(request: web.Request) -> web.Response:
    request.app[MANAGER_KEY].delete_user(request["user"], request.match_info["username"])
    return web.json_response({"success": True})
