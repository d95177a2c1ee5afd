"""
Role management endpoints.
"""

from aiohttp import web
from loguru import logger

from ..auth.permissions import Permission, permission_catalogue
from .keys import MANAGER_KEY
from .middleware import require_permission
from .schemas import CreateRoleRequest, UpdateRoleRequest, parse_body

routes = web.RouteTableDef()


@routes.get("/api/roles")
@require_permission(Permission.ROLES_VIEW)
async def handle_list_roles(request: web.Request) -> web.Response:
    roles = request.app[MANAGER_KEY].list_roles()
    return web.json_response({"roles": [r.to_dict() for r in roles]})


@routes.get("/api/roles/permissions")
@require_permission(Permission.ROLES_VIEW)
async def handle_permission_catalogue(request: web.Request) -> web.Response:
    return web.json_response({"permissions": permission_catalogue()})


@routes.post("/api/roles")
@require_permission(Permission.ROLES_MANAGE)
async def handle_create_role(request: web.Request) -> web.Response:
    body = await parse_body(request, CreateRoleRequest)
    role = request.app[MANAGER_KEY].create_role(
        body.id,
        body.name,
        body.permissions,
        description=body.description,
        color=body.color,
    )
    logger.info(f"Role {role.role_id!r} created by {request['user']!r}")
    return web.json_response({"success": True, "role": role.to_dict()}, status=201)


@routes.put("/api/roles/{role_id}")
@require_permission(Permission.ROLES_MANAGE)
async def handle_update_role(request: web.Request) -> web.Response:
    body = await parse_body(request, UpdateRoleRequest)
    role = request.app[MANAGER_KEY].update_role(
        request.match_info["role_id"],
        name=body.name,
        description=body.description,
        permissions=body.permissions,
        color=body.color,
    )
    logger.info(f"Role {role.role_id!r} updated by {request['user']!r}")
    return web.json_response({"success": True, "role": role.to_dict()})


@routes.delete("/api/roles/{role_id}")
@require_permission(Permission.ROLES_MANAGE)
async def handle_delete_role(request: web.Request) -> web.Response:
    role_id = request.match_info["role_id"]
    request.app[MANAGER_KEY].delete_role(role_id)
    logger.info(f"Role {role_id!r} deleted by {request['user']!r}")
    return web.json_response({"success": True})
