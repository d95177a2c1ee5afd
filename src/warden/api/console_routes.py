"""
Console endpoints: log tail and command execution.
"""

from aiohttp import web
from loguru import logger

from ..auth.permissions import Permission
from ..security.command_guard import ensure_command
from .keys import CONTAINER_KEY
from .middleware import require_permission
from .schemas import CommandRequest, parse_body

routes = web.RouteTableDef()

DEFAULT_TAIL = 100
MAX_TAIL = 10_000


def _parse_tail(raw: str) -> int:
    """0 means all lines; anything else is clamped to 1..MAX_TAIL."""
    try:
        tail = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_TAIL
    if tail == 0:
        return 0
    return min(max(tail, 1), MAX_TAIL)


@routes.get("/api/console/logs")
@require_permission(Permission.CONSOLE_VIEW)
async def handle_logs(request: web.Request) -> web.Response:
    tail = _parse_tail(request.query.get("tail", str(DEFAULT_TAIL)))
    lines = await request.app[CONTAINER_KEY].get_logs(tail)
    return web.json_response({"logs": lines, "count": len(lines)})


@routes.post("/api/console/command")
@require_permission(Permission.CONSOLE_EXECUTE)
async def handle_command(request: web.Request) -> web.Response:
    body = await parse_body(request, CommandRequest)
    command = ensure_command(body.command)

    logger.info(f"Console command from {request['user']!r}: {command!r}")
    result = await request.app[CONTAINER_KEY].exec_command(command)

    return web.json_response({
        "success": result.success,
        "command": command,
        "output": result.output,
        "error": result.error or None,
    })
