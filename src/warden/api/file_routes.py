"""
File endpoints. Every user-supplied path goes through the path guard and
every search expression through the pattern checker before any I/O.
"""

import asyncio
import os
from typing import FrozenSet

from aiohttp import web

from ..auth.permissions import Permission
from ..collaborators import read_text_file, search_files, write_text_file
from ..config import Settings
from ..errors import RejectedInput
from ..security.path_guard import get_real_path_if_safe, is_allowed_extension
from ..security.pattern_guard import compile_search_pattern
from .keys import SETTINGS_KEY
from .middleware import error_response, require_permission
from .schemas import FileWriteRequest, parse_body

routes = web.RouteTableDef()

EDITABLE_ROOTS: FrozenSet[str] = frozenset({"server", "mods", "plugins"})
EDITABLE_EXTENSIONS: FrozenSet[str] = frozenset({
    ".json", ".properties", ".yml", ".yaml", ".toml", ".txt", ".cfg", ".conf", ".ini",
})
DEFAULT_SEARCH_LIMIT = 100
MAX_SEARCH_LIMIT = 500


def _root_dir(settings: Settings, name: str, allowed: FrozenSet[str]) -> str:
    if name not in allowed:
        raise RejectedInput("Unknown file root")
    return str(settings.file_roots[name])


def _resolve_editable(settings: Settings, root_name: str, rel_path: str) -> str:
    """
    Resolve a config file path inside an editable root.

    Raises:
        RejectedInput: Unknown root, escaping path, or non-config file type
    """
    if not rel_path:
        raise RejectedInput("Path is required")
    root = _root_dir(settings, root_name, EDITABLE_ROOTS)

    real_path = get_real_path_if_safe(os.path.join(root, rel_path), [root])
    if real_path is None:
        raise RejectedInput("Path is outside the allowed directories")
    if not is_allowed_extension(real_path, EDITABLE_EXTENSIONS):
        raise RejectedInput("File type is not editable")
    return real_path


@routes.get("/api/files/read")
@require_permission(Permission.CONFIG_VIEW)
async def handle_read(request: web.Request) -> web.Response:
    settings = request.app[SETTINGS_KEY]
    rel_path = request.query.get("path", "")
    real_path = _resolve_editable(settings, request.query.get("root", "server"), rel_path)

    if not os.path.isfile(real_path):
        return error_response("File not found", 404)

    try:
        content = await asyncio.to_thread(read_text_file, real_path)
    except ValueError as e:
        raise RejectedInput(str(e)) from None

    return web.json_response({"path": rel_path, "content": content})


@routes.put("/api/files/write")
@require_permission(Permission.CONFIG_EDIT)
async def handle_write(request: web.Request) -> web.Response:
    settings = request.app[SETTINGS_KEY]
    body = await parse_body(request, FileWriteRequest)
    real_path = _resolve_editable(settings, body.root, body.path)

    if os.path.isdir(real_path):
        raise RejectedInput("Path is a directory")

    written = await asyncio.to_thread(write_text_file, real_path, body.content)
    return web.json_response({"success": True, "path": body.path, "bytes": written})


@routes.get("/api/files/search")
@require_permission(Permission.ASSETS_VIEW)
async def handle_search(request: web.Request) -> web.Response:
    settings = request.app[SETTINGS_KEY]
    mode = request.query.get("mode", "auto")
    pattern = compile_search_pattern(request.query.get("q", ""), mode)

    root = _root_dir(settings, request.query.get("root", "assets"), frozenset(settings.file_roots))
    real_root = get_real_path_if_safe(root, [root])
    if real_root is None or not os.path.isdir(real_root):
        return web.json_response({"results": [], "count": 0})

    try:
        limit = min(max(int(request.query.get("limit", DEFAULT_SEARCH_LIMIT)), 1), MAX_SEARCH_LIMIT)
    except ValueError:
        limit = DEFAULT_SEARCH_LIMIT

    results = await asyncio.to_thread(search_files, real_root, pattern, limit)
    return web.json_response({"results": results, "count": len(results)})
