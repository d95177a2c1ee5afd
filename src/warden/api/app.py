"""
aiohttp application factory for the panel REST API.
"""

import asyncio
import contextlib
from typing import AsyncIterator, Optional

from aiohttp import web
from loguru import logger

from ..auth.tickets import TicketBroker
from ..auth.user_manager import UserManager
from ..collaborators import ContainerController, NullContainerController
from ..config import Settings
from . import auth_routes, console_routes, file_routes, role_routes
from .keys import CONTAINER_KEY, LIMITS_KEY, MANAGER_KEY, SETTINGS_KEY, TICKETS_KEY, RateLimits
from .middleware import auth_middleware, cors_middleware, error_middleware


async def health_check(request: web.Request) -> web.Response:
    """Health check endpoint."""
    return web.json_response({"status": "healthy", "service": "panel-warden"})


async def ticket_sweeper(app: web.Application) -> AsyncIterator[None]:
    """Run the expired-ticket sweeper for the lifetime of the app."""
    tickets = app[TICKETS_KEY]
    task = asyncio.create_task(tickets.run_sweeper(app[SETTINGS_KEY].ticket_sweep_interval))
    yield
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
    tickets.clear()


def create_app(
    settings: Settings,
    manager: Optional[UserManager] = None,
    tickets: Optional[TicketBroker] = None,
    container: Optional[ContainerController] = None,
) -> web.Application:
    """
    Build the API application.

    Args:
        settings: Runtime configuration
        manager: User manager (built from settings when omitted)
        tickets: Ticket broker shared with the stream server
        container: Container controller collaborator

    Returns:
        Configured aiohttp Application
    """
    if manager is None:
        manager = UserManager.from_settings(settings)
    if tickets is None:
        tickets = TicketBroker(ttl=settings.ticket_ttl, max_outstanding=settings.max_outstanding_tickets)
    if container is None:
        logger.warning("No container controller configured; console endpoints will be inert")
        container = NullContainerController()

    origins = [o for o in settings.cors_origins.split(",") if o.strip()]
    app = web.Application(middlewares=[cors_middleware(origins), error_middleware, auth_middleware])

    app[SETTINGS_KEY] = settings
    app[MANAGER_KEY] = manager
    app[TICKETS_KEY] = tickets
    app[CONTAINER_KEY] = container
    app[LIMITS_KEY] = RateLimits.from_settings(settings)

    app.router.add_get("/api/health", health_check)
    app.add_routes(auth_routes.routes)
    app.add_routes(role_routes.routes)
    app.add_routes(console_routes.routes)
    app.add_routes(file_routes.routes)

    app.cleanup_ctx.append(ticket_sweeper)
    return app
