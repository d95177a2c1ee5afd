"""
Typed application keys shared by the route modules.
"""

from dataclasses import dataclass

from aiohttp import web

from ..auth.tickets import TicketBroker
from ..auth.user_manager import UserManager
from ..collaborators import ContainerController
from ..config import Settings
from .ratelimit import SlidingWindowLimiter


@dataclass
class RateLimits:
    """Per-endpoint limiters."""
    login: SlidingWindowLimiter
    refresh: SlidingWindowLimiter
    tickets: SlidingWindowLimiter

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateLimits":
        return cls(
            login=SlidingWindowLimiter(
                settings.login_attempts_per_window,
                settings.login_window_seconds,
                message="Too many login attempts, please try again later",
            ),
            refresh=SlidingWindowLimiter(
                settings.refresh_per_minute,
                60,
                message="Too many refresh requests, please slow down",
            ),
            tickets=SlidingWindowLimiter(
                settings.tickets_per_minute,
                60,
                message="Too many WebSocket ticket requests",
            ),
        )


SETTINGS_KEY = web.AppKey("settings", Settings)
MANAGER_KEY = web.AppKey("user_manager", UserManager)
TICKETS_KEY = web.AppKey("tickets", TicketBroker)
CONTAINER_KEY = web.AppKey("container", ContainerController)
LIMITS_KEY = web.AppKey("rate_limits", RateLimits)
