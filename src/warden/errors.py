"""
Exception hierarchy for the access-control core.

Authentication failures carry fixed, uniform messages so callers cannot tell
which check failed. Input rejections carry a reason that describes the rule
that was broken, never the payload itself.
"""

from typing import List, Optional


class WardenError(Exception):
    """Base exception for all warden errors."""
    pass


# =============================================================================
# Authentication / Authorization
# =============================================================================
class InvalidCredentials(WardenError):
    """Wrong username or password. Same message whether or not the user exists."""
    def __init__(self):
        super().__init__("Invalid credentials")


class InvalidToken(WardenError):
    """Any access/refresh token validation failure."""
    def __init__(self):
        super().__init__("Invalid or expired token")


class InvalidTicket(WardenError):
    """Absent, expired or already-consumed stream ticket."""
    def __init__(self):
        super().__init__("Invalid or expired ticket")


class PermissionDeniedError(WardenError):
    """
    Raised when a user attempts an action they don't have permission for.

    Attributes:
        username: The user who was denied
        required_permission: The permission that was required
    """

    def __init__(self, username: str, required_permission: Optional[str] = None):
        self.username = username
        self.required_permission = required_permission

        message = "Insufficient permissions"
        if required_permission:
            message += f" (requires: {required_permission})"

        super().__init__(message)


# =============================================================================
# Input Guards
# =============================================================================
class RejectedInput(WardenError):
    """A guard refused a user-supplied string. ``reason`` is safe to display."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


# =============================================================================
# Configuration
# =============================================================================
class ConfigurationInsecure(WardenError):
    """Startup detected a missing/weak secret or default credential."""
    def __init__(self, issues: List[str]):
        self.issues = list(issues)
        super().__init__("Insecure configuration: " + "; ".join(self.issues))


# =============================================================================
# Credential Store
# =============================================================================
class UserNotFound(WardenError):
    def __init__(self, username: str):
        self.username = username
        super().__init__("User not found")


class RoleNotFound(WardenError):
    def __init__(self, role_id: str):
        self.role_id = role_id
        super().__init__("Role not found")


class UserError(WardenError):
    """A user-management request broke a business rule."""
    pass


class RoleError(WardenError):
    """A role-management request broke a business rule."""
    pass


# =============================================================================
# Tickets / Rate limits
# =============================================================================
class TicketStoreFull(WardenError):
    """Too many outstanding stream tickets, even after sweeping expired ones."""
    def __init__(self):
        super().__init__("Too many outstanding tickets")


class RateLimited(WardenError):
    """
    A client exceeded a request budget.

    Attributes:
        retry_after: Seconds until the oldest counted request leaves the window
    """
    def __init__(self, message: str = "Too many requests", retry_after: int = 60):
        self.retry_after = retry_after
        super().__init__(message)
