"""
Console stream server.

Browsers open ``/api/console/ws?ticket=<id>`` with a ticket from
``POST /api/auth/ws-ticket``. The ticket is redeemed during the HTTP
handshake, before the upgrade, so an invalid ticket never gets a socket.

Once connected a client receives:
    {"type": "connected", "username": ...}
    {"type": "log", "line": ...}             (container log lines)
    {"type": "command_result", ...}          (after a command message)
    {"type": "error", "message": ...}

and may send:
    {"type": "command", "command": "/say hello"}
"""

import asyncio
import contextlib
import json
from http import HTTPStatus
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlsplit

from loguru import logger
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response

from ..auth.permissions import Permission, PermissionResolver
from ..auth.tickets import TicketBroker
from ..collaborators import ContainerController
from ..security.command_guard import validate_command

STREAM_PATH = "/api/console/ws"


class ConsoleStreamServer:
    """Ticket-authenticated WebSocket server for the live console."""

    def __init__(
        self,
        tickets: TicketBroker,
        resolver: PermissionResolver,
        container: ContainerController,
        host: str = "0.0.0.0",
        port: int = 18081,
    ):
        """
        Initialize server.

        Args:
            tickets: Broker shared with the REST API that issues the tickets
            resolver: Permission resolver for live checks
            container: Source of log lines and target of commands
            host: Interface to bind
            port: Port to bind (0 picks a free port)
        """
        self.tickets = tickets
        self.resolver = resolver
        self.container = container
        self.host = host
        self.port = port
        self._server: Optional[Server] = None

    # ========================================================================
    # Handshake
    # ========================================================================

    def process_request(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        """Redeem the handshake ticket; refuse the upgrade when it is not valid."""
        url = urlsplit(request.path)
        if url.path != STREAM_PATH:
            return connection.respond(HTTPStatus.NOT_FOUND, "Not found\n")

        ticket_id = parse_qs(url.query).get("ticket", [""])[0]
        username = self.tickets.redeem(ticket_id)
        if username is None:
            logger.warning(f"Stream handshake rejected from {connection.remote_address}: invalid ticket")
            return connection.respond(HTTPStatus.UNAUTHORIZED, "Invalid or expired ticket\n")

        if not self.resolver.check(username, Permission.CONSOLE_VIEW):
            logger.warning(f"Stream handshake rejected for {username!r}: console.view revoked")
            return connection.respond(HTTPStatus.FORBIDDEN, "Insufficient permissions\n")

        connection.username = username
        return None

    # ========================================================================
    # Session
    # ========================================================================

    async def _send(self, connection: ServerConnection, message: Dict[str, Any]) -> None:
        await connection.send(json.dumps(message))

    async def _send_error(self, connection: ServerConnection, message: str) -> None:
        await self._send(connection, {"type": "error", "message": message})

    async def _forward_logs(self, connection: ServerConnection) -> None:
        """Forward container log lines to the client."""
        try:
            async for line in self.container.follow_logs():
                await self._send(connection, {"type": "log", "line": line})
        except ConnectionClosed:
            pass

    async def _handle_message(self, connection: ServerConnection, username: str, raw: Any) -> None:
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, TypeError, UnicodeDecodeError):
            await self._send_error(connection, "Invalid JSON format")
            return

        if not isinstance(message, dict) or message.get("type") != "command":
            await self._send_error(connection, "Unsupported message type")
            return

        # Live check: the role may have changed since the handshake
        if not self.resolver.check(username, Permission.CONSOLE_EXECUTE):
            logger.warning(f"Stream command denied for {username!r}")
            await self._send_error(connection, "Insufficient permissions")
            return

        result = validate_command(message.get("command"))
        if not result.ok:
            logger.warning(f"Rejected console command from {username!r}: {result.reason}")
            await self._send_error(connection, result.reason)
            return

        logger.info(f"Console command from {username!r}: {result.value!r}")
        outcome = await self.container.exec_command(result.value)
        await self._send(connection, {
            "type": "command_result",
            "command": result.value,
            "success": outcome.success,
            "output": outcome.output,
            "error": outcome.error or None,
        })

    async def handler(self, connection: ServerConnection) -> None:
        """Handle one accepted stream connection."""
        username = connection.username
        logger.info(f"Console stream opened for {username!r}")

        forwarder = asyncio.create_task(self._forward_logs(connection))
        try:
            await self._send(connection, {"type": "connected", "username": username})
            async for raw in connection:
                await self._handle_message(connection, username, raw)
        except ConnectionClosed:
            pass
        finally:
            forwarder.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await forwarder
            logger.info(f"Console stream closed for {username!r}")

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self) -> None:
        self._server = await serve(
            self.handler,
            self.host,
            self.port,
            process_request=self.process_request,
        )
        logger.info(f"Console stream server running on {self.host}:{self.bound_port}")

    @property
    def bound_port(self) -> int:
        """Actual listening port (useful when started with port 0)."""
        if self._server is None:
            return self.port
        return next(iter(self._server.sockets)).getsockname()[1]

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("Console stream server stopped")
