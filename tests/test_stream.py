"""
Tests for the ticket-authenticated console stream.
"""

import asyncio
import json

import pytest
from websockets.asyncio.client import connect
from websockets.exceptions import InvalidStatus

from warden.auth.permissions import PermissionSet
from warden.stream import STREAM_PATH, ConsoleStreamServer


@pytest.fixture
async def stream_server(tickets, manager, container, users):
    server = ConsoleStreamServer(tickets, manager.resolver, container, host="127.0.0.1", port=0)
    await server.start()
    yield server
    await server.stop()


def _url(server, ticket_id: str, path: str = STREAM_PATH) -> str:
    return f"ws://127.0.0.1:{server.bound_port}{path}?ticket={ticket_id}"


async def _recv(ws) -> dict:
    return json.loads(await asyncio.wait_for(ws.recv(), timeout=5))


class TestHandshake:
    """Test ticket redemption during the upgrade."""

    async def test_valid_ticket(self, stream_server, tickets):
        """Test that a fresh ticket opens the stream bound to its user."""
        ticket = tickets.issue("viewer1")
        async with connect(_url(stream_server, ticket.ticket_id)) as ws:
            assert await _recv(ws) == {"type": "connected", "username": "viewer1"}

    async def test_ticket_reuse(self, stream_server, tickets):
        """Test that a redeemed ticket cannot open a second stream."""
        ticket = tickets.issue("viewer1")
        async with connect(_url(stream_server, ticket.ticket_id)) as ws:
            await _recv(ws)

        with pytest.raises(InvalidStatus) as exc_info:
            async with connect(_url(stream_server, ticket.ticket_id)):
                pass
        assert exc_info.value.response.status_code == 401

    async def test_unknown_ticket(self, stream_server):
        """Test a ticket that was never issued."""
        with pytest.raises(InvalidStatus) as exc_info:
            async with connect(_url(stream_server, "f" * 64)):
                pass
        assert exc_info.value.response.status_code == 401

    async def test_expired_ticket(self, stream_server, tickets, clock):
        """Test a ticket presented after its lifetime."""
        ticket = tickets.issue("viewer1")
        clock.advance(30)
        with pytest.raises(InvalidStatus) as exc_info:
            async with connect(_url(stream_server, ticket.ticket_id)):
                pass
        assert exc_info.value.response.status_code == 401

    async def test_wrong_path(self, stream_server, tickets):
        """Test that only the console path is served."""
        ticket = tickets.issue("viewer1")
        with pytest.raises(InvalidStatus) as exc_info:
            async with connect(_url(stream_server, ticket.ticket_id, path="/other")):
                pass
        assert exc_info.value.response.status_code == 404
        # Not consumed by the wrong path
        assert tickets.redeem(ticket.ticket_id) == "viewer1"

    async def test_permission_revoked_after_issue(self, stream_server, tickets, db):
        """Test that console.view is checked again at the handshake."""
        ticket = tickets.issue("viewer1")
        db.update_role_definition("viewer", permissions=PermissionSet())
        with pytest.raises(InvalidStatus) as exc_info:
            async with connect(_url(stream_server, ticket.ticket_id)):
                pass
        assert exc_info.value.response.status_code == 403


class TestSession:
    """Test log forwarding and command messages."""

    async def test_log_lines_forwarded(self, stream_server, tickets, container):
        """Test that container log lines reach the client."""
        ticket = tickets.issue("viewer1")
        async with connect(_url(stream_server, ticket.ticket_id)) as ws:
            await _recv(ws)
            container.stream.put_nowait("[INFO] Player Bob joined")
            assert await _recv(ws) == {"type": "log", "line": "[INFO] Player Bob joined"}

    async def test_command(self, stream_server, tickets, container):
        """Test an operator running a command over the stream."""
        ticket = tickets.issue("operator1")
        async with connect(_url(stream_server, ticket.ticket_id)) as ws:
            await _recv(ws)
            await ws.send(json.dumps({"type": "command", "command": "/say hello"}))
            result = await _recv(ws)

        assert result == {
            "type": "command_result",
            "command": "/say hello",
            "success": True,
            "output": "Executed /say hello",
            "error": None,
        }
        assert container.commands == ["/say hello"]

    async def test_command_needs_execute_permission(self, stream_server, tickets, container):
        """Test that a viewer cannot run commands."""
        ticket = tickets.issue("viewer1")
        async with connect(_url(stream_server, ticket.ticket_id)) as ws:
            await _recv(ws)
            await ws.send(json.dumps({"type": "command", "command": "/say hello"}))
            assert await _recv(ws) == {"type": "error", "message": "Insufficient permissions"}
        assert container.commands == []

    async def test_command_rejected_by_guard(self, stream_server, tickets, container):
        """Test that the command guard applies to streamed commands."""
        ticket = tickets.issue("operator1")
        async with connect(_url(stream_server, ticket.ticket_id)) as ws:
            await _recv(ws)
            await ws.send(json.dumps({"type": "command", "command": "/say hi; rm -rf /"}))
            assert await _recv(ws) == {"type": "error", "message": "Command contains forbidden characters"}
        assert container.commands == []

    async def test_bad_messages(self, stream_server, tickets):
        """Test non-JSON and unsupported messages."""
        ticket = tickets.issue("operator1")
        async with connect(_url(stream_server, ticket.ticket_id)) as ws:
            await _recv(ws)
            await ws.send("not json")
            assert await _recv(ws) == {"type": "error", "message": "Invalid JSON format"}
            await ws.send(json.dumps({"type": "subscribe"}))
            assert await _recv(ws) == {"type": "error", "message": "Unsupported message type"}
