"""
Shared fixtures: a throwaway credential store, token service, ticket broker
with a controllable clock, a fake container and an aiohttp test client.
"""

import asyncio
from typing import Dict, List

import pytest

from warden.api import create_app
from warden.auth.database import UserDatabase
from warden.auth.jwt_handler import JWTHandler
from warden.auth.tickets import TicketBroker
from warden.auth.user_manager import UserManager
from warden.collaborators import ExecResult
from warden.config import Settings

TEST_SECRET = "0123456789abcdef" * 3  # 48 bytes

PASSWORDS: Dict[str, str] = {
    "admin": "admin-password-1",
    "operator1": "operator-password-1",
    "viewer1": "viewer-password-1",
}


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeContainer:
    """Container controller that records commands and serves canned logs."""

    def __init__(self):
        self.logs: List[str] = ["[INFO] Server started", "[INFO] Player Alice joined"]
        self.commands: List[str] = []
        self.stream: "asyncio.Queue[str]" = asyncio.Queue()

    async def get_logs(self, tail: int = 100) -> List[str]:
        return list(self.logs) if tail == 0 else self.logs[-tail:]

    async def exec_command(self, command: str) -> ExecResult:
        self.commands.append(command)
        return ExecResult(success=True, output=f"Executed {command}")

    async def follow_logs(self):
        while True:
            yield await self.stream.get()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_path=tmp_path / "data",
        jwt_secret=TEST_SECRET,
        bcrypt_rounds=4,
        host_data_path=tmp_path / "host",
        cors_origins="http://panel.test",
        manager_username="admin",
        manager_password=PASSWORDS["admin"],
    )


@pytest.fixture
def db(settings):
    return UserDatabase(settings.db_path, bcrypt_rounds=4)


@pytest.fixture
def jwt_handler(db):
    return JWTHandler(TEST_SECRET, db)


@pytest.fixture
def manager(db, jwt_handler):
    return UserManager(db, jwt_handler)


@pytest.fixture
def users(db):
    """One user per built-in role that the tests exercise."""
    db.create_user("admin", PASSWORDS["admin"], "admin")
    db.create_user("operator1", PASSWORDS["operator1"], "operator")
    db.create_user("viewer1", PASSWORDS["viewer1"], "viewer")
    return PASSWORDS


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tickets(clock):
    return TicketBroker(ttl=30.0, max_outstanding=100, clock=clock)


@pytest.fixture
def container():
    return FakeContainer()


@pytest.fixture
def host_files(settings):
    """Server config and asset files under the configured host directory."""
    roots = settings.file_roots
    server = roots["server"]
    server.mkdir(parents=True)
    (server / "server.properties").write_text("max-players=20\n", encoding="utf-8")
    (server / "start.sh").write_text("#!/bin/sh\n", encoding="utf-8")

    assets = roots["assets"]
    (assets / "items").mkdir(parents=True)
    (assets / "items" / "sword.json").write_text("{}", encoding="utf-8")
    (assets / "items" / "shield.json").write_text("{}", encoding="utf-8")
    (assets / "readme.txt").write_text("assets", encoding="utf-8")
    return roots


@pytest.fixture
async def client(aiohttp_client, settings, manager, tickets, container, users):
    app = create_app(settings, manager=manager, tickets=tickets, container=container)
    return await aiohttp_client(app)


@pytest.fixture
def login(client):
    """Log a user in through the API and return the response body."""
    async def _login(username: str) -> dict:
        resp = await client.post(
            "/api/auth/login",
            json={"username": username, "password": PASSWORDS[username]},
        )
        assert resp.status == 200
        return await resp.json()
    return _login


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
