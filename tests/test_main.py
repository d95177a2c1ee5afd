"""
Tests for the command-line entry point.
"""

import base64

import pytest

from conftest import TEST_SECRET
from warden.auth.database import UserDatabase
from warden.main import build_parser, main


@pytest.fixture
def env(monkeypatch, tmp_path):
    monkeypatch.setenv("DATA_PATH", str(tmp_path / "data"))
    monkeypatch.setenv("JWT_SECRET", TEST_SECRET)
    monkeypatch.setenv("MANAGER_USERNAME", "owner")
    monkeypatch.setenv("MANAGER_PASSWORD", "a-long-bootstrap-password")
    monkeypatch.setenv("CORS_ORIGINS", "https://panel.example.com")
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")
    return tmp_path / "data"


class TestCommands:
    """Test the non-serving subcommands."""

    def test_generate_secret(self, capsys):
        """Test that a usable secret is printed."""
        assert main(["generate-secret"]) == 0
        secret = capsys.readouterr().out.strip()
        assert len(base64.b64decode(secret)) == 48

    def test_check_config_ok(self, env, capsys):
        """Test a secure configuration."""
        assert main(["check-config"]) == 0
        assert "Configuration OK" in capsys.readouterr().out

    def test_check_config_critical(self, env, monkeypatch, capsys):
        """Test that critical issues exit non-zero."""
        monkeypatch.setenv("JWT_SECRET", "secret")
        assert main(["check-config"]) == 1
        assert "CRITICAL: JWT secret is a known default value" in capsys.readouterr().out

    def test_create_user(self, env, monkeypatch, capsys):
        """Test creating a user with a prompted password."""
        monkeypatch.setattr("getpass.getpass", lambda prompt="": "cli-password-1")
        assert main(["create-user", "alice", "--role", "operator"]) == 0

        user = UserDatabase(env / "users.db", bcrypt_rounds=4).get_user("alice")
        assert user.role_id == "operator"

    def test_create_user_mismatch(self, env, monkeypatch):
        """Test that mismatched confirmations create nothing."""
        answers = iter(["first-password", "second-password"])
        monkeypatch.setattr("getpass.getpass", lambda prompt="": next(answers))
        assert main(["create-user", "alice"]) == 1
        assert UserDatabase(env / "users.db", bcrypt_rounds=4).get_user("alice") is None

    def test_create_user_invalid(self, env, monkeypatch, capsys):
        """Test a refused username."""
        monkeypatch.setattr("getpass.getpass", lambda prompt="": "cli-password-1")
        assert main(["create-user", "x"]) == 1
        assert "Username must be" in capsys.readouterr().err

    def test_serve_refuses_insecure_config(self, env, monkeypatch):
        """Test that strict mode stops startup before any server starts."""
        monkeypatch.setenv("JWT_SECRET", "")
        assert main(["serve"]) == 1

    def test_parser_requires_command(self):
        """Test that a subcommand is mandatory."""
        with pytest.raises(SystemExit):
            build_parser().parse_args([])
