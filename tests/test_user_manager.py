"""
Unit tests for the login flow and user/role administration rules.
"""

import pytest

from conftest import PASSWORDS
from warden.auth.jwt_handler import TokenKind
from warden.auth.permissions import ALL_PERMISSIONS
from warden.auth.user_manager import UserManager
from warden.errors import (
    InvalidCredentials,
    InvalidToken,
    RoleError,
    RoleNotFound,
    UserError,
    UserNotFound,
)


class TestLogin:
    """Test credential checks and token issue."""

    def test_login(self, manager, users):
        """Test a successful login."""
        result = manager.login("admin", PASSWORDS["admin"])
        assert result.role == "admin"
        assert result.token_type == "bearer"
        assert set(result.permissions) == set(ALL_PERMISSIONS)
        assert manager.authenticate(result.access_token).username == "admin"
        assert manager.db.get_user("admin").last_login is not None

    def test_login_result_dict(self, manager, users):
        """Test the serialized login response."""
        data = manager.login("viewer1", PASSWORDS["viewer1"]).to_dict()
        assert set(data) == {"access_token", "refresh_token", "token_type", "role", "permissions"}
        assert "console.view" in data["permissions"]
        assert data["permissions"] == sorted(data["permissions"])

    def test_wrong_password_and_unknown_user_identical(self, manager, users):
        """Test that both failures raise the same error with the same message."""
        with pytest.raises(InvalidCredentials) as wrong_password:
            manager.login("admin", "not-the-password")
        with pytest.raises(InvalidCredentials) as unknown_user:
            manager.login("nobody", "not-the-password")
        assert str(wrong_password.value) == str(unknown_user.value)

    def test_refresh(self, manager, users):
        """Test exchanging a refresh token."""
        result = manager.login("viewer1", PASSWORDS["viewer1"])
        access, refresh = manager.refresh(result.refresh_token)
        assert manager.authenticate(access).username == "viewer1"
        assert manager.jwt.validate(refresh, TokenKind.REFRESH) is not None

    def test_refresh_with_access_token(self, manager, users):
        """Test that an access token is not a refresh token."""
        result = manager.login("viewer1", PASSWORDS["viewer1"])
        with pytest.raises(InvalidToken):
            manager.refresh(result.access_token)

    def test_authenticate_refresh_token(self, manager, users):
        """Test that a refresh token is not an access token."""
        result = manager.login("viewer1", PASSWORDS["viewer1"])
        with pytest.raises(InvalidToken):
            manager.authenticate(result.refresh_token)

    def test_logout(self, manager, users):
        """Test that logout revokes both tokens."""
        result = manager.login("viewer1", PASSWORDS["viewer1"])
        manager.logout("viewer1")
        with pytest.raises(InvalidToken):
            manager.authenticate(result.access_token)
        with pytest.raises(InvalidToken):
            manager.refresh(result.refresh_token)

    def test_from_settings(self, settings):
        """Test building the manager from configuration."""
        manager = UserManager.from_settings(settings)
        assert manager.db.db_path == settings.db_path
        assert manager.db.bcrypt_rounds == 4


class TestUserAdministration:
    """Test user management rules."""

    def test_create_default_role(self, manager, users):
        """Test that omitted roles default to viewer."""
        assert manager.create_user("newbie", "password-123").role_id == "viewer"

    def test_update_password_revokes(self, manager, users):
        """Test that an administrator password reset revokes the user's tokens."""
        result = manager.login("viewer1", PASSWORDS["viewer1"])
        manager.update_user("admin", "viewer1", password="reset-password-1")
        with pytest.raises(InvalidToken):
            manager.authenticate(result.access_token)
        assert manager.login("viewer1", "reset-password-1").role == "viewer"

    def test_update_role(self, manager, users):
        """Test changing another user's role."""
        user = manager.update_user("admin", "viewer1", role_id="operator")
        assert user.role_id == "operator"
        assert user.token_version == 1

    def test_nothing_to_update(self, manager, users):
        """Test an empty update."""
        with pytest.raises(UserError, match="Nothing to update"):
            manager.update_user("admin", "viewer1")

    def test_cannot_change_own_role(self, manager, users):
        """Test self role change."""
        with pytest.raises(UserError, match="Cannot change your own role"):
            manager.update_user("admin", "admin", role_id="viewer")

    def test_can_change_own_password(self, manager, users):
        """Test that users may change their own password."""
        manager.update_user("viewer1", "viewer1", password="my-new-password")
        assert manager.db.verify_password(manager.db.get_user("viewer1"), "my-new-password")

    def test_update_missing_user(self, manager, users):
        """Test updating a user that does not exist."""
        with pytest.raises(UserNotFound):
            manager.update_user("admin", "ghost", password="password-123")

    def test_failed_role_change_keeps_password(self, manager, users):
        """Test that an unknown role rejects the whole update."""
        with pytest.raises(RoleNotFound):
            manager.update_user("admin", "viewer1", password="brand-new-password", role_id="nope")

        user = manager.db.get_user("viewer1")
        assert manager.db.verify_password(user, PASSWORDS["viewer1"])
        assert not manager.db.verify_password(user, "brand-new-password")
        assert user.role_id == "viewer"
        assert user.token_version == 0

    def test_last_admin_demotion_keeps_password(self, manager, users):
        """Test that refusing to demote the last administrator also refuses the password."""
        with pytest.raises(UserError, match="last administrator"):
            manager.update_user("operator1", "admin", password="brand-new-password", role_id="viewer")

        user = manager.db.get_user("admin")
        assert manager.db.verify_password(user, PASSWORDS["admin"])
        assert user.role_id == "admin"
        assert user.token_version == 0

    def test_password_and_role_together(self, manager, users):
        """Test that a combined update applies both and revokes once."""
        user = manager.update_user("admin", "viewer1", password="brand-new-password", role_id="operator")
        assert user.role_id == "operator"
        assert user.token_version == 1
        assert manager.db.verify_password(user, "brand-new-password")

    def test_cannot_delete_self(self, manager, users):
        """Test self deletion."""
        with pytest.raises(UserError, match="Cannot delete your own account"):
            manager.delete_user("admin", "admin")

    def test_delete(self, manager, users):
        """Test deleting another user."""
        manager.delete_user("admin", "viewer1")
        assert manager.db.get_user("viewer1") is None
        with pytest.raises(UserNotFound):
            manager.delete_user("admin", "viewer1")


class TestRoleAdministration:
    """Test role management through the manager."""

    def test_create_role_from_strings(self, manager):
        """Test that string permissions are parsed."""
        role = manager.create_role("builder", "Builder", ["worlds.view", "worlds.manage"])
        assert role.permissions.to_list() == ["worlds.manage", "worlds.view"]

    def test_create_wildcard_role(self, manager):
        """Test that * creates an all-permissions role."""
        assert manager.create_role("owner", "Owner", ["*"]).permissions.grants_all

    def test_update_role(self, manager):
        """Test editing permissions."""
        manager.create_role("builder", "Builder", ["worlds.view"])
        role = manager.update_role("builder", permissions=["chat.view"])
        assert role.permissions.to_list() == ["chat.view"]

    def test_delete_system_role(self, manager):
        """Test that system roles stay."""
        with pytest.raises(RoleError):
            manager.delete_role("admin")
