"""
Unit tests for the permission catalogue and resolver.
"""

import pytest

from warden.auth.permissions import (
    ALL_PERMISSIONS,
    DEFAULT_ROLES,
    Permission,
    PermissionResolver,
    PermissionSet,
    permission_catalogue,
)
from warden.errors import PermissionDeniedError


class TestPermissionSet:
    """Test the all-permissions variant and explicit sets."""

    def test_all_grants_everything(self):
        """Test that the all-permissions set grants every catalogue entry."""
        every = PermissionSet.all()
        assert all(every.grants(p) for p in Permission)
        assert every.grants("some.future_permission")

    def test_empty_grants_nothing(self):
        """Test that an empty set denies everything."""
        empty = PermissionSet()
        assert not any(empty.grants(p) for p in Permission)

    def test_empty_permission_string(self):
        """Test that an empty permission is never granted, even by all."""
        assert not PermissionSet.all().grants("")

    def test_enum_and_string_equivalent(self):
        """Test that enum members and their values are interchangeable."""
        grants = PermissionSet.of(Permission.CONSOLE_VIEW)
        assert grants.grants("console.view")
        assert grants.grants(Permission.CONSOLE_VIEW)
        assert not grants.grants(Permission.CONSOLE_EXECUTE)

    def test_list_round_trip(self):
        """Test the serialized forms."""
        assert PermissionSet.all().to_list() == ["*"]
        assert PermissionSet.from_list(["*"]).grants_all
        assert PermissionSet.from_list(["users.view", "console.view"]).to_list() == ["console.view", "users.view"]

    def test_expand(self):
        """Test expansion to concrete names."""
        assert PermissionSet.all().expand() == set(ALL_PERMISSIONS)
        assert PermissionSet.of("chat.view").expand() == {"chat.view"}

    def test_unknown(self):
        """Test detection of names outside the catalogue."""
        assert PermissionSet.of("chat.view", "chat.fly").unknown() == {"chat.fly"}


class TestCatalogue:
    """Test the built-in roles and catalogue listing."""

    def test_default_roles(self):
        """Test the four system roles."""
        roles = {r.role_id: r for r in DEFAULT_ROLES}
        assert set(roles) == {"admin", "moderator", "operator", "viewer"}
        assert roles["admin"].permissions.grants_all
        assert roles["viewer"].permissions.grants(Permission.CONSOLE_VIEW)
        assert not roles["viewer"].permissions.grants(Permission.CONSOLE_EXECUTE)
        assert roles["operator"].permissions.grants(Permission.CONSOLE_EXECUTE)

    def test_default_roles_use_catalogue(self):
        """Test that built-in roles only reference known permissions."""
        for role in DEFAULT_ROLES:
            assert role.permissions.unknown() == set()

    def test_permission_catalogue(self):
        """Test catalogue entries."""
        catalogue = permission_catalogue()
        assert len(catalogue) == len(Permission)
        entry = next(e for e in catalogue if e["id"] == "console.execute")
        assert entry["category"] == "console"
        assert entry["description"] == "Execute console commands"


class TestPermissionResolver:
    """Test allow/deny answers against the live store."""

    @pytest.fixture
    def resolver(self, db, users):
        return PermissionResolver(db)

    def test_admin(self, resolver):
        """Test that the administrator holds every permission."""
        assert all(resolver.check("admin", p) for p in Permission)
        assert resolver.list_permissions("admin") == set(ALL_PERMISSIONS)

    def test_viewer(self, resolver):
        """Test a restricted role."""
        assert resolver.check("viewer1", Permission.CONSOLE_VIEW)
        assert not resolver.check("viewer1", Permission.CONSOLE_EXECUTE)
        assert not resolver.check("viewer1", Permission.USERS_VIEW)

    def test_unknown_user(self, resolver):
        """Test that unknown and empty usernames are denied."""
        assert not resolver.check("nobody", Permission.DASHBOARD_VIEW)
        assert not resolver.check("", Permission.DASHBOARD_VIEW)
        assert resolver.list_permissions("nobody") == set()

    def test_empty_permission(self, resolver):
        """Test that an empty permission is denied for the administrator too."""
        assert not resolver.check("admin", "")

    def test_check_all_and_any(self, resolver):
        """Test AND and OR combinations."""
        assert resolver.check_all("operator1", Permission.CONSOLE_VIEW, Permission.CONSOLE_EXECUTE)
        assert not resolver.check_all("viewer1", Permission.CONSOLE_VIEW, Permission.CONSOLE_EXECUTE)
        assert resolver.check_any("viewer1", Permission.CONSOLE_VIEW, Permission.CONSOLE_EXECUTE)
        assert not resolver.check_any("viewer1", Permission.USERS_VIEW, Permission.ROLES_VIEW)
        assert not resolver.check_all("admin")

    def test_role_edit_is_visible_immediately(self, resolver, db):
        """Test that a role change applies to the next check."""
        assert resolver.check("viewer1", Permission.CONSOLE_VIEW)
        db.update_role_definition("viewer", permissions=PermissionSet.of(Permission.DASHBOARD_VIEW))
        assert not resolver.check("viewer1", Permission.CONSOLE_VIEW)
        assert resolver.check("viewer1", Permission.DASHBOARD_VIEW)

    def test_user_role_change_is_visible_immediately(self, resolver, db):
        """Test that reassigning a user applies to the next check."""
        db.update_role("viewer1", "operator")
        assert resolver.check("viewer1", Permission.CONSOLE_EXECUTE)

    def test_require(self, resolver):
        """Test the raising variant."""
        resolver.require("operator1", Permission.CONSOLE_EXECUTE)
        with pytest.raises(PermissionDeniedError) as exc_info:
            resolver.require("viewer1", Permission.CONSOLE_EXECUTE)
        assert exc_info.value.required_permission == "console.execute"
        assert exc_info.value.username == "viewer1"
