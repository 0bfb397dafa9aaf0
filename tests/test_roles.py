"""
Test suite for roles module

Tests the capability sets granted to each role and permission checks.
"""

import pytest

from microloan.roles import Actor, Permission, Role, ROLE_PERMISSIONS, check_permission


class TestRolePermissions:
    """Test role capability sets"""

    def test_super_admin_has_everything(self):
        assert ROLE_PERMISSIONS[Role.SUPER_ADMIN] == frozenset(Permission)

    def test_lender_permissions(self):
        lender = Actor("officer-1", Role.LENDER)

        assert lender.has_permission(Permission.CREATE_LOAN)
        assert lender.has_permission(Permission.RECORD_PAYMENT)
        assert lender.has_permission(Permission.RECONCILE_LOAN)
        assert lender.has_permission(Permission.VIEW_LOAN)
        assert not lender.has_permission(Permission.MARK_DEFAULTED)

    def test_borrower_can_only_view(self):
        borrower = Actor("borrower-1", Role.BORROWER)
        assert borrower.permissions == frozenset({Permission.VIEW_LOAN})

    def test_every_role_is_mapped(self):
        assert set(ROLE_PERMISSIONS) == set(Role)


class TestCheckPermission:
    """Test permission enforcement"""

    def test_allowed(self):
        check_permission(Actor("admin", Role.SUPER_ADMIN), Permission.MARK_DEFAULTED)

    def test_denied(self):
        borrower = Actor("borrower-1", Role.BORROWER)
        with pytest.raises(PermissionError, match="borrower-1 \\(borrower\\) lacks permission record_payment"):
            check_permission(borrower, Permission.RECORD_PAYMENT)

    def test_roles_parse_from_header_values(self):
        assert Role("super_admin") == Role.SUPER_ADMIN
        with pytest.raises(ValueError):
            Role("teller")
