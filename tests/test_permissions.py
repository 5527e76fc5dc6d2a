"""Tests for permission resolution.

Tests cover:
- Owner omnipotence regardless of policy and grants
- Policy gate for admins and members
- Grant mapping (none/VIEW/EDIT)
- Membership management rules (invite, remove, privilege change)
"""

import pytest

from vaultkeep.db.models import ItemPermission, Privilege
from vaultkeep.services.permissions import (
    Access,
    can_change_privilege,
    can_invite_as,
    can_manage_members,
    can_remove,
    resolve,
)


class TestResolve:
    """Tests for resolve()."""

    @pytest.mark.parametrize("accessible", [True, False])
    @pytest.mark.parametrize("grant", [None, ItemPermission.VIEW, ItemPermission.EDIT])
    def test_owner_always_edits(self, accessible, grant):
        """The owner gets EDIT whatever the policy and grants say."""
        assert resolve(Privilege.OWNER, accessible, grant) == Access.EDIT

    def test_non_member_has_no_access(self):
        assert resolve(None, True, ItemPermission.EDIT) == Access.NO_ACCESS

    @pytest.mark.parametrize("privilege", [Privilege.ADMIN, Privilege.MEMBER])
    def test_inaccessible_vault_hides_items(self, privilege):
        """Grants are ignored while the release policy denies access."""
        assert resolve(privilege, False, ItemPermission.EDIT) == Access.NO_ACCESS

    @pytest.mark.parametrize("privilege", [Privilege.ADMIN, Privilege.MEMBER])
    def test_grant_maps_to_access(self, privilege):
        assert resolve(privilege, True, ItemPermission.VIEW) == Access.VIEW
        assert resolve(privilege, True, ItemPermission.EDIT) == Access.EDIT

    def test_admin_without_grant_has_no_item_access(self):
        """Admin privilege confers management rights, not item access."""
        assert resolve(Privilege.ADMIN, True, None) == Access.NO_ACCESS


class TestAccess:
    """Tests for Access helpers."""

    def test_can_view(self):
        assert Access.EDIT.can_view
        assert Access.VIEW.can_view
        assert not Access.NO_ACCESS.can_view

    def test_can_edit(self):
        assert Access.EDIT.can_edit
        assert not Access.VIEW.can_edit


class TestMembershipRules:
    """Tests for membership management rules."""

    def test_managers(self):
        assert can_manage_members(Privilege.OWNER)
        assert can_manage_members(Privilege.ADMIN)
        assert not can_manage_members(Privilege.MEMBER)
        assert not can_manage_members(None)

    def test_invites_never_grant_ownership(self):
        assert can_invite_as(Privilege.OWNER, Privilege.ADMIN)
        assert can_invite_as(Privilege.ADMIN, Privilege.MEMBER)
        assert not can_invite_as(Privilege.OWNER, Privilege.OWNER)
        assert not can_invite_as(Privilege.MEMBER, Privilege.MEMBER)

    def test_owner_removes_admins_and_members(self):
        assert can_remove(Privilege.OWNER, Privilege.ADMIN)
        assert can_remove(Privilege.OWNER, Privilege.MEMBER)

    def test_admin_removes_members_only(self):
        assert can_remove(Privilege.ADMIN, Privilege.MEMBER)
        assert not can_remove(Privilege.ADMIN, Privilege.ADMIN)

    @pytest.mark.parametrize("actor", [Privilege.OWNER, Privilege.ADMIN, Privilege.MEMBER, None])
    def test_owner_cannot_be_removed(self, actor):
        assert not can_remove(actor, Privilege.OWNER)

    def test_member_cannot_remove(self):
        assert not can_remove(Privilege.MEMBER, Privilege.MEMBER)

    def test_privilege_changes(self):
        assert can_change_privilege(Privilege.OWNER, Privilege.MEMBER, Privilege.ADMIN)
        assert can_change_privilege(Privilege.ADMIN, Privilege.ADMIN, Privilege.MEMBER)
        assert not can_change_privilege(Privilege.MEMBER, Privilege.MEMBER, Privilege.ADMIN)
        assert not can_change_privilege(Privilege.OWNER, Privilege.MEMBER, Privilege.MEMBER)

    def test_owner_row_never_changes_privilege(self):
        assert not can_change_privilege(Privilege.OWNER, Privilege.OWNER, Privilege.ADMIN)
        assert not can_change_privilege(Privilege.OWNER, Privilege.ADMIN, Privilege.OWNER)
