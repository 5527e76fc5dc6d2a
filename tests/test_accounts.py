"""Tests for account deletion handover.

Tests cover:
- Successor selection (admins first, earliest joiner)
- Ownership transfer that keeps original_owner_id
- Soft deletion of vaults without a successor
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.factories import NOW, make_member, make_vault, result_with
from vaultkeep.db.models import MemberStatus, Privilege, VaultLogAction, VaultStatus
from vaultkeep.services.accounts import AccountDeletionService, pick_successor
from vaultkeep.services.vaults import VaultService


class TestPickSuccessor:
    """Tests for pick_successor()."""

    def test_earliest_admin_wins(self):
        vault = make_vault("owner-1")
        members = [
            make_member(vault, "owner-1", Privilege.OWNER),
            make_member(vault, "member-1", joined_at=NOW - timedelta(days=90)),
            make_member(vault, "admin-2", Privilege.ADMIN, joined_at=NOW - timedelta(days=5)),
            make_member(vault, "admin-1", Privilege.ADMIN, joined_at=NOW - timedelta(days=10)),
        ]
        assert pick_successor(members, "owner-1").user_id == "admin-1"

    def test_falls_back_to_earliest_member(self):
        vault = make_vault("owner-1")
        members = [
            make_member(vault, "owner-1", Privilege.OWNER),
            make_member(vault, "member-2", joined_at=NOW - timedelta(days=1)),
            make_member(vault, "member-1", joined_at=NOW - timedelta(days=2)),
        ]
        assert pick_successor(members, "owner-1").user_id == "member-1"

    def test_inactive_members_skipped(self):
        vault = make_vault("owner-1")
        members = [
            make_member(vault, "owner-1", Privilege.OWNER),
            make_member(vault, "admin-1", Privilege.ADMIN, status=MemberStatus.LEFT),
        ]
        assert pick_successor(members, "owner-1") is None

    def test_no_other_members(self):
        vault = make_vault("owner-1")
        assert pick_successor([make_member(vault, "owner-1", Privilege.OWNER)], "owner-1") is None


class TestReassignUserData:
    """Tests for AccountDeletionService.reassign_user_data()."""

    @pytest.mark.asyncio
    async def test_vault_passes_to_successor(self, session, clock):
        vault = make_vault("owner-1")
        owner = make_member(vault, "owner-1", Privilege.OWNER)
        admin = make_member(vault, "admin-1", Privilege.ADMIN)

        vaults = AsyncMock(spec=VaultService)
        vaults.list_active_members.return_value = [owner, admin]
        activity = MagicMock()
        session.execute.side_effect = [
            result_with(scalars=[vault]),
            result_with(rowcount=2),
            result_with(rowcount=3),
        ]

        service = AccountDeletionService(session, clock, vaults=vaults, activity=activity)
        report = await service.reassign_user_data("owner-1")

        vaults.reassign_owner.assert_awaited_once_with(vault, owner, admin, demote_to=None)
        assert report.transferred_vaults == {vault.id: "admin-1"}
        assert report.deleted_vaults == []
        assert report.reattributed_items == 2
        assert report.memberships_closed == 3
        assert vault.original_owner_id == "owner-1"

        args, kwargs = activity.record.call_args
        assert args[2] == VaultLogAction.OWNERSHIP_TRANSFERRED
        assert kwargs["details"] == {"reason": "account_deleted"}

    @pytest.mark.asyncio
    async def test_vault_without_successor_soft_deleted(self, session, clock):
        vault = make_vault("owner-1")
        vaults = AsyncMock(spec=VaultService)
        vaults.list_active_members.return_value = [make_member(vault, "owner-1", Privilege.OWNER)]
        session.execute.side_effect = [
            result_with(scalars=[vault]),
            result_with(rowcount=1),
            result_with(rowcount=0),
            result_with(rowcount=1),
        ]

        report = await AccountDeletionService(session, clock, vaults=vaults).reassign_user_data(
            "owner-1"
        )

        vaults.reassign_owner.assert_not_awaited()
        assert report.deleted_vaults == [vault.id]
        assert vault.status == VaultStatus.DELETED
        assert vault.deleted_at == NOW
        assert vault.deleted_by == "owner-1"

    @pytest.mark.asyncio
    async def test_user_without_vaults(self, session, clock):
        session.execute.side_effect = [
            result_with(scalars=[]),
            result_with(rowcount=4),
            result_with(rowcount=1),
        ]
        vaults = AsyncMock(spec=VaultService)

        report = await AccountDeletionService(session, clock, vaults=vaults).reassign_user_data(
            "member-1"
        )

        vaults.list_active_members.assert_not_awaited()
        assert report.transferred_vaults == {}
        assert report.reattributed_items == 4
        assert report.memberships_closed == 1
