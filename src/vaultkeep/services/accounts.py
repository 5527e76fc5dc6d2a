"""Reassignment of vault data when a user account is deleted.

Deleting an account never cascades into vault contents:
- each active vault the user owns passes to a successor (earliest-joined
  active admin, else earliest-joined active member); with no successor the
  vault is soft-deleted
- items the user authored are re-attributed to the owner of their vault
- the user's remaining memberships are marked LEFT

original_owner_id is left untouched, so every vault stays decryptable.
All writes run in the caller's transaction.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import select, update

from vaultkeep.db.models import (
    MemberStatus,
    Privilege,
    Vault,
    VaultItem,
    VaultLogAction,
    VaultMember,
    VaultStatus,
)
from vaultkeep.services.vaults import VaultService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from vaultkeep.core.clock import Clock
    from vaultkeep.services.audit import VaultActivityLog

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AccountDeletionReport:
    """What happened to a departing user's vault data."""

    user_id: str
    transferred_vaults: dict[uuid.UUID, str] = field(default_factory=dict)
    deleted_vaults: list[uuid.UUID] = field(default_factory=list)
    reattributed_items: int = 0
    memberships_closed: int = 0


def pick_successor(members: list[VaultMember], departing_user_id: str) -> VaultMember | None:
    """Choose the next owner among active members.

    Admins take precedence over members; ties go to the earliest joiner.
    """
    candidates = [
        m
        for m in members
        if m.status == MemberStatus.ACTIVE
        and m.user_id != departing_user_id
        and m.privilege in (Privilege.ADMIN, Privilege.MEMBER)
    ]
    if not candidates:
        return None
    rank = {Privilege.ADMIN: 0, Privilege.MEMBER: 1}
    return min(candidates, key=lambda m: (rank[m.privilege], m.joined_at))


class AccountDeletionService:
    """Moves ownership and authorship away from a departing user."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock,
        *,
        vaults: VaultService | None = None,
        activity: VaultActivityLog | None = None,
    ) -> None:
        self._session = session
        self._clock = clock
        self._vaults = vaults or VaultService(session, clock, activity=activity)
        self._activity = activity

    async def reassign_user_data(self, user_id: str) -> AccountDeletionReport:
        """Reassign everything the user owns or authored.

        Args:
            user_id: Account being deleted.

        Returns:
            Summary of transfers, deletions and re-attributions.
        """
        report = AccountDeletionReport(user_id=user_id)
        now = self._clock.now()

        result = await self._session.execute(
            select(Vault).where(Vault.owner_id == user_id, Vault.status == VaultStatus.ACTIVE)
        )
        owned = list(result.scalars().all())

        for vault in owned:
            members = await self._vaults.list_active_members(vault.id)
            successor = pick_successor(members, user_id)

            if successor is None:
                await self._session.execute(
                    update(Vault)
                    .where(Vault.id == vault.id, Vault.status == VaultStatus.ACTIVE)
                    .values(
                        status=VaultStatus.DELETED,
                        deleted_at=now,
                        deleted_by=user_id,
                        updated_at=now,
                    )
                )
                vault.status = VaultStatus.DELETED
                vault.deleted_at = now
                vault.deleted_by = user_id
                report.deleted_vaults.append(vault.id)
                continue

            current = next((m for m in members if m.user_id == user_id), None)
            # The departing owner's row is closed with the other memberships below
            await self._vaults.reassign_owner(vault, current, successor, demote_to=None)
            report.transferred_vaults[vault.id] = successor.user_id
            if self._activity is not None:
                self._activity.record(
                    vault.id,
                    user_id,
                    VaultLogAction.OWNERSHIP_TRANSFERRED,
                    target_user_id=successor.user_id,
                    details={"reason": "account_deleted"},
                )

        reattributed = await self._session.execute(
            update(VaultItem)
            .where(
                VaultItem.created_by_user_id == user_id,
                VaultItem.vault_id == Vault.id,
                Vault.owner_id != user_id,
            )
            .values(created_by_user_id=Vault.owner_id)
            .execution_options(synchronize_session=False)
        )
        report.reattributed_items = reattributed.rowcount

        closed = await self._session.execute(
            update(VaultMember)
            .where(VaultMember.user_id == user_id, VaultMember.status == MemberStatus.ACTIVE)
            .values(status=MemberStatus.LEFT, left_at=now)
            .execution_options(synchronize_session=False)
        )
        report.memberships_closed = closed.rowcount

        logger.info(
            "Account data reassigned: %d vault(s) transferred, %d deleted, "
            "%d item(s) re-attributed",
            len(report.transferred_vaults),
            len(report.deleted_vaults),
            report.reattributed_items,
            extra={"user_id": user_id},
        )
        return report
