"""Vault and membership management.

Covers vault creation (vault, owner membership and release policy in one
transaction), listing and editing, membership changes, ownership transfer
and soft deletion.

Membership invariants:
- exactly one active OWNER member per vault, whose user_id equals
  vault.owner_id
- at most one active row per (vault_id, user_id)
- original_owner_id is written once at creation and never updated

Security-relevant writes (removal, leaving, transfer, delete, restore) are
conditional UPDATEs guarded by the expected current state. Methods flush
but never commit; the caller owns the transaction.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import delete, or_, select, update

from vaultkeep.db.models import (
    MemberStatus,
    PolicyType,
    Privilege,
    Vault,
    VaultItemVisibility,
    VaultLog,
    VaultLogAction,
    VaultMember,
    VaultStatus,
)
from vaultkeep.services.audit import DEFAULT_LOG_PAGE_SIZE, VaultActivityLog
from vaultkeep.services.errors import (
    InsufficientPrivilege,
    InvariantViolation,
    MemberNotFound,
    ValidationFailure,
    VaultNotFound,
)
from vaultkeep.services.permissions import (
    can_change_privilege,
    can_manage_members,
    can_remove,
)
from vaultkeep.services.policy import PolicyService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from vaultkeep.core.clock import Clock

logger = logging.getLogger(__name__)

DEFAULT_RESTORE_WINDOW_DAYS = 30


class VaultService:
    """Vault lifecycle and membership operations."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock,
        *,
        policies: PolicyService | None = None,
        activity: VaultActivityLog | None = None,
        restore_window_days: int = DEFAULT_RESTORE_WINDOW_DAYS,
    ) -> None:
        self._session = session
        self._clock = clock
        self._policies = policies or PolicyService(session, clock, activity=activity)
        self._activity = activity
        self._restore_window = timedelta(days=restore_window_days)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get_vault(self, vault_id: uuid.UUID, *, include_deleted: bool = False) -> Vault:
        """Load a vault.

        Raises:
            VaultNotFound: If the vault does not exist, or is soft-deleted
                and include_deleted is False.
        """
        result = await self._session.execute(select(Vault).where(Vault.id == vault_id))
        vault = result.scalar_one_or_none()
        if vault is None or (not include_deleted and vault.status != VaultStatus.ACTIVE):
            raise VaultNotFound(vault_id)
        return vault

    async def get_member(self, member_id: uuid.UUID) -> VaultMember | None:
        result = await self._session.execute(
            select(VaultMember).where(VaultMember.id == member_id)
        )
        return result.scalar_one_or_none()

    async def get_active_member(self, vault_id: uuid.UUID, user_id: str) -> VaultMember | None:
        """Load the active membership of a user, if any."""
        query = select(VaultMember).where(
            VaultMember.vault_id == vault_id,
            VaultMember.user_id == user_id,
            VaultMember.status == MemberStatus.ACTIVE,
        )
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def find_latest_member(self, vault_id: uuid.UUID, user_id: str) -> VaultMember | None:
        """Load the most recent membership row of a user in any status."""
        query = (
            select(VaultMember)
            .where(VaultMember.vault_id == vault_id, VaultMember.user_id == user_id)
            .order_by(VaultMember.joined_at.desc())
            .limit(1)
        )
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def list_active_members(self, vault_id: uuid.UUID) -> list[VaultMember]:
        query = (
            select(VaultMember)
            .where(VaultMember.vault_id == vault_id, VaultMember.status == MemberStatus.ACTIVE)
            .order_by(VaultMember.joined_at)
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def get_privilege(self, vault: Vault, user_id: str) -> Privilege | None:
        """Resolve a user's privilege in a vault.

        The vault's owner_id is authoritative for ownership: the owner keeps
        OWNER even if their member row is missing, which is logged as an
        invariant violation. A non-owner row claiming OWNER is denied.

        Returns:
            The privilege, or None if the user is not an active member.
        """
        member = await self.get_active_member(vault.id, user_id)

        if vault.owner_id == user_id:
            if member is None or member.privilege != Privilege.OWNER:
                logger.error(
                    "Invariant violation: vault owner has no active owner membership",
                    extra={"vault_id": str(vault.id), "user_id": user_id},
                )
            return Privilege.OWNER

        if member is None:
            return None
        if member.privilege == Privilege.OWNER:
            logger.error(
                "Invariant violation: owner membership for a user who does not own the vault",
                extra={"vault_id": str(vault.id), "member_id": str(member.id)},
            )
            return None
        return member.privilege

    async def list_members(self, vault_id: uuid.UUID, user_id: str) -> list[VaultMember]:
        """List active members. Any active member may see the roster."""
        vault = await self.get_vault(vault_id)
        if await self.get_privilege(vault, user_id) is None:
            raise InsufficientPrivilege("You are not a member of this vault")
        return await self.list_active_members(vault_id)

    async def list_user_vaults(self, user_id: str) -> list[Vault]:
        """Active vaults the user owns or is an active member of, newest first."""
        memberships = select(VaultMember.vault_id).where(
            VaultMember.user_id == user_id,
            VaultMember.status == MemberStatus.ACTIVE,
        )
        query = (
            select(Vault)
            .where(
                Vault.status == VaultStatus.ACTIVE,
                or_(Vault.owner_id == user_id, Vault.id.in_(memberships)),
            )
            .order_by(Vault.created_at.desc())
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def list_vault_logs(
        self, vault_id: uuid.UUID, user_id: str, *, limit: int = DEFAULT_LOG_PAGE_SIZE
    ) -> list[VaultLog]:
        """Recent vault activity, newest first. Any active member may read it."""
        vault = await self.get_vault(vault_id)
        if await self.get_privilege(vault, user_id) is None:
            raise InsufficientPrivilege("You are not a member of this vault")
        activity = self._activity or VaultActivityLog(self._session, self._clock)
        return await activity.list_for_vault(vault.id, limit=limit)

    # -------------------------------------------------------------------------
    # Vault lifecycle
    # -------------------------------------------------------------------------

    async def create_vault(
        self,
        owner_id: str,
        name: str,
        description: str | None = None,
        *,
        policy_type: PolicyType = PolicyType.IMMEDIATE,
        release_date: datetime | None = None,
        expires_at: datetime | None = None,
        policy_note: str | None = None,
    ) -> Vault:
        """Create a vault with its owner membership and release policy.

        Raises:
            ValidationFailure: If the name is blank or the policy is invalid.
        """
        name = name.strip()
        if not name:
            raise ValidationFailure("Vault name is required")

        now = self._clock.now()
        vault = Vault(
            id=uuid.uuid4(),
            owner_id=owner_id,
            original_owner_id=owner_id,
            name=name,
            description=description,
            status=VaultStatus.ACTIVE,
            created_at=now,
            updated_at=now,
        )
        # Validates before anything is staged
        self._policies.create_policy(
            vault,
            policy_type,
            release_date=release_date,
            expires_at=expires_at,
            note=policy_note,
        )
        self._session.add(vault)
        self._session.add(
            VaultMember(
                id=uuid.uuid4(),
                vault_id=vault.id,
                user_id=owner_id,
                privilege=Privilege.OWNER,
                status=MemberStatus.ACTIVE,
                added_by_id=owner_id,
                joined_at=now,
            )
        )
        await self._session.flush()

        logger.info(
            "Vault created with %s policy",
            policy_type.value,
            extra={"vault_id": str(vault.id), "owner_id": owner_id},
        )
        return vault

    async def update_vault(
        self,
        vault_id: uuid.UUID,
        user_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
    ) -> Vault:
        """Rename a vault or change its description. Owners and admins.

        Fields left as None are unchanged.

        Raises:
            VaultNotFound: If the vault is missing or deleted.
            InsufficientPrivilege: If the caller cannot manage the vault.
            ValidationFailure: If the new name is blank.
        """
        vault = await self.get_vault(vault_id)
        if not can_manage_members(await self.get_privilege(vault, user_id)):
            raise InsufficientPrivilege("Only owners and admins can edit the vault")

        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationFailure("Vault name is required")
            vault.name = name
        if description is not None:
            vault.description = description
        vault.updated_at = self._clock.now()
        await self._session.flush()

        logger.info("Vault updated", extra={"vault_id": str(vault.id), "user_id": user_id})
        return vault

    async def delete_vault(self, vault_id: uuid.UUID, actor_id: str) -> Vault:
        """Soft-delete a vault. Owner only."""
        vault = await self.get_vault(vault_id)
        if vault.owner_id != actor_id:
            raise InsufficientPrivilege("Only the vault owner can delete the vault")

        now = self._clock.now()
        query = (
            update(Vault)
            .where(Vault.id == vault.id, Vault.status == VaultStatus.ACTIVE)
            .values(status=VaultStatus.DELETED, deleted_at=now, deleted_by=actor_id, updated_at=now)
        )
        result = await self._session.execute(query)
        if result.rowcount == 0:
            raise VaultNotFound(vault_id)

        vault.status = VaultStatus.DELETED
        vault.deleted_at = now
        vault.deleted_by = actor_id
        self._record(vault.id, actor_id, VaultLogAction.VAULT_DELETED)

        logger.info("Vault soft-deleted", extra={"vault_id": str(vault.id), "user_id": actor_id})
        return vault

    async def restore_vault(self, vault_id: uuid.UUID, actor_id: str) -> Vault:
        """Restore a soft-deleted vault within the restore window. Owner only."""
        vault = await self.get_vault(vault_id, include_deleted=True)
        if vault.owner_id != actor_id:
            raise InsufficientPrivilege("Only the vault owner can restore the vault")
        if vault.status != VaultStatus.DELETED:
            raise ValidationFailure("Vault is not deleted")

        now = self._clock.now()
        if vault.deleted_at is None or now > vault.deleted_at + self._restore_window:
            raise ValidationFailure("The restore window for this vault has passed")

        query = (
            update(Vault)
            .where(Vault.id == vault.id, Vault.status == VaultStatus.DELETED)
            .values(status=VaultStatus.ACTIVE, deleted_at=None, deleted_by=None, updated_at=now)
        )
        result = await self._session.execute(query)
        if result.rowcount == 0:
            raise ValidationFailure("Vault is not deleted")

        vault.status = VaultStatus.ACTIVE
        vault.deleted_at = None
        vault.deleted_by = None
        self._record(vault.id, actor_id, VaultLogAction.VAULT_RESTORED)

        logger.info("Vault restored", extra={"vault_id": str(vault.id), "user_id": actor_id})
        return vault

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    async def _require_target(self, vault: Vault, member_id: uuid.UUID) -> VaultMember:
        member = await self.get_member(member_id)
        if member is None or member.vault_id != vault.id or not member.is_active:
            raise MemberNotFound(member_id)
        return member

    async def remove_member(
        self, vault_id: uuid.UUID, member_id: uuid.UUID, actor_id: str
    ) -> VaultMember:
        """Remove a member and drop their item grants.

        Raises:
            InsufficientPrivilege: If the actor may not remove this member.
            MemberNotFound: If the member is not active in the vault.
        """
        vault = await self.get_vault(vault_id)
        actor_privilege = await self.get_privilege(vault, actor_id)
        target = await self._require_target(vault, member_id)

        if target.user_id == actor_id:
            raise ValidationFailure("Use leave to exit a vault")
        if not can_remove(actor_privilege, target.privilege):
            raise InsufficientPrivilege("You cannot remove this member")

        now = self._clock.now()
        query = (
            update(VaultMember)
            .where(VaultMember.id == target.id, VaultMember.status == MemberStatus.ACTIVE)
            .values(status=MemberStatus.REMOVED, removed_at=now, removed_by_id=actor_id)
        )
        result = await self._session.execute(query)
        if result.rowcount == 0:
            raise MemberNotFound(member_id)

        await self._session.execute(
            delete(VaultItemVisibility).where(VaultItemVisibility.vault_member_id == target.id)
        )

        target.status = MemberStatus.REMOVED
        target.removed_at = now
        target.removed_by_id = actor_id
        self._record(
            vault.id, actor_id, VaultLogAction.MEMBER_REMOVED, target_user_id=target.user_id
        )

        logger.info(
            "Member removed from vault",
            extra={"vault_id": str(vault.id), "member_id": str(target.id), "user_id": actor_id},
        )
        return target

    async def leave_vault(self, vault_id: uuid.UUID, user_id: str) -> VaultMember:
        """Leave a vault. The owner must transfer ownership first."""
        vault = await self.get_vault(vault_id)
        if vault.owner_id == user_id:
            raise ValidationFailure("The vault owner cannot leave; transfer ownership first")

        member = await self.get_active_member(vault.id, user_id)
        if member is None:
            raise InsufficientPrivilege("You are not a member of this vault")

        now = self._clock.now()
        query = (
            update(VaultMember)
            .where(VaultMember.id == member.id, VaultMember.status == MemberStatus.ACTIVE)
            .values(status=MemberStatus.LEFT, left_at=now)
        )
        result = await self._session.execute(query)
        if result.rowcount == 0:
            raise MemberNotFound(member.id)

        await self._session.execute(
            delete(VaultItemVisibility).where(VaultItemVisibility.vault_member_id == member.id)
        )

        member.status = MemberStatus.LEFT
        member.left_at = now
        self._record(vault.id, user_id, VaultLogAction.MEMBER_LEFT)
        return member

    async def update_member_privilege(
        self,
        vault_id: uuid.UUID,
        member_id: uuid.UUID,
        new_privilege: Privilege,
        actor_id: str,
    ) -> VaultMember:
        """Switch a member between ADMIN and MEMBER.

        Ownership only changes through transfer_ownership().
        """
        vault = await self.get_vault(vault_id)
        actor_privilege = await self.get_privilege(vault, actor_id)
        if not can_manage_members(actor_privilege):
            raise InsufficientPrivilege("Only owners and admins can change privileges")

        target = await self._require_target(vault, member_id)
        if new_privilege == Privilege.OWNER:
            raise ValidationFailure("Use ownership transfer to change the vault owner")
        if not can_change_privilege(actor_privilege, target.privilege, new_privilege):
            raise ValidationFailure("This privilege change is not allowed")

        previous = target.privilege
        target.privilege = new_privilege
        await self._session.flush()

        self._record(
            vault.id,
            actor_id,
            VaultLogAction.PRIVILEGE_CHANGED,
            target_user_id=target.user_id,
            details={"from": previous.value, "to": new_privilege.value},
        )
        return target

    async def transfer_ownership(
        self, vault_id: uuid.UUID, new_owner_member_id: uuid.UUID, actor_id: str
    ) -> Vault:
        """Hand the vault to an active admin; the old owner becomes admin.

        original_owner_id is untouched so the vault key does not change.

        Raises:
            InsufficientPrivilege: If the actor is not the owner.
            ValidationFailure: If the target is not an active admin.
        """
        vault = await self.get_vault(vault_id)
        if vault.owner_id != actor_id:
            raise InsufficientPrivilege("Only the vault owner can transfer ownership")

        target = await self._require_target(vault, new_owner_member_id)
        if target.privilege != Privilege.ADMIN:
            raise ValidationFailure("Ownership can only be transferred to an admin")

        current = await self.get_active_member(vault.id, actor_id)
        await self.reassign_owner(vault, current, target, demote_to=Privilege.ADMIN)

        self._record(
            vault.id,
            actor_id,
            VaultLogAction.OWNERSHIP_TRANSFERRED,
            target_user_id=target.user_id,
        )
        logger.info(
            "Vault ownership transferred",
            extra={"vault_id": str(vault.id), "new_owner_id": target.user_id},
        )
        return vault

    async def reassign_owner(
        self,
        vault: Vault,
        current: VaultMember | None,
        successor: VaultMember,
        *,
        demote_to: Privilege | None,
    ) -> None:
        """Move ownership to successor.

        Args:
            vault: Vault being reassigned.
            current: Current owner's member row, if it exists.
            successor: Active member becoming owner.
            demote_to: New privilege for the previous owner, or None to
                leave their row alone (the caller deactivates it).

        Raises:
            InsufficientPrivilege: If ownership changed concurrently.
        """
        previous_owner_id = vault.owner_id
        now = self._clock.now()
        query = (
            update(Vault)
            .where(Vault.id == vault.id, Vault.owner_id == previous_owner_id)
            .values(owner_id=successor.user_id, updated_at=now)
        )
        result = await self._session.execute(query)
        if result.rowcount == 0:
            raise InsufficientPrivilege("Vault ownership changed concurrently")

        vault.owner_id = successor.user_id
        successor.privilege = Privilege.OWNER

        if current is None or current.privilege != Privilege.OWNER:
            logger.error(
                "Invariant violation: previous owner had no active owner membership",
                extra={"vault_id": str(vault.id), "user_id": previous_owner_id},
            )
        elif demote_to is not None:
            current.privilege = demote_to

        await self._session.flush()

    async def require_owner_member(self, vault: Vault) -> VaultMember:
        """Load the owner's member row, raising if it is missing."""
        member = await self.get_active_member(vault.id, vault.owner_id)
        if member is None or member.privilege != Privilege.OWNER:
            logger.error(
                "Invariant violation: vault has no active owner",
                extra={"vault_id": str(vault.id)},
            )
            raise InvariantViolation("Vault has no active owner")
        return member

    def _record(
        self,
        vault_id: uuid.UUID,
        user_id: str,
        action: VaultLogAction,
        **kwargs: object,
    ) -> None:
        if self._activity is not None:
            self._activity.record(vault_id, user_id, action, **kwargs)  # type: ignore[arg-type]
