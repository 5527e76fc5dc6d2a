"""Invite lifecycle: issue, deliver, cancel, resend and redeem.

State machine:

    PENDING -> SENT -> ACCEPTED
    PENDING/SENT -> CANCELLED
    PENDING/SENT -> EXPIRED (observed lazily once expires_at has passed)
    PENDING/SENT/EXPIRED -> PENDING (resend with a fresh token)

Tokens are 32 random bytes encoded as URL-safe base64 without padding. Only
their SHA-256 hex digest is stored; the raw token is returned once to the
issuer for out-of-band delivery and never logged.

Redemption is guarded by a single conditional UPDATE
(``status IN (pending, sent) AND expires_at >= now``). Of two concurrent
acceptances of the same token exactly one sees a row affected; the other
gets InviteAlreadyRedeemed.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import select, update

from vaultkeep.core.clock import is_aware
from vaultkeep.db.models import (
    InviteStatus,
    MemberStatus,
    Privilege,
    VaultInvite,
    VaultLogAction,
    VaultMember,
)
from vaultkeep.services.errors import (
    InsufficientPrivilege,
    InviteAlreadyRedeemed,
    InviteExpired,
    InviteInvalid,
    InviteNotFound,
    ValidationFailure,
    VaultNotFound,
)
from vaultkeep.services.identity import normalize_email
from vaultkeep.services.permissions import can_invite_as, can_manage_members
from vaultkeep.services.vaults import VaultService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from vaultkeep.core.clock import Clock
    from vaultkeep.db.models import Vault
    from vaultkeep.services.audit import VaultActivityLog
    from vaultkeep.services.identity import IdentityDirectory

logger = logging.getLogger(__name__)

INVITE_TOKEN_BYTES = 32
DEFAULT_INVITE_TTL_DAYS = 7

LIVE_STATUSES = (InviteStatus.PENDING, InviteStatus.SENT)
RESENDABLE_STATUSES = (InviteStatus.PENDING, InviteStatus.SENT, InviteStatus.EXPIRED)


def generate_invite_token(num_bytes: int = INVITE_TOKEN_BYTES) -> str:
    """Generate a raw invite token (URL-safe base64, no padding)."""
    return secrets.token_urlsafe(num_bytes)


def hash_invite_token(raw_token: str) -> str:
    """Hash a raw invite token for storage and lookup."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class IssuedInvite:
    """Result of issuing an invite. The raw token is not persisted anywhere."""

    invite_id: uuid.UUID
    raw_token: str
    expires_at: datetime

    def __repr__(self) -> str:
        return f"IssuedInvite(invite_id={self.invite_id!r}, raw_token=<redacted>)"


@dataclass(frozen=True, slots=True)
class InviteInfo:
    """Public view of an invite, shown before the invitee signs in."""

    invite_id: uuid.UUID
    vault_id: uuid.UUID
    vault_name: str
    inviter_id: str
    invitee_email: str
    privilege: Privilege
    status: InviteStatus
    expires_at: datetime
    is_valid: bool


class InviteService:
    """Issues and redeems vault invites."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock,
        identity: IdentityDirectory,
        *,
        vaults: VaultService | None = None,
        activity: VaultActivityLog | None = None,
        ttl_days: int = DEFAULT_INVITE_TTL_DAYS,
        token_bytes: int = INVITE_TOKEN_BYTES,
    ) -> None:
        self._session = session
        self._clock = clock
        self._identity = identity
        self._vaults = vaults or VaultService(session, clock, activity=activity)
        self._activity = activity
        self._ttl = timedelta(days=ttl_days)
        self._token_bytes = token_bytes

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    async def get_invite(self, invite_id: uuid.UUID) -> VaultInvite | None:
        result = await self._session.execute(
            select(VaultInvite).where(VaultInvite.id == invite_id)
        )
        return result.scalar_one_or_none()

    async def get_invite_by_token(self, raw_token: str) -> VaultInvite | None:
        query = select(VaultInvite).where(VaultInvite.token_hash == hash_invite_token(raw_token))
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def find_live_invite(self, vault_id: uuid.UUID, email: str) -> VaultInvite | None:
        """Find an unexpired pending or sent invite for an email in a vault."""
        query = (
            select(VaultInvite)
            .where(
                VaultInvite.vault_id == vault_id,
                VaultInvite.invitee_email == email,
                VaultInvite.status.in_(LIVE_STATUSES),
                VaultInvite.expires_at >= self._clock.now(),
            )
            .limit(1)
        )
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    def effective_status(self, invite: VaultInvite, now: datetime | None = None) -> InviteStatus:
        """Status with lazy expiry applied."""
        now = now or self._clock.now()
        if invite.status in LIVE_STATUSES and now > invite.expires_at:
            return InviteStatus.EXPIRED
        return invite.status

    # -------------------------------------------------------------------------
    # Issue
    # -------------------------------------------------------------------------

    async def create_invite(
        self,
        vault_id: uuid.UUID,
        inviter_id: str,
        invitee_email: str,
        privilege: Privilege = Privilege.MEMBER,
        expires_at: datetime | None = None,
        note: str | None = None,
    ) -> IssuedInvite:
        """Issue an invite and return its raw token exactly once.

        Raises:
            VaultNotFound: If the vault is missing or deleted.
            InsufficientPrivilege: If the inviter cannot manage members.
            ValidationFailure: On an owner invite, a malformed email, an
                expiry in the past, an existing member or a duplicate
                live invite.
        """
        vault = await self._vaults.get_vault(vault_id)
        inviter_privilege = await self._vaults.get_privilege(vault, inviter_id)
        if not can_manage_members(inviter_privilege):
            raise InsufficientPrivilege("Only owners and admins can invite members")
        if not can_invite_as(inviter_privilege, privilege):
            raise ValidationFailure("Invites cannot grant ownership")

        email = normalize_email(invitee_email)
        if "@" not in email or email.startswith("@") or email.endswith("@"):
            raise ValidationFailure("Invitee email is not valid")

        now = self._clock.now()
        if expires_at is None:
            expires_at = now + self._ttl
        elif not is_aware(expires_at):
            raise ValidationFailure("Invite expiry must include a timezone")
        elif expires_at <= now:
            raise ValidationFailure("Invite expiry must be in the future")

        existing_user_id = await self._identity.find_user_id_by_email(email)
        if existing_user_id is not None:
            if await self._vaults.get_active_member(vault.id, existing_user_id) is not None:
                raise ValidationFailure("This user is already a member of the vault")
        if await self.find_live_invite(vault.id, email) is not None:
            raise ValidationFailure("An active invite already exists for this email")

        raw_token = generate_invite_token(self._token_bytes)
        invite = VaultInvite(
            id=uuid.uuid4(),
            vault_id=vault.id,
            inviter_id=inviter_id,
            invitee_email=email,
            privilege=privilege,
            status=InviteStatus.PENDING,
            token_hash=hash_invite_token(raw_token),
            expires_at=expires_at,
            created_at=now,
            note=note,
        )
        self._session.add(invite)
        await self._session.flush()

        logger.info(
            "Invite issued",
            extra={
                "vault_id": str(vault.id),
                "invite_id": str(invite.id),
                "inviter_id": inviter_id,
                "privilege": privilege.value,
            },
        )
        return IssuedInvite(invite_id=invite.id, raw_token=raw_token, expires_at=expires_at)

    async def mark_sent(self, invite_id: uuid.UUID) -> bool:
        """Record out-of-band delivery (PENDING -> SENT).

        Returns:
            True if the invite moved to SENT, False if it was not pending.
        """
        now = self._clock.now()
        query = (
            update(VaultInvite)
            .where(VaultInvite.id == invite_id, VaultInvite.status == InviteStatus.PENDING)
            .values(status=InviteStatus.SENT, sent_at=now)
        )
        result = await self._session.execute(query)
        return result.rowcount > 0

    # -------------------------------------------------------------------------
    # Manage
    # -------------------------------------------------------------------------

    async def list_invites(self, vault_id: uuid.UUID, user_id: str) -> list[VaultInvite]:
        """List a vault's invites, newest first. Managers only."""
        vault = await self._vaults.get_vault(vault_id)
        if not can_manage_members(await self._vaults.get_privilege(vault, user_id)):
            raise InsufficientPrivilege("Only owners and admins can view invites")

        query = (
            select(VaultInvite)
            .where(VaultInvite.vault_id == vault.id)
            .order_by(VaultInvite.created_at.desc())
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def _require_manageable(self, invite_id: uuid.UUID, user_id: str) -> VaultInvite:
        """Owners manage every invite; admins only those they issued."""
        invite = await self.get_invite(invite_id)
        if invite is None:
            raise InviteNotFound(invite_id)

        vault = await self._vaults.get_vault(invite.vault_id)
        privilege = await self._vaults.get_privilege(vault, user_id)
        if privilege == Privilege.OWNER:
            return invite
        if privilege == Privilege.ADMIN and invite.inviter_id == user_id:
            return invite
        raise InsufficientPrivilege("You cannot manage this invite")

    async def cancel_invite(self, invite_id: uuid.UUID, user_id: str) -> VaultInvite:
        """Cancel a pending or sent invite."""
        invite = await self._require_manageable(invite_id, user_id)

        now = self._clock.now()
        query = (
            update(VaultInvite)
            .where(VaultInvite.id == invite.id, VaultInvite.status.in_(LIVE_STATUSES))
            .values(status=InviteStatus.CANCELLED, cancelled_at=now)
        )
        result = await self._session.execute(query)
        if result.rowcount == 0:
            raise ValidationFailure("Only pending invites can be cancelled")

        invite.status = InviteStatus.CANCELLED
        invite.cancelled_at = now
        logger.info(
            "Invite cancelled",
            extra={"invite_id": str(invite.id), "user_id": user_id},
        )
        return invite

    async def resend_invite(self, invite_id: uuid.UUID, user_id: str) -> IssuedInvite:
        """Reissue an invite with a fresh token and expiry.

        The previous token stops working immediately.
        """
        invite = await self._require_manageable(invite_id, user_id)

        now = self._clock.now()
        raw_token = generate_invite_token(self._token_bytes)
        token_hash = hash_invite_token(raw_token)
        expires_at = now + self._ttl

        query = (
            update(VaultInvite)
            .where(
                VaultInvite.id == invite.id,
                VaultInvite.status.in_(RESENDABLE_STATUSES),
                VaultInvite.token_hash == invite.token_hash,
            )
            .values(
                status=InviteStatus.PENDING,
                token_hash=token_hash,
                expires_at=expires_at,
                sent_at=None,
            )
        )
        result = await self._session.execute(query)
        if result.rowcount == 0:
            raise ValidationFailure("This invite can no longer be resent")

        invite.status = InviteStatus.PENDING
        invite.token_hash = token_hash
        invite.expires_at = expires_at
        invite.sent_at = None

        logger.info(
            "Invite reissued",
            extra={"invite_id": str(invite.id), "user_id": user_id},
        )
        return IssuedInvite(invite_id=invite.id, raw_token=raw_token, expires_at=expires_at)

    async def get_invite_info(self, raw_token: str) -> InviteInfo | None:
        """Describe an invite for its landing page.

        Lazily observed expiry is persisted here. Unknown tokens return None.
        """
        invite = await self.get_invite_by_token(raw_token)
        if invite is None:
            return None

        now = self._clock.now()
        status = self.effective_status(invite, now)
        if status != invite.status:
            await self._persist_expired(invite)

        try:
            vault = await self._vaults.get_vault(invite.vault_id, include_deleted=True)
        except VaultNotFound:
            logger.error(
                "Invariant violation: invite references a missing vault",
                extra={"invite_id": str(invite.id)},
            )
            return None

        return InviteInfo(
            invite_id=invite.id,
            vault_id=vault.id,
            vault_name=vault.name,
            inviter_id=invite.inviter_id,
            invitee_email=invite.invitee_email,
            privilege=invite.privilege,
            status=status,
            expires_at=invite.expires_at,
            is_valid=status in LIVE_STATUSES and vault.is_active,
        )

    async def _persist_expired(self, invite: VaultInvite) -> None:
        query = (
            update(VaultInvite)
            .where(VaultInvite.id == invite.id, VaultInvite.status.in_(LIVE_STATUSES))
            .values(status=InviteStatus.EXPIRED)
        )
        result = await self._session.execute(query)
        if result.rowcount > 0:
            invite.status = InviteStatus.EXPIRED

    # -------------------------------------------------------------------------
    # Redeem
    # -------------------------------------------------------------------------

    async def accept_invite(self, raw_token: str, email: str, user_id: str) -> VaultMember:
        """Redeem an invite for the signed-in account.

        Args:
            raw_token: Token from the invite link.
            email: Email of the accepting account.
            user_id: Id of the accepting account.

        Returns:
            The new or reactivated active membership.

        Raises:
            InviteInvalid: Unknown or cancelled token, email mismatch, or
                the vault is gone. The reason never says which.
            InviteExpired: The invite is past its expiry.
            InviteAlreadyRedeemed: The invite was accepted already,
                including by a concurrent request.
        """
        now = self._clock.now()

        invite = await self.get_invite_by_token(raw_token)
        if invite is None:
            logger.info("Invite acceptance with unknown token", extra={"user_id": user_id})
            raise InviteInvalid()

        status = self.effective_status(invite, now)
        if status == InviteStatus.ACCEPTED:
            raise InviteAlreadyRedeemed()
        if status == InviteStatus.CANCELLED:
            raise InviteInvalid()
        if status == InviteStatus.EXPIRED:
            raise InviteExpired()

        normalized = normalize_email(email)
        if normalized != invite.invitee_email:
            logger.info(
                "Invite acceptance with mismatched email",
                extra={"invite_id": str(invite.id), "user_id": user_id},
            )
            raise InviteInvalid()
        if await self._identity.find_user_id_by_email(normalized) != user_id:
            logger.info(
                "Invite acceptance by an account not bound to the invited email",
                extra={"invite_id": str(invite.id), "user_id": user_id},
            )
            raise InviteInvalid()

        try:
            vault = await self._vaults.get_vault(invite.vault_id)
        except VaultNotFound as e:
            raise InviteInvalid() from e

        # The conditional write is the exclusivity guard
        claim = (
            update(VaultInvite)
            .where(
                VaultInvite.id == invite.id,
                VaultInvite.status.in_(LIVE_STATUSES),
                VaultInvite.expires_at >= now,
            )
            .values(status=InviteStatus.ACCEPTED, accepted_at=now, invitee_id=user_id)
        )
        result = await self._session.execute(claim)
        if result.rowcount == 0:
            logger.info(
                "Invite acceptance lost a race",
                extra={"invite_id": str(invite.id), "user_id": user_id},
            )
            raise InviteAlreadyRedeemed()

        invite.status = InviteStatus.ACCEPTED
        invite.accepted_at = now
        invite.invitee_id = user_id

        member = await self._admit(vault, invite, user_id, now)
        if self._activity is not None:
            self._activity.record(
                vault.id,
                user_id,
                VaultLogAction.MEMBER_JOINED,
                target_user_id=user_id,
                details={"privilege": member.privilege.value},
            )
        await self._session.flush()

        logger.info(
            "Invite accepted",
            extra={"vault_id": str(vault.id), "invite_id": str(invite.id), "user_id": user_id},
        )
        return member

    async def _admit(
        self, vault: Vault, invite: VaultInvite, user_id: str, now: datetime
    ) -> VaultMember:
        """Create or reactivate the membership granted by an invite."""
        existing = await self._vaults.find_latest_member(vault.id, user_id)

        if existing is not None and existing.status == MemberStatus.ACTIVE:
            return existing

        if existing is not None:
            existing.status = MemberStatus.ACTIVE
            existing.privilege = invite.privilege
            existing.added_by_id = invite.inviter_id
            existing.joined_at = now
            existing.left_at = None
            existing.removed_at = None
            existing.removed_by_id = None
            return existing

        member = VaultMember(
            id=uuid.uuid4(),
            vault_id=vault.id,
            user_id=user_id,
            privilege=invite.privilege,
            status=MemberStatus.ACTIVE,
            added_by_id=invite.inviter_id,
            joined_at=now,
        )
        self._session.add(member)
        return member
