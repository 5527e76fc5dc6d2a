"""Access control gateway: the single entry point for callers.

Composes the release-policy engine, permission resolver, invite lifecycle
and vault cipher. Every operation returns a result object instead of
raising:
- domain errors become a member of the closed AccessError enum with a
  caller-safe reason
- database outages, timeouts and unexpected errors become TRANSIENT_FAILURE

Operations run in the session handed to the gateway and commit on success
(accessibility checks may persist lazily observed policy transitions) or
roll back on failure.
"""

from __future__ import annotations

import logging
import uuid  # noqa: TC003
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime  # noqa: TC003
from typing import TYPE_CHECKING, Generic, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from vaultkeep.core.clock import SystemClock
from vaultkeep.db.models import Privilege, VaultMember
from vaultkeep.services.audit import NotificationService, VaultActivityLog
from vaultkeep.services.encryption import VaultCipher
from vaultkeep.services.errors import (
    AccessError,
    InvariantViolation,
    ItemNotFound,
    VaultAccessError,
)
from vaultkeep.services.invites import (
    DEFAULT_INVITE_TTL_DAYS,
    INVITE_TOKEN_BYTES,
    InviteService,
    IssuedInvite,
)
from vaultkeep.services.items import VaultItemService
from vaultkeep.services.keys import KeyDerivationService
from vaultkeep.services.permissions import Access
from vaultkeep.services.permissions import can_manage_members as _can_manage
from vaultkeep.services.policy import PolicyService
from vaultkeep.services.vaults import DEFAULT_RESTORE_WINDOW_DAYS, VaultService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from vaultkeep.core.clock import Clock
    from vaultkeep.core.config import Settings
    from vaultkeep.services.identity import IdentityDirectory

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class GatewayResult(Generic[T]):
    """Value of a successful operation, or the reason it failed."""

    value: T | None = None
    error: AccessError | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> GatewayResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: AccessError, reason: str) -> GatewayResult[T]:
        return cls(error=error, reason=reason)


@dataclass(frozen=True, slots=True)
class AccessDecision:
    """Yes/no access answer with a reason when denied."""

    allowed: bool
    reason: str | None = None
    error: AccessError | None = None


class AccessControlGateway:
    """Entry point for access checks, invites, release and field crypto.

    Example:
        async with get_async_session() as session:
            gateway = AccessControlGateway.from_settings(session, settings, identity)
            decision = await gateway.can_view(vault_id, item_id, user_id)
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        signing_key: str | bytes,
        identity: IdentityDirectory,
        clock: Clock | None = None,
        invite_ttl_days: int = DEFAULT_INVITE_TTL_DAYS,
        invite_token_bytes: int = INVITE_TOKEN_BYTES,
        restore_window_days: int = DEFAULT_RESTORE_WINDOW_DAYS,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()

        self.activity = VaultActivityLog(session, self._clock)
        self.notifications = NotificationService(session, self._clock)
        self.cipher = VaultCipher(KeyDerivationService(signing_key))
        self.policies = PolicyService(
            session,
            self._clock,
            notifications=self.notifications,
            activity=self.activity,
        )
        self.vaults = VaultService(
            session,
            self._clock,
            policies=self.policies,
            activity=self.activity,
            restore_window_days=restore_window_days,
        )
        self.invites = InviteService(
            session,
            self._clock,
            identity,
            vaults=self.vaults,
            activity=self.activity,
            ttl_days=invite_ttl_days,
            token_bytes=invite_token_bytes,
        )
        self.items = VaultItemService(
            session,
            self._clock,
            self.cipher,
            vaults=self.vaults,
            policies=self.policies,
            activity=self.activity,
            restore_window_days=restore_window_days,
        )

    @classmethod
    def from_settings(
        cls,
        session: AsyncSession,
        settings: Settings,
        identity: IdentityDirectory,
        clock: Clock | None = None,
    ) -> AccessControlGateway:
        """Build a gateway from application settings."""
        return cls(
            session,
            signing_key=settings.crypto.signing_key.get_secret_value(),
            identity=identity,
            clock=clock,
            invite_ttl_days=settings.vault.invite_ttl_days,
            invite_token_bytes=settings.vault.invite_token_bytes,
            restore_window_days=settings.vault.restore_window_days,
        )

    # -------------------------------------------------------------------------
    # Boundary
    # -------------------------------------------------------------------------

    async def run(self, operation: str, action: Callable[[], Awaitable[T]]) -> GatewayResult[T]:
        """Execute an operation, committing on success and converting errors.

        Args:
            operation: Name used in logs.
            action: Coroutine factory performing the work.

        Returns:
            Success with the action's value, or a failure result.
        """
        try:
            value = await action()
            await self._session.commit()
            return GatewayResult.success(value)
        except VaultAccessError as e:
            await self._session.rollback()
            if isinstance(e, InvariantViolation):
                logger.error("%s failed on invariant violation: %s", operation, e.reason)
            else:
                logger.info("%s denied: %s (%s)", operation, e.reason, e.code.value)
            return GatewayResult.failure(e.code, e.reason)
        except IntegrityError:
            await self._session.rollback()
            logger.warning("%s conflicted with a concurrent write", operation, exc_info=True)
            return GatewayResult.failure(
                AccessError.INVALID_REQUEST, "The request conflicts with a concurrent change"
            )
        except SQLAlchemyError:
            await self._session.rollback()
            logger.warning("%s failed on a database error", operation, exc_info=True)
            return GatewayResult.failure(
                AccessError.TRANSIENT_FAILURE, "Temporarily unavailable, please retry"
            )
        except Exception:
            await self._session.rollback()
            logger.error("%s failed unexpectedly", operation, exc_info=True)
            return GatewayResult.failure(
                AccessError.TRANSIENT_FAILURE, "Temporarily unavailable, please retry"
            )

    # -------------------------------------------------------------------------
    # Access checks
    # -------------------------------------------------------------------------

    async def is_vault_accessible(self, vault_id: uuid.UUID, user_id: str) -> AccessDecision:
        """Whether the user can currently see the vault's contents.

        The owner always can. Other members depend on the release policy.
        """

        async def check() -> AccessDecision:
            vault = await self.vaults.get_vault(vault_id)
            privilege = await self.vaults.get_privilege(vault, user_id)
            if privilege is None:
                return AccessDecision(
                    False, "You are not a member of this vault", AccessError.INSUFFICIENT_PRIVILEGE
                )
            if privilege == Privilege.OWNER:
                return AccessDecision(True)

            decision = await self.policies.check_accessibility(vault)
            if decision.accessible:
                return AccessDecision(True)
            error = (
                AccessError.INVARIANT_VIOLATION
                if decision.invariant_violation
                else AccessError.POLICY_VIOLATION
            )
            return AccessDecision(False, decision.reason, error)

        result = await self.run("is_vault_accessible", check)
        return _decision_from(result)

    async def _item_decision(
        self, vault_id: uuid.UUID, item_id: uuid.UUID, user_id: str, needed: Access
    ) -> AccessDecision:
        async def check() -> AccessDecision:
            vault = await self.vaults.get_vault(vault_id)
            item = await self.items.get_item_row(item_id)
            if item is None or item.vault_id != vault.id or not item.is_active:
                raise ItemNotFound(item_id)

            decision = await self.items.evaluate_access(vault, item, user_id)
            access = decision.access
            allowed = access.can_edit if needed == Access.EDIT else access.can_view
            if allowed:
                return AccessDecision(True)
            if decision.error is None:
                return AccessDecision(
                    False,
                    "You can view but not edit this item",
                    AccessError.INSUFFICIENT_PRIVILEGE,
                )
            return AccessDecision(False, decision.reason, decision.error)

        result = await self.run(f"can_{needed.value}", check)
        return _decision_from(result)

    async def resolve(self, vault_id: uuid.UUID, item_id: uuid.UUID, user_id: str) -> Access:
        """Effective access to an item. Any failure resolves to NO_ACCESS."""

        async def check() -> Access:
            vault = await self.vaults.get_vault(vault_id)
            item = await self.items.get_item_row(item_id)
            if item is None or item.vault_id != vault.id or not item.is_active:
                raise ItemNotFound(item_id)
            return (await self.items.evaluate_access(vault, item, user_id)).access

        result = await self.run("resolve", check)
        return result.value if result.ok and result.value is not None else Access.NO_ACCESS

    async def can_view(
        self, vault_id: uuid.UUID, item_id: uuid.UUID, user_id: str
    ) -> AccessDecision:
        return await self._item_decision(vault_id, item_id, user_id, Access.VIEW)

    async def can_edit(
        self, vault_id: uuid.UUID, item_id: uuid.UUID, user_id: str
    ) -> AccessDecision:
        return await self._item_decision(vault_id, item_id, user_id, Access.EDIT)

    async def can_manage_members(self, vault_id: uuid.UUID, user_id: str) -> bool:
        """Owners and admins manage members, regardless of item grants."""

        async def check() -> bool:
            vault = await self.vaults.get_vault(vault_id)
            return _can_manage(await self.vaults.get_privilege(vault, user_id))

        result = await self.run("can_manage_members", check)
        return bool(result.ok and result.value)

    # -------------------------------------------------------------------------
    # Invites and policy
    # -------------------------------------------------------------------------

    async def create_invite(
        self,
        vault_id: uuid.UUID,
        inviter_id: str,
        invitee_email: str,
        privilege: Privilege = Privilege.MEMBER,
        expires_at: datetime | None = None,
    ) -> GatewayResult[IssuedInvite]:
        """Issue an invite. The raw token in the result is shown only once."""
        return await self.run(
            "create_invite",
            lambda: self.invites.create_invite(
                vault_id, inviter_id, invitee_email, privilege, expires_at
            ),
        )

    async def accept_invite(
        self, raw_token: str, email: str, user_id: str
    ) -> GatewayResult[VaultMember]:
        """Redeem an invite for the signed-in account."""
        return await self.run(
            "accept_invite", lambda: self.invites.accept_invite(raw_token, email, user_id)
        )

    async def release_vault_manually(
        self, vault_id: uuid.UUID, user_id: str
    ) -> GatewayResult[None]:
        """Release a manual-release vault. Owner only."""

        async def release() -> None:
            vault = await self.vaults.get_vault(vault_id)
            await self.policies.release(vault, user_id)

        return await self.run("release_vault_manually", release)

    async def revoke_vault_policy(self, vault_id: uuid.UUID, user_id: str) -> GatewayResult[None]:
        """Revoke non-owner access to a vault. Owners and admins."""

        async def revoke() -> None:
            vault = await self.vaults.get_vault(vault_id)
            privilege = await self.vaults.get_privilege(vault, user_id)
            await self.policies.revoke(vault, user_id, privilege)

        return await self.run("revoke_vault_policy", revoke)

    # -------------------------------------------------------------------------
    # Field crypto
    # -------------------------------------------------------------------------

    async def encrypt_field(self, plaintext: str, vault_id: uuid.UUID) -> GatewayResult[str]:
        """Encrypt a value with the vault's key."""

        async def encrypt() -> str:
            vault = await self.vaults.get_vault(vault_id)
            return self.cipher.encrypt(plaintext, vault)

        return await self.run("encrypt_field", encrypt)

    async def decrypt_field(self, ciphertext: str, vault_id: uuid.UUID) -> GatewayResult[str]:
        """Decrypt a value with the vault's key. Failures are never empty strings."""

        async def decrypt() -> str:
            vault = await self.vaults.get_vault(vault_id)
            return self.cipher.decrypt(ciphertext, vault)

        return await self.run("decrypt_field", decrypt)


def _decision_from(result: GatewayResult[AccessDecision]) -> AccessDecision:
    if result.ok and result.value is not None:
        return result.value
    return AccessDecision(False, result.reason, result.error)
