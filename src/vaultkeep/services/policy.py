"""Release policy state machine.

A vault's policy decides when non-owner members may see its contents:

    PENDING --(time_based: now >= release_date)--> RELEASED
    PENDING --(manual_release: owner releases)---> RELEASED
    RELEASED --(expiry_based: now > expires_at)--> EXPIRED
    any (except REVOKED) --(owner/admin revokes)-> REVOKED

Immediate and expiry-based policies start RELEASED. Time-driven transitions
are observed lazily: PolicyEngine.evaluate() reports them and PolicyService
persists them with a conditional UPDATE on the next accessibility check.
There is no background sweeper.

The vault owner is never subject to this machine; callers short-circuit
before asking.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select, update

from vaultkeep.core.clock import is_aware
from vaultkeep.db.models import (
    PolicyType,
    Privilege,
    ReleaseStatus,
    VaultLogAction,
    VaultPolicy,
)
from vaultkeep.services.errors import (
    InsufficientPrivilege,
    InvariantViolation,
    PolicyViolation,
    ValidationFailure,
)
from vaultkeep.services.permissions import can_manage_members

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from vaultkeep.core.clock import Clock
    from vaultkeep.db.models import Vault
    from vaultkeep.services.audit import NotificationService, VaultActivityLog

logger = logging.getLogger(__name__)


# =============================================================================
# Release rules
# =============================================================================


@dataclass(frozen=True, slots=True)
class ImmediateRule:
    """Released at creation."""

    policy_type = PolicyType.IMMEDIATE


@dataclass(frozen=True, slots=True)
class TimeBasedRule:
    """Released once release_date is reached."""

    release_date: datetime
    policy_type = PolicyType.TIME_BASED


@dataclass(frozen=True, slots=True)
class ExpiryBasedRule:
    """Released at creation, closes after expires_at."""

    expires_at: datetime
    policy_type = PolicyType.EXPIRY_BASED


@dataclass(frozen=True, slots=True)
class ManualReleaseRule:
    """Released only by the owner."""

    policy_type = PolicyType.MANUAL_RELEASE


ReleaseRule = ImmediateRule | TimeBasedRule | ExpiryBasedRule | ManualReleaseRule


def rule_for(policy: VaultPolicy) -> ReleaseRule:
    """Build the release rule for a stored policy row.

    Raises:
        InvariantViolation: If the row lacks the date its type requires or
            has an unknown type.
    """
    if policy.policy_type == PolicyType.IMMEDIATE:
        return ImmediateRule()
    if policy.policy_type == PolicyType.TIME_BASED:
        if policy.release_date is None:
            raise InvariantViolation("Time-based policy has no release date")
        return TimeBasedRule(release_date=policy.release_date)
    if policy.policy_type == PolicyType.EXPIRY_BASED:
        if policy.expires_at is None:
            raise InvariantViolation("Expiry-based policy has no expiry date")
        return ExpiryBasedRule(expires_at=policy.expires_at)
    if policy.policy_type == PolicyType.MANUAL_RELEASE:
        return ManualReleaseRule()
    raise InvariantViolation(f"Unknown policy type: {policy.policy_type!r}")


def _format_instant(instant: datetime) -> str:
    return instant.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


# =============================================================================
# Evaluation
# =============================================================================


@dataclass(frozen=True, slots=True)
class PolicyDecision:
    """Outcome of evaluating a policy at an instant.

    Attributes:
        accessible: Whether non-owner members may access the vault.
        reason: Caller-safe explanation when access is denied.
        transition_to: Status the stored row should move to, when a
            time-driven transition was observed.
        invariant_violation: True when the stored row is inconsistent.
    """

    accessible: bool
    reason: str | None = None
    transition_to: ReleaseStatus | None = None
    invariant_violation: bool = False

    @classmethod
    def allow(cls, transition_to: ReleaseStatus | None = None) -> PolicyDecision:
        return cls(accessible=True, transition_to=transition_to)

    @classmethod
    def deny(
        cls,
        reason: str,
        transition_to: ReleaseStatus | None = None,
        *,
        invariant_violation: bool = False,
    ) -> PolicyDecision:
        return cls(
            accessible=False,
            reason=reason,
            transition_to=transition_to,
            invariant_violation=invariant_violation,
        )


class PolicyEngine:
    """Pure evaluator of release policies against a clock."""

    def __init__(self, clock: Clock) -> None:
        self._clock = clock

    def is_accessible(
        self, policy: VaultPolicy, now: datetime | None = None
    ) -> tuple[bool, str | None]:
        """Check accessibility, returning (accessible, reason)."""
        decision = self.evaluate(policy, now)
        return decision.accessible, decision.reason

    def evaluate(self, policy: VaultPolicy, now: datetime | None = None) -> PolicyDecision:
        """Evaluate a policy row at ``now`` (defaults to the clock).

        Revoked and expired states deny before the rule is consulted.
        Inconsistent rows are logged and denied, never raised.
        """
        now = now or self._clock.now()
        status = policy.release_status

        if status == ReleaseStatus.REVOKED:
            return PolicyDecision.deny("Vault access has been revoked")
        if status == ReleaseStatus.EXPIRED:
            if policy.expires_at is not None:
                return PolicyDecision.deny(
                    f"Vault access expired on {_format_instant(policy.expires_at)}"
                )
            return PolicyDecision.deny("Vault access has expired")

        try:
            rule = rule_for(policy)
        except InvariantViolation as e:
            return self._inconsistent(policy, e.reason)

        if status == ReleaseStatus.RELEASED:
            return self._evaluate_released(rule, now)
        if status == ReleaseStatus.PENDING:
            return self._evaluate_pending(policy, rule, now)
        return self._inconsistent(policy, f"Unknown release status: {status!r}")

    def _evaluate_released(self, rule: ReleaseRule, now: datetime) -> PolicyDecision:
        if isinstance(rule, ExpiryBasedRule) and now > rule.expires_at:
            return PolicyDecision.deny(
                f"Vault access expired on {_format_instant(rule.expires_at)}",
                transition_to=ReleaseStatus.EXPIRED,
            )
        return PolicyDecision.allow()

    def _evaluate_pending(
        self, policy: VaultPolicy, rule: ReleaseRule, now: datetime
    ) -> PolicyDecision:
        if isinstance(rule, TimeBasedRule):
            if now >= rule.release_date:
                return PolicyDecision.allow(transition_to=ReleaseStatus.RELEASED)
            return PolicyDecision.deny(
                f"Vault will be released on {_format_instant(rule.release_date)}"
            )
        if isinstance(rule, ManualReleaseRule):
            return PolicyDecision.deny("Vault is awaiting release by its owner")
        if isinstance(rule, ImmediateRule | ExpiryBasedRule):
            # Both kinds are released at creation
            return self._inconsistent(
                policy, f"{rule.policy_type.value} policy observed in pending state"
            )
        return self._inconsistent(policy, f"Unhandled release rule: {type(rule).__name__}")

    def _inconsistent(self, policy: VaultPolicy, detail: str) -> PolicyDecision:
        logger.error(
            "Invariant violation in vault policy: %s",
            detail,
            extra={"vault_id": str(policy.vault_id), "policy_id": str(policy.id)},
        )
        return PolicyDecision.deny("Vault is temporarily unavailable", invariant_violation=True)


# =============================================================================
# Persistence
# =============================================================================


class PolicyService:
    """Creates policies and persists their transitions.

    Every transition is a conditional UPDATE guarded by the expected current
    status; the caller that sees rowcount 0 lost a race and must not act on
    the transition.
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock,
        *,
        notifications: NotificationService | None = None,
        activity: VaultActivityLog | None = None,
    ) -> None:
        self._session = session
        self._clock = clock
        self._engine = PolicyEngine(clock)
        self._notifications = notifications
        self._activity = activity

    @property
    def engine(self) -> PolicyEngine:
        return self._engine

    async def get_policy(self, vault_id: uuid.UUID) -> VaultPolicy | None:
        """Load the policy of a vault."""
        query = select(VaultPolicy).where(VaultPolicy.vault_id == vault_id)
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    def create_policy(
        self,
        vault: Vault,
        policy_type: PolicyType = PolicyType.IMMEDIATE,
        *,
        release_date: datetime | None = None,
        expires_at: datetime | None = None,
        note: str | None = None,
    ) -> VaultPolicy:
        """Validate and stage the policy for a new vault.

        Immediate and expiry-based policies start released; time-based and
        manual policies start pending.

        Raises:
            ValidationFailure: If dates are missing, misplaced or not in
                the future.
        """
        now = self._clock.now()

        if policy_type == PolicyType.TIME_BASED:
            if release_date is None:
                raise ValidationFailure("Time-based policy requires a release date")
            if not is_aware(release_date):
                raise ValidationFailure("Release date must include a timezone")
            if release_date <= now:
                raise ValidationFailure("Release date must be in the future")
        elif release_date is not None:
            raise ValidationFailure("Release date is only valid for time-based policies")

        if policy_type == PolicyType.EXPIRY_BASED:
            if expires_at is None:
                raise ValidationFailure("Expiry-based policy requires an expiry date")
            if not is_aware(expires_at):
                raise ValidationFailure("Expiry date must include a timezone")
            if expires_at <= now:
                raise ValidationFailure("Expiry date must be in the future")
        elif expires_at is not None:
            raise ValidationFailure("Expiry date is only valid for expiry-based policies")

        released = policy_type in (PolicyType.IMMEDIATE, PolicyType.EXPIRY_BASED)
        policy = VaultPolicy(
            id=uuid.uuid4(),
            vault_id=vault.id,
            policy_type=policy_type,
            release_status=ReleaseStatus.RELEASED if released else ReleaseStatus.PENDING,
            release_date=release_date,
            expires_at=expires_at,
            released_at=now if released else None,
            note=note,
            created_at=now,
        )
        self._session.add(policy)
        return policy

    async def check_accessibility(self, vault: Vault) -> PolicyDecision:
        """Evaluate the vault's policy and persist any observed transition.

        A vault without a policy row is an invariant violation and denies.
        """
        policy = await self.get_policy(vault.id)
        if policy is None:
            logger.error(
                "Invariant violation: vault has no release policy",
                extra={"vault_id": str(vault.id)},
            )
            return PolicyDecision.deny(
                "Vault is temporarily unavailable", invariant_violation=True
            )

        decision = self._engine.evaluate(policy)
        if decision.transition_to is not None:
            await self._persist_observed_transition(vault, policy, decision.transition_to)
        return decision

    async def _persist_observed_transition(
        self, vault: Vault, policy: VaultPolicy, target: ReleaseStatus
    ) -> None:
        now = self._clock.now()
        source = policy.release_status
        values: dict[str, object] = {"release_status": target}
        if target == ReleaseStatus.RELEASED:
            values["released_at"] = now

        won = await self._conditional_update(policy, source, values)
        if not won:
            # Another request persisted it first
            return

        logger.info(
            "Vault policy transitioned %s -> %s",
            source.value,
            target.value,
            extra={"vault_id": str(vault.id)},
        )
        if target == ReleaseStatus.RELEASED:
            await self._on_released(vault, vault.owner_id)

    async def release(self, vault: Vault, user_id: str) -> VaultPolicy:
        """Release a manual-release vault.

        Raises:
            InsufficientPrivilege: If the caller is not the owner.
            ValidationFailure: If the policy is not manual-release.
            PolicyViolation: If the policy is no longer pending.
        """
        if vault.owner_id != user_id:
            raise InsufficientPrivilege("Only the vault owner can release the vault")

        policy = await self._require_policy(vault)
        if policy.policy_type != PolicyType.MANUAL_RELEASE:
            raise ValidationFailure("Vault policy does not allow manual release")

        now = self._clock.now()
        won = await self._conditional_update(
            policy,
            ReleaseStatus.PENDING,
            {
                "release_status": ReleaseStatus.RELEASED,
                "released_at": now,
                "released_by_id": user_id,
            },
        )
        if not won:
            raise PolicyViolation("Vault is already released or can no longer be released")

        logger.info(
            "Vault released manually",
            extra={"vault_id": str(vault.id), "user_id": user_id},
        )
        await self._on_released(vault, user_id)
        return policy

    async def revoke(
        self, vault: Vault, user_id: str, actor_privilege: Privilege | None
    ) -> VaultPolicy:
        """Revoke access to a vault's contents for non-owners.

        Raises:
            InsufficientPrivilege: If the caller cannot manage the vault.
            PolicyViolation: If the vault is deleted or already revoked.
        """
        if not can_manage_members(actor_privilege):
            raise InsufficientPrivilege("Only owners and admins can revoke vault access")
        if not vault.is_active:
            raise PolicyViolation("Deleted vaults cannot be revoked")

        policy = await self._require_policy(vault)
        now = self._clock.now()

        query = (
            update(VaultPolicy)
            .where(
                VaultPolicy.id == policy.id,
                VaultPolicy.release_status != ReleaseStatus.REVOKED,
            )
            .values(release_status=ReleaseStatus.REVOKED, revoked_at=now, revoked_by_id=user_id)
        )
        result = await self._session.execute(query)
        if result.rowcount == 0:
            raise PolicyViolation("Vault access is already revoked")

        policy.release_status = ReleaseStatus.REVOKED
        policy.revoked_at = now
        policy.revoked_by_id = user_id

        logger.warning(
            "Vault access revoked",
            extra={"vault_id": str(vault.id), "user_id": user_id},
        )
        if self._activity is not None:
            self._activity.record(vault.id, user_id, VaultLogAction.VAULT_REVOKED)
        return policy

    async def _require_policy(self, vault: Vault) -> VaultPolicy:
        policy = await self.get_policy(vault.id)
        if policy is None:
            logger.error(
                "Invariant violation: vault has no release policy",
                extra={"vault_id": str(vault.id)},
            )
            raise InvariantViolation("Vault has no release policy")
        return policy

    async def _conditional_update(
        self, policy: VaultPolicy, expected: ReleaseStatus, values: dict[str, object]
    ) -> bool:
        query = (
            update(VaultPolicy)
            .where(VaultPolicy.id == policy.id, VaultPolicy.release_status == expected)
            .values(**values)
        )
        result = await self._session.execute(query)
        if result.rowcount == 0:
            return False
        for attr, value in values.items():
            setattr(policy, attr, value)
        return True

    async def _on_released(self, vault: Vault, user_id: str) -> None:
        if self._activity is not None:
            self._activity.record(vault.id, user_id, VaultLogAction.VAULT_RELEASED)
        if self._notifications is not None:
            await self._notifications.notify_vault_released(vault)
