"""Tests for the release policy state machine.

Tests cover:
- Rule construction from stored rows
- Evaluation of each policy type at its time boundaries
- Revoked and expired states dominating every rule
- Inconsistent rows denied as invariant violations
- Policy creation validation
- Lazy transition persistence and race handling
- Manual release and revocation
"""

import logging
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tests.factories import NOW, make_policy, make_vault, result_with
from vaultkeep.db.models import (
    PolicyType,
    Privilege,
    ReleaseStatus,
    VaultLogAction,
    VaultStatus,
)
from vaultkeep.services.errors import (
    InsufficientPrivilege,
    InvariantViolation,
    PolicyViolation,
    ValidationFailure,
)
from vaultkeep.services.policy import (
    ExpiryBasedRule,
    ImmediateRule,
    ManualReleaseRule,
    PolicyEngine,
    PolicyService,
    TimeBasedRule,
    rule_for,
)

RELEASE_DATE = NOW + timedelta(days=3)
EXPIRES_AT = NOW + timedelta(days=3)


class TestRuleFor:
    """Tests for rule_for()."""

    def test_rules_per_policy_type(self):
        vault = make_vault()
        assert isinstance(rule_for(make_policy(vault)), ImmediateRule)
        assert isinstance(
            rule_for(make_policy(vault, PolicyType.MANUAL_RELEASE)), ManualReleaseRule
        )
        rule = rule_for(make_policy(vault, PolicyType.TIME_BASED, release_date=RELEASE_DATE))
        assert rule == TimeBasedRule(release_date=RELEASE_DATE)
        rule = rule_for(make_policy(vault, PolicyType.EXPIRY_BASED, expires_at=EXPIRES_AT))
        assert rule == ExpiryBasedRule(expires_at=EXPIRES_AT)

    def test_time_based_without_date_is_invariant_violation(self):
        with pytest.raises(InvariantViolation):
            rule_for(make_policy(make_vault(), PolicyType.TIME_BASED))

    def test_expiry_based_without_date_is_invariant_violation(self):
        with pytest.raises(InvariantViolation):
            rule_for(make_policy(make_vault(), PolicyType.EXPIRY_BASED))


class TestPolicyEngine:
    """Tests for PolicyEngine.evaluate()."""

    def test_immediate_is_accessible(self, clock):
        policy = make_policy(make_vault())
        assert PolicyEngine(clock).is_accessible(policy) == (True, None)

    def test_time_based_denied_before_release(self, clock):
        policy = make_policy(make_vault(), PolicyType.TIME_BASED, release_date=RELEASE_DATE)
        decision = PolicyEngine(clock).evaluate(policy)

        assert decision.accessible is False
        assert "will be released on 2026-10-22" in decision.reason
        assert decision.transition_to is None

    def test_time_based_released_at_release_date(self, clock):
        """At exactly release_date the vault opens and the transition is reported."""
        policy = make_policy(make_vault(), PolicyType.TIME_BASED, release_date=RELEASE_DATE)
        decision = PolicyEngine(clock).evaluate(policy, now=RELEASE_DATE)

        assert decision.accessible is True
        assert decision.transition_to == ReleaseStatus.RELEASED

    def test_time_based_one_second_before_release(self, clock):
        policy = make_policy(make_vault(), PolicyType.TIME_BASED, release_date=RELEASE_DATE)
        decision = PolicyEngine(clock).evaluate(policy, now=RELEASE_DATE - timedelta(seconds=1))
        assert decision.accessible is False

    def test_released_time_based_stays_accessible(self, clock):
        policy = make_policy(
            make_vault(),
            PolicyType.TIME_BASED,
            release_status=ReleaseStatus.RELEASED,
            release_date=RELEASE_DATE,
        )
        decision = PolicyEngine(clock).evaluate(policy, now=RELEASE_DATE + timedelta(days=1))
        assert decision.accessible is True
        assert decision.transition_to is None

    def test_expiry_based_accessible_at_expiry(self, clock):
        """Access is still granted at exactly expires_at."""
        policy = make_policy(make_vault(), PolicyType.EXPIRY_BASED, expires_at=EXPIRES_AT)
        assert PolicyEngine(clock).evaluate(policy, now=EXPIRES_AT).accessible is True

    def test_expiry_based_denied_after_expiry(self, clock):
        policy = make_policy(make_vault(), PolicyType.EXPIRY_BASED, expires_at=EXPIRES_AT)
        decision = PolicyEngine(clock).evaluate(policy, now=EXPIRES_AT + timedelta(seconds=1))

        assert decision.accessible is False
        assert decision.transition_to == ReleaseStatus.EXPIRED
        assert "expired on" in decision.reason

    def test_expired_status_denies(self, clock):
        policy = make_policy(
            make_vault(),
            PolicyType.EXPIRY_BASED,
            release_status=ReleaseStatus.EXPIRED,
            expires_at=EXPIRES_AT,
        )
        decision = PolicyEngine(clock).evaluate(policy)
        assert decision.accessible is False
        assert decision.transition_to is None

    def test_manual_release_pending_denies(self, clock):
        policy = make_policy(make_vault(), PolicyType.MANUAL_RELEASE)
        decision = PolicyEngine(clock).evaluate(policy)
        assert decision.accessible is False
        assert decision.reason == "Vault is awaiting release by its owner"

    @pytest.mark.parametrize(
        ("policy_type", "dates"),
        [
            (PolicyType.IMMEDIATE, {}),
            (PolicyType.MANUAL_RELEASE, {}),
            (PolicyType.TIME_BASED, {"release_date": NOW - timedelta(days=1)}),
            (PolicyType.EXPIRY_BASED, {"expires_at": NOW + timedelta(days=1)}),
        ],
    )
    def test_revoked_dominates_every_rule(self, clock, policy_type, dates):
        policy = make_policy(
            make_vault(), policy_type, release_status=ReleaseStatus.REVOKED, **dates
        )
        decision = PolicyEngine(clock).evaluate(policy)
        assert decision.accessible is False
        assert decision.reason == "Vault access has been revoked"
        assert decision.transition_to is None

    @pytest.mark.parametrize("policy_type", [PolicyType.IMMEDIATE, PolicyType.EXPIRY_BASED])
    def test_pending_released_at_creation_type_is_invariant_violation(
        self, clock, policy_type, caplog
    ):
        """Immediate/expiry policies never sit in PENDING; deny and log."""
        policy = make_policy(
            make_vault(),
            policy_type,
            release_status=ReleaseStatus.PENDING,
            expires_at=EXPIRES_AT if policy_type == PolicyType.EXPIRY_BASED else None,
        )
        with caplog.at_level(logging.ERROR):
            decision = PolicyEngine(clock).evaluate(policy)

        assert decision.accessible is False
        assert decision.invariant_violation is True
        assert decision.reason == "Vault is temporarily unavailable"
        assert "Invariant violation" in caplog.text

    def test_missing_date_denied_not_raised(self, clock):
        policy = make_policy(make_vault(), PolicyType.TIME_BASED)
        decision = PolicyEngine(clock).evaluate(policy)
        assert decision.invariant_violation is True


class TestCreatePolicy:
    """Tests for PolicyService.create_policy()."""

    def test_immediate_starts_released(self, session, clock):
        vault = make_vault()
        policy = PolicyService(session, clock).create_policy(vault)

        assert policy.release_status == ReleaseStatus.RELEASED
        assert policy.released_at == NOW
        session.add.assert_called_once_with(policy)

    def test_expiry_based_starts_released(self, session, clock):
        policy = PolicyService(session, clock).create_policy(
            make_vault(), PolicyType.EXPIRY_BASED, expires_at=EXPIRES_AT
        )
        assert policy.release_status == ReleaseStatus.RELEASED
        assert policy.expires_at == EXPIRES_AT

    @pytest.mark.parametrize("policy_type", [PolicyType.TIME_BASED, PolicyType.MANUAL_RELEASE])
    def test_deferred_policies_start_pending(self, session, clock, policy_type):
        release_date = RELEASE_DATE if policy_type == PolicyType.TIME_BASED else None
        policy = PolicyService(session, clock).create_policy(
            make_vault(), policy_type, release_date=release_date
        )
        assert policy.release_status == ReleaseStatus.PENDING
        assert policy.released_at is None

    @pytest.mark.parametrize(
        ("policy_type", "dates", "message"),
        [
            (PolicyType.TIME_BASED, {}, "requires a release date"),
            (PolicyType.TIME_BASED, {"release_date": NOW}, "must be in the future"),
            (PolicyType.EXPIRY_BASED, {}, "requires an expiry date"),
            (
                PolicyType.EXPIRY_BASED,
                {"expires_at": NOW - timedelta(minutes=1)},
                "must be in the future",
            ),
            (
                PolicyType.TIME_BASED,
                {"release_date": RELEASE_DATE.replace(tzinfo=None)},
                "must include a timezone",
            ),
            (
                PolicyType.EXPIRY_BASED,
                {"expires_at": EXPIRES_AT.replace(tzinfo=None)},
                "must include a timezone",
            ),
            (PolicyType.IMMEDIATE, {"release_date": RELEASE_DATE}, "only valid"),
            (PolicyType.MANUAL_RELEASE, {"expires_at": EXPIRES_AT}, "only valid"),
        ],
    )
    def test_invalid_dates_rejected(self, session, clock, policy_type, dates, message):
        with pytest.raises(ValidationFailure) as exc_info:
            PolicyService(session, clock).create_policy(make_vault(), policy_type, **dates)
        assert message in exc_info.value.reason
        session.add.assert_not_called()


class TestCheckAccessibility:
    """Tests for lazy transition persistence."""

    @pytest.mark.asyncio
    async def test_missing_policy_is_invariant_violation(self, session, clock):
        service = PolicyService(session, clock)
        with patch.object(service, "get_policy", AsyncMock(return_value=None)):
            decision = await service.check_accessibility(make_vault())

        assert decision.accessible is False
        assert decision.invariant_violation is True

    @pytest.mark.asyncio
    async def test_time_based_release_persisted_once(self, session, clock):
        """Observing the release date writes RELEASED and notifies members."""
        vault = make_vault()
        policy = make_policy(vault, PolicyType.TIME_BASED, release_date=RELEASE_DATE)
        notifications = MagicMock()
        notifications.notify_vault_released = AsyncMock(return_value=2)
        activity = MagicMock()
        service = PolicyService(session, clock, notifications=notifications, activity=activity)

        clock.set(RELEASE_DATE + timedelta(hours=1))
        with patch.object(service, "get_policy", AsyncMock(return_value=policy)):
            decision = await service.check_accessibility(vault)

        assert decision.accessible is True
        assert policy.release_status == ReleaseStatus.RELEASED
        assert policy.released_at == RELEASE_DATE + timedelta(hours=1)
        session.execute.assert_awaited_once()
        notifications.notify_vault_released.assert_awaited_once_with(vault)
        activity.record.assert_called_once_with(
            vault.id, vault.owner_id, VaultLogAction.VAULT_RELEASED
        )

    @pytest.mark.asyncio
    async def test_lost_race_does_not_notify(self, session, clock):
        """When another request persisted the transition, do nothing more."""
        vault = make_vault()
        policy = make_policy(vault, PolicyType.TIME_BASED, release_date=RELEASE_DATE)
        notifications = MagicMock()
        notifications.notify_vault_released = AsyncMock()
        session.execute.return_value = result_with(rowcount=0)
        service = PolicyService(session, clock, notifications=notifications)

        clock.set(RELEASE_DATE)
        with patch.object(service, "get_policy", AsyncMock(return_value=policy)):
            decision = await service.check_accessibility(vault)

        assert decision.accessible is True
        assert policy.release_status == ReleaseStatus.PENDING
        notifications.notify_vault_released.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expiry_persisted(self, session, clock):
        vault = make_vault()
        policy = make_policy(vault, PolicyType.EXPIRY_BASED, expires_at=EXPIRES_AT)
        service = PolicyService(session, clock)

        clock.set(EXPIRES_AT + timedelta(seconds=1))
        with patch.object(service, "get_policy", AsyncMock(return_value=policy)):
            decision = await service.check_accessibility(vault)

        assert decision.accessible is False
        assert policy.release_status == ReleaseStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_no_write_without_transition(self, session, clock):
        vault = make_vault()
        service = PolicyService(session, clock)
        with patch.object(service, "get_policy", AsyncMock(return_value=make_policy(vault))):
            await service.check_accessibility(vault)
        session.execute.assert_not_awaited()


class TestRelease:
    """Tests for PolicyService.release()."""

    @pytest.mark.asyncio
    async def test_owner_releases_manual_vault(self, session, clock):
        vault = make_vault("owner-1")
        policy = make_policy(vault, PolicyType.MANUAL_RELEASE)
        activity = MagicMock()
        service = PolicyService(session, clock, activity=activity)

        with patch.object(service, "get_policy", AsyncMock(return_value=policy)):
            released = await service.release(vault, "owner-1")

        assert released.release_status == ReleaseStatus.RELEASED
        assert released.released_by_id == "owner-1"
        assert released.released_at == NOW
        activity.record.assert_called_once_with(
            vault.id, "owner-1", VaultLogAction.VAULT_RELEASED
        )

    @pytest.mark.asyncio
    async def test_non_owner_cannot_release(self, session, clock):
        with pytest.raises(InsufficientPrivilege):
            await PolicyService(session, clock).release(make_vault("owner-1"), "admin-1")
        session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_only_manual_policies_release(self, session, clock):
        vault = make_vault("owner-1")
        service = PolicyService(session, clock)
        policy = make_policy(vault, PolicyType.TIME_BASED, release_date=RELEASE_DATE)
        with (
            patch.object(service, "get_policy", AsyncMock(return_value=policy)),
            pytest.raises(ValidationFailure),
        ):
            await service.release(vault, "owner-1")

    @pytest.mark.asyncio
    async def test_second_release_is_policy_violation(self, session, clock):
        """The conditional UPDATE matches nothing once the vault is released."""
        vault = make_vault("owner-1")
        policy = make_policy(vault, PolicyType.MANUAL_RELEASE)
        session.execute.return_value = result_with(rowcount=0)
        service = PolicyService(session, clock)

        with (
            patch.object(service, "get_policy", AsyncMock(return_value=policy)),
            pytest.raises(PolicyViolation),
        ):
            await service.release(vault, "owner-1")


class TestRevoke:
    """Tests for PolicyService.revoke()."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("privilege", [Privilege.OWNER, Privilege.ADMIN])
    async def test_managers_revoke(self, session, clock, privilege):
        vault = make_vault("owner-1")
        policy = make_policy(vault)
        activity = MagicMock()
        service = PolicyService(session, clock, activity=activity)

        with patch.object(service, "get_policy", AsyncMock(return_value=policy)):
            revoked = await service.revoke(vault, "actor", privilege)

        assert revoked.release_status == ReleaseStatus.REVOKED
        assert revoked.revoked_by_id == "actor"
        assert revoked.revoked_at == NOW
        assert service.engine.evaluate(revoked).accessible is False
        activity.record.assert_called_once_with(vault.id, "actor", VaultLogAction.VAULT_REVOKED)

    @pytest.mark.asyncio
    async def test_member_cannot_revoke(self, session, clock):
        with pytest.raises(InsufficientPrivilege):
            await PolicyService(session, clock).revoke(make_vault(), "m", Privilege.MEMBER)

    @pytest.mark.asyncio
    async def test_deleted_vault_cannot_be_revoked(self, session, clock):
        vault = make_vault(status=VaultStatus.DELETED, deleted_at=NOW)
        with pytest.raises(PolicyViolation):
            await PolicyService(session, clock).revoke(vault, "owner-1", Privilege.OWNER)

    @pytest.mark.asyncio
    async def test_already_revoked(self, session, clock):
        vault = make_vault()
        policy = make_policy(vault, release_status=ReleaseStatus.REVOKED)
        session.execute.return_value = result_with(rowcount=0)
        service = PolicyService(session, clock)

        with (
            patch.object(service, "get_policy", AsyncMock(return_value=policy)),
            pytest.raises(PolicyViolation),
        ):
            await service.revoke(vault, "owner-1", Privilege.OWNER)

    @pytest.mark.asyncio
    async def test_missing_policy_raises_invariant_violation(self, session, clock):
        service = PolicyService(session, clock)
        with (
            patch.object(service, "get_policy", AsyncMock(return_value=None)),
            pytest.raises(InvariantViolation),
        ):
            await service.revoke(make_vault(), "owner-1", Privilege.OWNER)

