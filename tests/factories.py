"""Test data factories for VaultKeep.

This module provides factory functions for creating ORM rows and mock
sessions. Rows are built unattached, with every column the services read
filled in explicitly (column defaults only apply on INSERT).
"""

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

from vaultkeep.db.models import (
    InviteStatus,
    ItemStatus,
    ItemType,
    MemberStatus,
    PolicyType,
    Privilege,
    ReleaseStatus,
    Vault,
    VaultInvite,
    VaultItem,
    VaultMember,
    VaultPolicy,
    VaultStatus,
)
from vaultkeep.services.invites import hash_invite_token

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def make_vault(
    owner_id: str = "owner-1",
    *,
    vault_id: uuid.UUID | None = None,
    original_owner_id: str | None = None,
    status: VaultStatus = VaultStatus.ACTIVE,
    name: str = "Family vault",
    deleted_at: datetime | None = None,
) -> Vault:
    """Create an unattached vault.

    Args:
        owner_id: Current owner's user id.
        vault_id: Vault id. Auto-generated if None.
        original_owner_id: Creator's user id. Defaults to owner_id.
        status: Vault status.
        name: Display name.
        deleted_at: Soft-deletion time, for deleted vaults.

    Returns:
        Vault row ready for tests.
    """
    return Vault(
        id=vault_id or uuid.uuid4(),
        owner_id=owner_id,
        original_owner_id=original_owner_id or owner_id,
        name=name,
        status=status,
        deleted_at=deleted_at,
        deleted_by=owner_id if deleted_at else None,
        created_at=NOW,
        updated_at=NOW,
    )


def make_member(
    vault: Vault,
    user_id: str,
    privilege: Privilege = Privilege.MEMBER,
    *,
    status: MemberStatus = MemberStatus.ACTIVE,
    joined_at: datetime | None = None,
) -> VaultMember:
    """Create an unattached membership row."""
    return VaultMember(
        id=uuid.uuid4(),
        vault_id=vault.id,
        user_id=user_id,
        privilege=privilege,
        status=status,
        added_by_id=vault.owner_id,
        joined_at=joined_at or NOW,
    )


def make_policy(
    vault: Vault,
    policy_type: PolicyType = PolicyType.IMMEDIATE,
    *,
    release_status: ReleaseStatus | None = None,
    release_date: datetime | None = None,
    expires_at: datetime | None = None,
) -> VaultPolicy:
    """Create an unattached release policy.

    The status defaults to what the policy type starts in: RELEASED for
    immediate and expiry-based policies, PENDING otherwise.
    """
    if release_status is None:
        released = policy_type in (PolicyType.IMMEDIATE, PolicyType.EXPIRY_BASED)
        release_status = ReleaseStatus.RELEASED if released else ReleaseStatus.PENDING
    return VaultPolicy(
        id=uuid.uuid4(),
        vault_id=vault.id,
        policy_type=policy_type,
        release_status=release_status,
        release_date=release_date,
        expires_at=expires_at,
        created_at=NOW,
    )


def make_invite(
    vault: Vault,
    email: str = "invitee@example.com",
    *,
    raw_token: str = "raw-invite-token",
    privilege: Privilege = Privilege.MEMBER,
    status: InviteStatus = InviteStatus.PENDING,
    inviter_id: str | None = None,
    expires_at: datetime | None = None,
) -> VaultInvite:
    """Create an unattached invite whose token hash matches raw_token."""
    return VaultInvite(
        id=uuid.uuid4(),
        vault_id=vault.id,
        inviter_id=inviter_id or vault.owner_id,
        invitee_email=email,
        privilege=privilege,
        status=status,
        token_hash=hash_invite_token(raw_token),
        expires_at=expires_at or NOW + timedelta(days=7),
        created_at=NOW,
    )


def make_item(
    vault: Vault,
    created_by: str | None = None,
    item_type: ItemType = ItemType.PASSWORD,
    *,
    status: ItemStatus = ItemStatus.ACTIVE,
    title: str = "Bank login",
    deleted_at: datetime | None = None,
) -> VaultItem:
    """Create an unattached vault item (without payload row)."""
    return VaultItem(
        id=uuid.uuid4(),
        vault_id=vault.id,
        created_by_user_id=created_by or vault.owner_id,
        item_type=item_type,
        title=title,
        status=status,
        deleted_at=deleted_at,
        created_at=NOW,
        updated_at=NOW,
    )


def result_with(*, rowcount: int = 1, scalar=None, scalars: list | None = None) -> MagicMock:
    """Create a mock query result.

    Args:
        rowcount: Rows affected, for UPDATE and DELETE statements.
        scalar: Value returned by scalar_one_or_none().
        scalars: Values returned by scalars().all().

    Returns:
        Mock result object.
    """
    result = MagicMock()
    result.rowcount = rowcount
    result.scalar_one_or_none.return_value = scalar
    result.scalars.return_value.all.return_value = scalars or []
    return result


def create_mock_session(rowcount: int = 1) -> AsyncMock:
    """Create a mock SQLAlchemy async session.

    Every execute() returns a result affecting rowcount rows. Tests needing
    a sequence of results set ``session.execute.side_effect``.

    Returns:
        Mock async session.
    """
    session = AsyncMock()
    session.execute = AsyncMock(return_value=result_with(rowcount=rowcount))
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


def added_of_type(session: AsyncMock, model: type) -> list:
    """Objects of a given model passed to session.add()."""
    return [c.args[0] for c in session.add.call_args_list if isinstance(c.args[0], model)]
