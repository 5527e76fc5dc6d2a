"""Vault models: vaults, members and release policies."""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from datetime import datetime  # noqa: TC003
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vaultkeep.db.models.base import (
    Base,
    MemberStatus,
    OptionalTimestampTZ,
    OptionalUserId,
    PolicyType,
    Privilege,
    ReleaseStatus,
    TimestampTZ,
    UserId,
    UUIDPrimaryKey,
    VaultStatus,
    enum_type,
)

if TYPE_CHECKING:
    from vaultkeep.db.models.invites import VaultInvite
    from vaultkeep.db.models.items import VaultItem


class Vault(Base):
    """Named container of items with one owner and any number of members.

    owner_id follows ownership transfers; original_owner_id is fixed at
    creation and feeds key derivation.
    """

    __tablename__ = "vaults"

    id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]

    owner_id: Mapped[UserId] = mapped_column(nullable=False)
    original_owner_id: Mapped[UserId] = mapped_column(nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    status: Mapped[VaultStatus] = mapped_column(
        enum_type(VaultStatus, "vault_status"),
        nullable=False,
        default=VaultStatus.ACTIVE,
    )
    deleted_at: Mapped[OptionalTimestampTZ]
    deleted_by: Mapped[OptionalUserId]

    members: Mapped[list[VaultMember]] = relationship(
        "VaultMember",
        back_populates="vault",
    )
    policy: Mapped[VaultPolicy | None] = relationship(
        "VaultPolicy",
        back_populates="vault",
        uselist=False,
    )
    items: Mapped[list[VaultItem]] = relationship(
        "VaultItem",
        back_populates="vault",
    )
    invites: Mapped[list[VaultInvite]] = relationship(
        "VaultInvite",
        back_populates="vault",
    )

    __table_args__ = (
        Index("ix_vaults_owner_id", "owner_id"),
        Index("ix_vaults_status", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == VaultStatus.ACTIVE


class VaultMember(Base):
    """Membership of a user in a vault.

    Rows are never deleted: leaving or removal flips the status, and a later
    invite reactivates the same row.
    """

    __tablename__ = "vault_members"

    id: Mapped[UUIDPrimaryKey]

    vault_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("vaults.id", ondelete="RESTRICT"),
        nullable=False,
    )
    user_id: Mapped[UserId] = mapped_column(nullable=False)

    privilege: Mapped[Privilege] = mapped_column(
        enum_type(Privilege, "privilege"),
        nullable=False,
        default=Privilege.MEMBER,
    )
    status: Mapped[MemberStatus] = mapped_column(
        enum_type(MemberStatus, "member_status"),
        nullable=False,
        default=MemberStatus.ACTIVE,
    )

    added_by_id: Mapped[OptionalUserId]
    removed_by_id: Mapped[OptionalUserId]

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
    left_at: Mapped[OptionalTimestampTZ]
    removed_at: Mapped[OptionalTimestampTZ]

    vault: Mapped[Vault] = relationship("Vault", back_populates="members")

    __table_args__ = (
        # One active membership per (vault, user); inactive history rows may repeat
        Index(
            "uq_vault_members_active_vault_user",
            "vault_id",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
        ),
        Index("ix_vault_members_user_id", "user_id"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE


class VaultPolicy(Base):
    """Release policy of a vault (one per vault)."""

    __tablename__ = "vault_policies"

    id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    vault_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("vaults.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )

    policy_type: Mapped[PolicyType] = mapped_column(
        enum_type(PolicyType, "policy_type"),
        nullable=False,
        default=PolicyType.IMMEDIATE,
    )
    release_status: Mapped[ReleaseStatus] = mapped_column(
        enum_type(ReleaseStatus, "release_status"),
        nullable=False,
        default=ReleaseStatus.PENDING,
    )

    # TimeBased only
    release_date: Mapped[OptionalTimestampTZ]
    # ExpiryBased only
    expires_at: Mapped[OptionalTimestampTZ]

    released_at: Mapped[OptionalTimestampTZ]
    released_by_id: Mapped[OptionalUserId]
    revoked_at: Mapped[OptionalTimestampTZ]
    revoked_by_id: Mapped[OptionalUserId]

    note: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    vault: Mapped[Vault] = relationship("Vault", back_populates="policy")

    __table_args__ = (
        CheckConstraint(
            "(policy_type = 'time_based') = (release_date IS NOT NULL)",
            name="release_date_iff_time_based",
        ),
        CheckConstraint(
            "(policy_type = 'expiry_based') = (expires_at IS NOT NULL)",
            name="expires_at_iff_expiry_based",
        ),
    )
