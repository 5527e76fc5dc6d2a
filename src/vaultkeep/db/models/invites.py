"""Vault invite model.

Only the SHA-256 hash of an invite token is stored; the raw token is
returned once to the issuer for out-of-band delivery.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from datetime import datetime  # noqa: TC003
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vaultkeep.db.models.base import (
    Base,
    InviteStatus,
    OptionalTimestampTZ,
    OptionalUserId,
    Privilege,
    TimestampTZ,
    UserId,
    UUIDPrimaryKey,
    enum_type,
)

if TYPE_CHECKING:
    from vaultkeep.db.models.vaults import Vault


class VaultInvite(Base):
    """Token-bearing offer to join a vault at a given privilege."""

    __tablename__ = "vault_invites"

    id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    vault_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("vaults.id", ondelete="RESTRICT"),
        nullable=False,
    )
    inviter_id: Mapped[UserId] = mapped_column(nullable=False)

    # Stored lower-cased and stripped
    invitee_email: Mapped[str] = mapped_column(String(320), nullable=False)
    invitee_id: Mapped[OptionalUserId]

    privilege: Mapped[Privilege] = mapped_column(
        enum_type(Privilege, "privilege"),
        nullable=False,
        default=Privilege.MEMBER,
    )
    status: Mapped[InviteStatus] = mapped_column(
        enum_type(InviteStatus, "invite_status"),
        nullable=False,
        default=InviteStatus.PENDING,
    )

    # SHA-256 hex digest of the raw token
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    accepted_at: Mapped[OptionalTimestampTZ]
    cancelled_at: Mapped[OptionalTimestampTZ]
    sent_at: Mapped[OptionalTimestampTZ]

    note: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    vault: Mapped[Vault] = relationship("Vault", back_populates="invites")

    __table_args__ = (
        Index("ix_vault_invites_vault_id", "vault_id"),
        Index("ix_vault_invites_invitee_email", "invitee_email"),
    )
