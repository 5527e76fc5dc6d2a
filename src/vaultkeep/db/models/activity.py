"""Activity log and in-app notification models."""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from typing import Any

from sqlalchemy import Boolean, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from vaultkeep.db.models.base import (
    Base,
    NotificationCategory,
    OptionalTimestampTZ,
    OptionalUserId,
    TimestampTZ,
    UserId,
    UUIDPrimaryKey,
    VaultLogAction,
    enum_type,
)


class VaultLog(Base):
    """Append-only record of an action taken inside a vault."""

    __tablename__ = "vault_logs"

    id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    vault_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("vaults.id", ondelete="RESTRICT"),
        nullable=False,
    )
    user_id: Mapped[UserId] = mapped_column(nullable=False)
    action: Mapped[VaultLogAction] = mapped_column(
        enum_type(VaultLogAction, "vault_log_action"),
        nullable=False,
    )
    item_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("vault_items.id", ondelete="RESTRICT"),
        nullable=True,
    )
    target_user_id: Mapped[OptionalUserId]

    # Never contains decrypted payload values
    details: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)

    __table_args__ = (
        Index("ix_vault_logs_vault_id_created_at", "vault_id", "created_at"),
    )


class Notification(Base):
    """In-app notification addressed to one user."""

    __tablename__ = "notifications"

    id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    user_id: Mapped[UserId] = mapped_column(nullable=False)
    vault_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("vaults.id", ondelete="RESTRICT"),
        nullable=True,
    )
    category: Mapped[NotificationCategory] = mapped_column(
        enum_type(NotificationCategory, "notification_category"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(String(2000), nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[OptionalTimestampTZ]

    __table_args__ = (Index("ix_notifications_user_id_is_read", "user_id", "is_read"),)
