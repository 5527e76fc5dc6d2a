"""Vault item models: items, typed payloads and per-member visibility.

Every item carries exactly one payload row matching its item_type. Columns
suffixed ``_ciphertext`` hold AES-256-GCM output produced with the vault key;
everything else is plaintext so listings never need decryption.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vaultkeep.db.models.base import (
    Base,
    ContentFormat,
    ItemPermission,
    ItemStatus,
    ItemType,
    OptionalTimestampTZ,
    OptionalUserId,
    TimestampTZ,
    UserId,
    UUIDPrimaryKey,
    WalletType,
    enum_type,
)

if TYPE_CHECKING:
    from vaultkeep.db.models.vaults import Vault


class VaultItem(Base):
    """Item stored in a vault. Title and description are plaintext."""

    __tablename__ = "vault_items"

    id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]

    vault_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("vaults.id", ondelete="RESTRICT"),
        nullable=False,
    )
    created_by_user_id: Mapped[UserId] = mapped_column(nullable=False)

    item_type: Mapped[ItemType] = mapped_column(
        enum_type(ItemType, "item_type"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    status: Mapped[ItemStatus] = mapped_column(
        enum_type(ItemStatus, "item_status"),
        nullable=False,
        default=ItemStatus.ACTIVE,
    )
    deleted_at: Mapped[OptionalTimestampTZ]
    deleted_by: Mapped[OptionalUserId]

    vault: Mapped[Vault] = relationship("Vault", back_populates="items")
    visibilities: Mapped[list[VaultItemVisibility]] = relationship(
        "VaultItemVisibility",
        back_populates="item",
    )

    __table_args__ = (
        Index("ix_vault_items_vault_id", "vault_id"),
        Index("ix_vault_items_created_by_user_id", "created_by_user_id"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == ItemStatus.ACTIVE


class VaultItemVisibility(Base):
    """Grant of View or Edit on one item to one vault member."""

    __tablename__ = "vault_item_visibilities"

    id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    vault_item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("vault_items.id", ondelete="RESTRICT"),
        nullable=False,
    )
    vault_member_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("vault_members.id", ondelete="RESTRICT"),
        nullable=False,
    )
    permission: Mapped[ItemPermission] = mapped_column(
        enum_type(ItemPermission, "item_permission"),
        nullable=False,
        default=ItemPermission.VIEW,
    )

    item: Mapped[VaultItem] = relationship("VaultItem", back_populates="visibilities")

    __table_args__ = (
        UniqueConstraint("vault_item_id", "vault_member_id"),
        Index("ix_vault_item_visibilities_vault_member_id", "vault_member_id"),
    )


class VaultPassword(Base):
    """Password payload."""

    __tablename__ = "vault_passwords"

    id: Mapped[UUIDPrimaryKey]
    vault_item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("vault_items.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    username: Mapped[str | None] = mapped_column(String(500), nullable=True)
    password_ciphertext: Mapped[str] = mapped_column(Text, nullable=False)
    website_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    notes_ciphertext: Mapped[str | None] = mapped_column(Text, nullable=True)


class VaultNote(Base):
    """Free-form note payload."""

    __tablename__ = "vault_notes"

    id: Mapped[UUIDPrimaryKey]
    vault_item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("vault_items.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    content_ciphertext: Mapped[str] = mapped_column(Text, nullable=False)
    content_format: Mapped[ContentFormat] = mapped_column(
        enum_type(ContentFormat, "content_format"),
        nullable=False,
        default=ContentFormat.PLAIN_TEXT,
    )


class VaultLink(Base):
    """Bookmark payload. The URL stays searchable."""

    __tablename__ = "vault_links"

    id: Mapped[UUIDPrimaryKey]
    vault_item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("vault_items.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    url: Mapped[str] = mapped_column(String(2000), nullable=False)
    notes_ciphertext: Mapped[str | None] = mapped_column(Text, nullable=True)


class VaultCryptoWallet(Base):
    """Crypto-wallet payload. Only the public address is plaintext."""

    __tablename__ = "vault_crypto_wallets"

    id: Mapped[UUIDPrimaryKey]
    vault_item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("vault_items.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    wallet_type: Mapped[WalletType] = mapped_column(
        enum_type(WalletType, "wallet_type"),
        nullable=False,
    )
    platform_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    secret_ciphertext: Mapped[str] = mapped_column(Text, nullable=False)
    public_address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes_ciphertext: Mapped[str | None] = mapped_column(Text, nullable=True)


class VaultDocument(Base):
    """Document payload. Bytes live in object storage under object_key."""

    __tablename__ = "vault_documents"

    id: Mapped[UUIDPrimaryKey]
    vault_item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("vault_items.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    object_key: Mapped[str] = mapped_column(String(500), nullable=False)
    file_name: Mapped[str] = mapped_column(String(500), nullable=False)
    content_type: Mapped[str] = mapped_column(String(255), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
