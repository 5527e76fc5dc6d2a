"""Base model definitions, common column types and enums.

This module provides:
- SQLAlchemy declarative base with naming conventions
- Reusable annotated column types
- Enum types used across multiple models
"""

import enum
import uuid
from datetime import datetime
from typing import Annotated

from sqlalchemy import DateTime, Enum, MetaData, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, mapped_column, registry

# Naming convention for constraints ensures consistent migration generation.
# See: https://alembic.sqlalchemy.org/en/latest/naming.html
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)

type_registry = registry()

# UUID primary key; services assign ids up front so rows can be referenced
# before the INSERT is flushed
UUIDPrimaryKey = Annotated[
    uuid.UUID,
    mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    ),
]

# Timestamp with timezone, defaults to now
TimestampTZ = Annotated[
    datetime,
    mapped_column(DateTime(timezone=True), server_default=text("now()")),
]

OptionalTimestampTZ = Annotated[
    datetime | None,
    mapped_column(DateTime(timezone=True), nullable=True),
]

# Opaque user identifier issued by the identity provider
UserId = Annotated[str, mapped_column(String(255))]
OptionalUserId = Annotated[str | None, mapped_column(String(255), nullable=True)]


class Base(DeclarativeBase):
    """Declarative base for all VaultKeep models."""

    metadata = metadata
    registry = type_registry


def enum_type(enum_cls: type[enum.Enum], name: str) -> Enum:
    """Build a PostgreSQL enum column type that stores member values."""
    return Enum(
        enum_cls,
        name=name,
        create_constraint=True,
        values_callable=lambda members: [m.value for m in members],
    )


# =============================================================================
# Common Enums
# =============================================================================


class VaultStatus(enum.Enum):
    """Vault lifecycle state.

    Values:
        ACTIVE: Vault is in use
        DELETED: Vault was soft-deleted and may still be restored
    """

    ACTIVE = "active"
    DELETED = "deleted"


class Privilege(enum.Enum):
    """Role of a member within a vault.

    Values:
        OWNER: Unconditional access to every item; exactly one per vault
        ADMIN: Manages members and invites, no implicit item access
        MEMBER: Item access only through visibility grants
    """

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class MemberStatus(enum.Enum):
    """Membership state.

    Values:
        ACTIVE: Current member
        LEFT: Member left the vault voluntarily
        REMOVED: Member was removed by an Owner or Admin
    """

    ACTIVE = "active"
    LEFT = "left"
    REMOVED = "removed"


class PolicyType(enum.Enum):
    """Kind of release policy attached to a vault.

    Values:
        IMMEDIATE: Released at creation
        TIME_BASED: Released once release_date is reached
        EXPIRY_BASED: Released at creation, expires after expires_at
        MANUAL_RELEASE: Released only when the Owner says so
    """

    IMMEDIATE = "immediate"
    TIME_BASED = "time_based"
    EXPIRY_BASED = "expiry_based"
    MANUAL_RELEASE = "manual_release"


class ReleaseStatus(enum.Enum):
    """Release policy state.

    Values:
        PENDING: Contents not yet visible to non-owners
        RELEASED: Contents visible subject to item grants
        EXPIRED: Release window has closed
        REVOKED: Access withdrawn administratively (sticky)
    """

    PENDING = "pending"
    RELEASED = "released"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ItemType(enum.Enum):
    """Kind of payload attached to a vault item."""

    DOCUMENT = "document"
    PASSWORD = "password"
    NOTE = "note"
    LINK = "link"
    CRYPTO_WALLET = "crypto_wallet"


class ItemStatus(enum.Enum):
    """Vault item lifecycle state."""

    ACTIVE = "active"
    DELETED = "deleted"


class ItemPermission(enum.Enum):
    """Per-item grant for a vault member.

    Values:
        VIEW: Read and decrypt the item
        EDIT: Read, modify, delete and re-share the item
    """

    VIEW = "view"
    EDIT = "edit"


class InviteStatus(enum.Enum):
    """Invite lifecycle state.

    Values:
        PENDING: Issued, not yet handed to the delivery channel
        SENT: Delivered out of band
        ACCEPTED: Redeemed (terminal)
        CANCELLED: Withdrawn by a manager (terminal)
        EXPIRED: Past expires_at (terminal unless resent)
    """

    PENDING = "pending"
    SENT = "sent"
    ACCEPTED = "accepted"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class ContentFormat(enum.Enum):
    """Text format of a note body."""

    PLAIN_TEXT = "plain_text"
    MARKDOWN = "markdown"
    RICH_TEXT = "rich_text"


class WalletType(enum.Enum):
    """Kind of secret stored in a crypto-wallet item."""

    SEED_PHRASE = "seed_phrase"
    PRIVATE_KEY = "private_key"
    WALLET_FILE = "wallet_file"
    EXCHANGE_ACCOUNT = "exchange_account"


class VaultLogAction(enum.Enum):
    """Action recorded in the vault activity log."""

    CREATE_ITEM = "create_item"
    UPDATE_ITEM = "update_item"
    DELETE_ITEM = "delete_item"
    RESTORE_ITEM = "restore_item"
    SHARE_ITEM = "share_item"
    MEMBER_JOINED = "member_joined"
    MEMBER_LEFT = "member_left"
    MEMBER_REMOVED = "member_removed"
    PRIVILEGE_CHANGED = "privilege_changed"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"
    VAULT_RELEASED = "vault_released"
    VAULT_REVOKED = "vault_revoked"
    VAULT_DELETED = "vault_deleted"
    VAULT_RESTORED = "vault_restored"


class NotificationCategory(enum.Enum):
    """In-app notification category."""

    VAULT_RELEASED = "vault_released"
