"""SQLAlchemy ORM models for VaultKeep.

This package contains all database models organized by domain:
- base: Common metadata, column types and enums
- vaults: Vaults, members and release policies
- items: Vault items, typed payloads and visibility grants
- invites: Vault invites
- activity: Vault activity log and notifications
"""

from vaultkeep.db.models.activity import Notification, VaultLog
from vaultkeep.db.models.base import (
    Base,
    ContentFormat,
    InviteStatus,
    ItemPermission,
    ItemStatus,
    ItemType,
    MemberStatus,
    NotificationCategory,
    PolicyType,
    Privilege,
    ReleaseStatus,
    VaultLogAction,
    VaultStatus,
    WalletType,
    metadata,
)
from vaultkeep.db.models.invites import VaultInvite
from vaultkeep.db.models.items import (
    VaultCryptoWallet,
    VaultDocument,
    VaultItem,
    VaultItemVisibility,
    VaultLink,
    VaultNote,
    VaultPassword,
)
from vaultkeep.db.models.vaults import Vault, VaultMember, VaultPolicy

__all__ = [
    "Base",
    "ContentFormat",
    "InviteStatus",
    "ItemPermission",
    "ItemStatus",
    "ItemType",
    "MemberStatus",
    "Notification",
    "NotificationCategory",
    "PolicyType",
    "Privilege",
    "ReleaseStatus",
    "Vault",
    "VaultCryptoWallet",
    "VaultDocument",
    "VaultInvite",
    "VaultItem",
    "VaultItemVisibility",
    "VaultLink",
    "VaultLog",
    "VaultLogAction",
    "VaultMember",
    "VaultNote",
    "VaultPassword",
    "VaultPolicy",
    "VaultStatus",
    "WalletType",
    "metadata",
]
