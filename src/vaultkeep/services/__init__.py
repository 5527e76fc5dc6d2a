"""VaultKeep service layer.

Business logic for vault access control:
- AccessControlGateway: Single entry point returning closed error codes
- PolicyEngine / PolicyService: Release policy evaluation and transitions
- VaultService: Vault lifecycle, membership and ownership transfer
- VaultItemService: Encrypted items and per-member visibility
- InviteService: Token-based invites with single redemption
- KeyDerivationService / VaultCipher: Per-vault keys and field encryption
- AccountDeletionService: Reassignment of a departing user's vault data
- VaultActivityLog / NotificationService: Activity trail and in-app inbox
"""

from vaultkeep.services.accounts import AccountDeletionReport, AccountDeletionService
from vaultkeep.services.audit import NotificationService, VaultActivityLog
from vaultkeep.services.encryption import FieldCodec, VaultCipher
from vaultkeep.services.errors import AccessError, VaultAccessError
from vaultkeep.services.gateway import AccessControlGateway, AccessDecision, GatewayResult
from vaultkeep.services.identity import IdentityDirectory, InMemoryIdentityDirectory
from vaultkeep.services.invites import InviteInfo, InviteService, IssuedInvite
from vaultkeep.services.items import VaultItemService
from vaultkeep.services.keys import KeyDerivationService
from vaultkeep.services.permissions import Access, resolve
from vaultkeep.services.policy import PolicyDecision, PolicyEngine, PolicyService
from vaultkeep.services.vaults import VaultService

__all__ = [
    "Access",
    "AccessControlGateway",
    "AccessDecision",
    "AccessError",
    "AccountDeletionReport",
    "AccountDeletionService",
    "FieldCodec",
    "GatewayResult",
    "IdentityDirectory",
    "InMemoryIdentityDirectory",
    "InviteInfo",
    "InviteService",
    "IssuedInvite",
    "KeyDerivationService",
    "NotificationService",
    "PolicyDecision",
    "PolicyEngine",
    "PolicyService",
    "VaultAccessError",
    "VaultActivityLog",
    "VaultCipher",
    "VaultItemService",
    "VaultService",
    "resolve",
]
