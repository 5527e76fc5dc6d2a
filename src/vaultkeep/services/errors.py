"""Error taxonomy for vault access control.

Services raise these exceptions; AccessControlGateway converts them into
the closed AccessError enum so nothing propagates to the HTTP layer.

Every exception carries a ``reason`` safe to show to the caller. Reasons
never include token substrings, key material or plaintext.
"""

from __future__ import annotations

from enum import Enum


class AccessError(str, Enum):
    """Closed set of failure codes returned by the gateway.

    Values:
        POLICY_VIOLATION: Vault not released yet, expired or revoked
        INSUFFICIENT_PRIVILEGE: Caller lacks item or management rights
        INVITE_INVALID: Unknown token, email mismatch or vault unavailable
        INVITE_EXPIRED: Invite past its expiry
        INVITE_ALREADY_REDEEMED: Invite was already accepted
        ENCRYPTION_FAILURE: Field could not be encrypted or decrypted
        INVARIANT_VIOLATION: Stored state contradicts a model invariant
        NOT_FOUND: Vault, item, member or invite does not exist
        INVALID_REQUEST: Input rejected by validation
        TRANSIENT_FAILURE: Database unavailable or timed out
    """

    POLICY_VIOLATION = "policy_violation"
    INSUFFICIENT_PRIVILEGE = "insufficient_privilege"
    INVITE_INVALID = "invite_invalid"
    INVITE_EXPIRED = "invite_expired"
    INVITE_ALREADY_REDEEMED = "invite_already_redeemed"
    ENCRYPTION_FAILURE = "encryption_failure"
    INVARIANT_VIOLATION = "invariant_violation"
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"
    TRANSIENT_FAILURE = "transient_failure"


class VaultAccessError(Exception):
    """Base exception for vault access control failures."""

    code: AccessError = AccessError.INVARIANT_VIOLATION

    def __init__(self, reason: str) -> None:
        """Initialize with a caller-safe reason.

        Args:
            reason: Human-readable explanation of the denial.
        """
        self.reason = reason
        super().__init__(reason)


class PolicyViolation(VaultAccessError):
    """Vault contents are not accessible under its release policy."""

    code = AccessError.POLICY_VIOLATION


class InsufficientPrivilege(VaultAccessError):
    """Caller's privilege or item grant does not allow the operation."""

    code = AccessError.INSUFFICIENT_PRIVILEGE


class InviteInvalid(VaultAccessError):
    """Invite cannot be redeemed. Deliberately does not say why."""

    code = AccessError.INVITE_INVALID

    def __init__(self, reason: str = "Invite is invalid") -> None:
        super().__init__(reason)


class InviteExpired(VaultAccessError):
    """Invite is past its expiry."""

    code = AccessError.INVITE_EXPIRED

    def __init__(self, reason: str = "Invite has expired") -> None:
        super().__init__(reason)


class InviteAlreadyRedeemed(VaultAccessError):
    """Invite was already accepted, possibly by a concurrent request."""

    code = AccessError.INVITE_ALREADY_REDEEMED

    def __init__(self, reason: str = "Invite has already been used") -> None:
        super().__init__(reason)


class EncryptionFailure(VaultAccessError):
    """A sensitive field could not be encrypted or decrypted."""

    code = AccessError.ENCRYPTION_FAILURE


class DecryptionError(EncryptionFailure):
    """Ciphertext is malformed, tampered with, or keyed for another vault."""

    def __init__(self, reason: str = "Field could not be decrypted") -> None:
        super().__init__(reason)


class InvariantViolation(VaultAccessError):
    """Stored state contradicts a model invariant.

    Treated as a denial. Raisers log at ERROR with the offending ids.
    """

    code = AccessError.INVARIANT_VIOLATION


class ValidationFailure(VaultAccessError):
    """Request input was rejected (e.g. release date in the past)."""

    code = AccessError.INVALID_REQUEST


class NotFound(VaultAccessError):
    """Base for missing or soft-deleted entities."""

    code = AccessError.NOT_FOUND


class VaultNotFound(NotFound):
    def __init__(self, vault_id: object) -> None:
        self.vault_id = vault_id
        super().__init__("Vault not found")


class ItemNotFound(NotFound):
    def __init__(self, item_id: object) -> None:
        self.item_id = item_id
        super().__init__("Item not found")


class MemberNotFound(NotFound):
    def __init__(self, member_id: object) -> None:
        self.member_id = member_id
        super().__init__("Member not found")


class InviteNotFound(NotFound):
    def __init__(self, invite_id: object) -> None:
        self.invite_id = invite_id
        super().__init__("Invite not found")


class NotificationNotFound(NotFound):
    def __init__(self, notification_id: object) -> None:
        self.notification_id = notification_id
        super().__init__("Notification not found")
