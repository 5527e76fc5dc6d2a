"""Per-vault key derivation.

Each vault's field-encryption key is derived on demand from:
- the vault id
- the vault's original owner id (fixed at creation)
- the server signing key

using HKDF-SHA256. Keys are never stored or transmitted, and the original
owner id keeps them stable across ownership transfers, so vaults never
need re-encryption when they change hands.
"""

from __future__ import annotations

import uuid  # noqa: TC003

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

# AES-256 key size
VAULT_KEY_SIZE_BYTES = 32

# Domain separation for HKDF; bump the version to rotate every vault key
KEY_DERIVATION_SALT = b"vaultkeep/vault-key/v1"


class KeyDerivationService:
    """Derive vault keys from a server signing key.

    The signing key is passed in explicitly so tests can use fixed keys and
    no module reads it from ambient configuration.

    Example:
        keys = KeyDerivationService(settings.crypto.signing_key.get_secret_value())
        key = keys.derive_vault_key(vault.id, vault.original_owner_id)
    """

    def __init__(self, signing_key: str | bytes) -> None:
        if isinstance(signing_key, str):
            signing_key = signing_key.encode("utf-8")
        if not signing_key:
            msg = "Signing key must not be empty"
            raise ValueError(msg)
        self._signing_key = signing_key

    def derive_vault_key(self, vault_id: uuid.UUID, original_owner_id: str) -> bytes:
        """Derive the 32-byte key for a vault.

        Args:
            vault_id: Vault identifier.
            original_owner_id: User id of the vault's creator (never the
                current owner).

        Returns:
            Key bytes suitable for AES-256-GCM.
        """
        info = f"vault:{vault_id}|original-owner:{original_owner_id}".encode()
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=VAULT_KEY_SIZE_BYTES,
            salt=KEY_DERIVATION_SALT,
            info=info,
        )
        return hkdf.derive(self._signing_key)

    def __repr__(self) -> str:
        return "KeyDerivationService(signing_key=<redacted>)"
