"""Field encryption for sensitive vault item values.

Covers password values and notes, note bodies, link notes and crypto-wallet
secrets and notes. Titles, usernames, URLs and public addresses stay
plaintext so listings do not need the vault key.

Each field is sealed with AES-256-GCM under the per-vault key from
KeyDerivationService:
- a fresh 96-bit nonce per encryption
- the vault id as associated data, so ciphertext cannot be moved between vaults
- stored as ``v1:`` + URL-safe base64(nonce || ciphertext || tag)

Decryption failures always raise DecryptionError; a wrong key, a tampered
value or a truncated string never yield garbage or an empty string.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from typing import TYPE_CHECKING

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from vaultkeep.services.errors import DecryptionError, EncryptionFailure

if TYPE_CHECKING:
    import uuid

    from vaultkeep.db.models import Vault
    from vaultkeep.services.keys import KeyDerivationService

logger = logging.getLogger(__name__)

# GCM nonce should be 12 bytes per NIST recommendations
GCM_NONCE_SIZE_BYTES = 12
# GCM tag is 16 bytes (128 bits)
GCM_TAG_SIZE_BYTES = 16

CIPHERTEXT_VERSION = "v1"
_PREFIX = CIPHERTEXT_VERSION + ":"


class FieldCodec:
    """AES-256-GCM codec for individual text fields.

    Stateless and safe to share between concurrent callers.
    """

    def encrypt(self, plaintext: str, key: bytes, associated_data: bytes | None = None) -> str:
        """Encrypt a text value.

        Args:
            plaintext: Value to protect.
            key: 32-byte AES key.
            associated_data: Authenticated but unencrypted context.

        Returns:
            Versioned, base64-encoded ciphertext string.

        Raises:
            EncryptionFailure: If the key is unusable.
        """
        try:
            aesgcm = AESGCM(key)
        except ValueError as e:
            raise EncryptionFailure("Field could not be encrypted") from e

        nonce = os.urandom(GCM_NONCE_SIZE_BYTES)
        sealed = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), associated_data)
        encoded = base64.urlsafe_b64encode(nonce + sealed).decode("ascii")
        return _PREFIX + encoded

    def decrypt(self, ciphertext: str, key: bytes, associated_data: bytes | None = None) -> str:
        """Decrypt a value produced by encrypt().

        Raises:
            DecryptionError: On unknown version, malformed encoding, short
                payload or failed authentication.
        """
        if not ciphertext.startswith(_PREFIX):
            raise DecryptionError("Unsupported ciphertext format")

        try:
            raw = base64.urlsafe_b64decode(ciphertext[len(_PREFIX) :].encode("ascii"))
        except (binascii.Error, UnicodeEncodeError) as e:
            raise DecryptionError("Ciphertext is not valid base64") from e

        if len(raw) < GCM_NONCE_SIZE_BYTES + GCM_TAG_SIZE_BYTES:
            raise DecryptionError("Ciphertext is truncated")

        nonce, sealed = raw[:GCM_NONCE_SIZE_BYTES], raw[GCM_NONCE_SIZE_BYTES:]
        try:
            plaintext = AESGCM(key).decrypt(nonce, sealed, associated_data)
        except InvalidTag as e:
            raise DecryptionError("Ciphertext failed authentication") from e
        except ValueError as e:
            raise DecryptionError("Field could not be decrypted") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted value is not text") from e


class VaultCipher:
    """Encrypt and decrypt fields with the key of a given vault.

    The key is recomputed for every call and only held for its duration.
    """

    def __init__(self, keys: KeyDerivationService, codec: FieldCodec | None = None) -> None:
        self._keys = keys
        self._codec = codec or FieldCodec()

    def _key_for(self, vault_id: uuid.UUID, original_owner_id: str) -> bytes:
        return self._keys.derive_vault_key(vault_id, original_owner_id)

    def encrypt(self, plaintext: str, vault: Vault) -> str:
        """Encrypt a field for the given vault."""
        key = self._key_for(vault.id, vault.original_owner_id)
        return self._codec.encrypt(plaintext, key, vault.id.bytes)

    def decrypt(self, ciphertext: str, vault: Vault) -> str:
        """Decrypt a field of the given vault.

        Raises:
            DecryptionError: If the value was not produced for this vault.
        """
        key = self._key_for(vault.id, vault.original_owner_id)
        try:
            return self._codec.decrypt(ciphertext, key, vault.id.bytes)
        except DecryptionError as e:
            logger.error(
                "Decryption failed for vault field: %s",
                e.reason,
                extra={"vault_id": str(vault.id)},
            )
            raise

    def encrypt_optional(self, plaintext: str | None, vault: Vault) -> str | None:
        """Encrypt an optional field; absent or empty values are stored as NULL.

        An empty string is not kept distinct from None: decrypt_optional()
        returns None for a field that was saved as "".
        """
        if not plaintext:
            return None
        return self.encrypt(plaintext, vault)

    def decrypt_optional(self, ciphertext: str | None, vault: Vault) -> str | None:
        """Decrypt an optional field stored by encrypt_optional()."""
        if ciphertext is None:
            return None
        return self.decrypt(ciphertext, vault)
