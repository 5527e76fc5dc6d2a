"""Tests for per-vault key derivation.

Tests cover:
- Deterministic derivation from (vault id, original owner, signing key)
- Separation between vaults, owners and signing keys
- Signing key handling (empty keys, redacted repr)
"""

import uuid

import pytest

from vaultkeep.services.keys import VAULT_KEY_SIZE_BYTES, KeyDerivationService

VAULT_ID = uuid.UUID("3f1c2b6e-7d4a-4c1e-9b8a-2f6d5e4c3b2a")


class TestDeriveVaultKey:
    """Tests for KeyDerivationService.derive_vault_key()."""

    def test_key_is_32_bytes(self, keys):
        key = keys.derive_vault_key(VAULT_ID, "owner-1")
        assert isinstance(key, bytes)
        assert len(key) == VAULT_KEY_SIZE_BYTES

    def test_derivation_is_deterministic(self, keys, signing_key):
        """Same inputs give the same key, across service instances."""
        again = KeyDerivationService(signing_key)
        assert keys.derive_vault_key(VAULT_ID, "owner-1") == again.derive_vault_key(
            VAULT_ID, "owner-1"
        )

    def test_vaults_get_distinct_keys(self, keys):
        other = uuid.uuid4()
        assert keys.derive_vault_key(VAULT_ID, "owner-1") != keys.derive_vault_key(
            other, "owner-1"
        )

    def test_original_owner_changes_key(self, keys):
        assert keys.derive_vault_key(VAULT_ID, "owner-1") != keys.derive_vault_key(
            VAULT_ID, "owner-2"
        )

    def test_signing_key_changes_key(self, keys):
        rotated = KeyDerivationService("another-signing-key-0123456789abcdef")
        assert keys.derive_vault_key(VAULT_ID, "owner-1") != rotated.derive_vault_key(
            VAULT_ID, "owner-1"
        )

    def test_str_and_bytes_signing_keys_agree(self, signing_key):
        from_str = KeyDerivationService(signing_key)
        from_bytes = KeyDerivationService(signing_key.encode("utf-8"))
        assert from_str.derive_vault_key(VAULT_ID, "o") == from_bytes.derive_vault_key(
            VAULT_ID, "o"
        )


class TestSigningKeyHandling:
    """Tests for signing key validation and redaction."""

    @pytest.mark.parametrize("empty", ["", b""])
    def test_empty_signing_key_rejected(self, empty):
        with pytest.raises(ValueError):
            KeyDerivationService(empty)

    def test_repr_redacts_signing_key(self, keys, signing_key):
        assert signing_key not in repr(keys)
        assert "redacted" in repr(keys)
