"""Tests for vault field encryption.

Tests cover:
- AES-256-GCM round trips and the versioned wire format
- Fresh nonce per encryption
- Failure on wrong key, wrong vault, tampering and truncation
- Key stability across ownership transfer
- Optional field handling
"""

import base64
import logging

import pytest

from tests.factories import make_vault
from vaultkeep.services.encryption import (
    CIPHERTEXT_VERSION,
    GCM_NONCE_SIZE_BYTES,
    FieldCodec,
)
from vaultkeep.services.errors import AccessError, DecryptionError, EncryptionFailure

KEY = bytes(range(32))
OTHER_KEY = bytes(range(1, 33))


class TestFieldCodec:
    """Tests for FieldCodec."""

    def test_round_trip(self):
        codec = FieldCodec()
        ciphertext = codec.encrypt("correct horse battery staple", KEY)
        assert codec.decrypt(ciphertext, KEY) == "correct horse battery staple"

    def test_unicode_round_trip(self):
        codec = FieldCodec()
        value = "pässwörd 🔐 秘密"
        assert codec.decrypt(codec.encrypt(value, KEY), KEY) == value

    def test_wire_format(self):
        """Ciphertext is 'v1:' + base64(nonce || ciphertext || tag)."""
        ciphertext = FieldCodec().encrypt("abc", KEY)
        prefix, encoded = ciphertext.split(":", 1)
        assert prefix == CIPHERTEXT_VERSION

        raw = base64.urlsafe_b64decode(encoded)
        # nonce + 3 plaintext bytes + 16-byte tag
        assert len(raw) == GCM_NONCE_SIZE_BYTES + 3 + 16

    def test_fresh_nonce_per_encryption(self):
        codec = FieldCodec()
        assert codec.encrypt("same", KEY) != codec.encrypt("same", KEY)

    def test_plaintext_not_visible(self):
        ciphertext = FieldCodec().encrypt("hunter2", KEY)
        assert "hunter2" not in ciphertext

    def test_wrong_key_fails(self):
        codec = FieldCodec()
        ciphertext = codec.encrypt("secret", KEY)
        with pytest.raises(DecryptionError):
            codec.decrypt(ciphertext, OTHER_KEY)

    def test_associated_data_must_match(self):
        codec = FieldCodec()
        ciphertext = codec.encrypt("secret", KEY, b"vault-a")
        with pytest.raises(DecryptionError):
            codec.decrypt(ciphertext, KEY, b"vault-b")

    def test_tampered_ciphertext_fails(self):
        codec = FieldCodec()
        ciphertext = codec.encrypt("secret", KEY)
        raw = bytearray(base64.urlsafe_b64decode(ciphertext[3:]))
        raw[-1] ^= 0x01
        tampered = "v1:" + base64.urlsafe_b64encode(bytes(raw)).decode("ascii")
        with pytest.raises(DecryptionError):
            codec.decrypt(tampered, KEY)

    @pytest.mark.parametrize(
        "ciphertext",
        [
            "",
            "plaintext-looking-value",
            "v2:" + base64.urlsafe_b64encode(b"x" * 40).decode("ascii"),
            "v1:" + base64.urlsafe_b64encode(b"short").decode("ascii"),
            "v1:%%%%",
        ],
    )
    def test_malformed_ciphertext_fails(self, ciphertext):
        """Malformed values raise instead of decrypting to garbage or ''."""
        with pytest.raises(DecryptionError) as exc_info:
            FieldCodec().decrypt(ciphertext, KEY)
        assert exc_info.value.code == AccessError.ENCRYPTION_FAILURE

    def test_invalid_key_length_fails_encryption(self):
        with pytest.raises(EncryptionFailure):
            FieldCodec().encrypt("secret", b"short-key")


class TestVaultCipher:
    """Tests for VaultCipher."""

    def test_round_trip_for_vault(self, cipher):
        vault = make_vault()
        assert cipher.decrypt(cipher.encrypt("seed words", vault), vault) == "seed words"

    def test_ciphertext_bound_to_vault(self, cipher):
        """A value copied into another vault does not decrypt there."""
        vault_a = make_vault("owner-1")
        vault_b = make_vault("owner-1")
        ciphertext = cipher.encrypt("secret", vault_a)
        with pytest.raises(DecryptionError):
            cipher.decrypt(ciphertext, vault_b)

    def test_key_stable_across_ownership_transfer(self, cipher):
        """Changing owner_id keeps data readable; the key uses original_owner_id."""
        vault = make_vault("owner-1")
        ciphertext = cipher.encrypt("family photos password", vault)

        vault.owner_id = "admin-1"
        assert cipher.decrypt(ciphertext, vault) == "family photos password"

    def test_original_owner_is_part_of_key(self, cipher):
        vault = make_vault("owner-1")
        ciphertext = cipher.encrypt("secret", vault)

        vault.original_owner_id = "someone-else"
        with pytest.raises(DecryptionError):
            cipher.decrypt(ciphertext, vault)

    def test_decryption_failure_logged_without_plaintext(self, cipher, caplog):
        vault = make_vault()
        with caplog.at_level(logging.ERROR), pytest.raises(DecryptionError):
            cipher.decrypt("v1:not-really-ciphertext", vault)
        assert "Decryption failed" in caplog.text

    @pytest.mark.parametrize("value", [None, ""])
    def test_optional_empty_values_stored_as_null(self, cipher, value):
        assert cipher.encrypt_optional(value, make_vault()) is None

    def test_optional_round_trip(self, cipher):
        vault = make_vault()
        assert cipher.decrypt_optional(cipher.encrypt_optional("n", vault), vault) == "n"
        assert cipher.decrypt_optional(None, vault) is None

    def test_empty_string_reads_back_as_none(self, cipher):
        vault = make_vault()
        assert cipher.decrypt_optional(cipher.encrypt_optional("", vault), vault) is None
