"""Pytest configuration and shared fixtures.

Service tests run against a mocked AsyncSession: lookups are patched on the
service under test and conditional UPDATEs report their rowcount through
the mock, so no database is required.
"""

import pytest

from tests.factories import NOW, create_mock_session
from vaultkeep.core.clock import FixedClock
from vaultkeep.services.encryption import VaultCipher
from vaultkeep.services.identity import InMemoryIdentityDirectory
from vaultkeep.services.keys import KeyDerivationService

TEST_SIGNING_KEY = "test-signing-key-0123456789abcdef-0123456789"


# ---------------------------------------------------------------------------
# Time and identity
# ---------------------------------------------------------------------------
@pytest.fixture
def clock() -> FixedClock:
    """Clock pinned to NOW; tests advance it explicitly."""
    return FixedClock(NOW)


@pytest.fixture
def identity() -> InMemoryIdentityDirectory:
    """Directory with a handful of registered accounts."""
    return InMemoryIdentityDirectory(
        {
            "owner@example.com": "owner-1",
            "admin@example.com": "admin-1",
            "member@example.com": "member-1",
            "invitee@example.com": "invitee-1",
        }
    )


# ---------------------------------------------------------------------------
# Crypto
# ---------------------------------------------------------------------------
@pytest.fixture
def signing_key() -> str:
    return TEST_SIGNING_KEY


@pytest.fixture
def keys(signing_key: str) -> KeyDerivationService:
    return KeyDerivationService(signing_key)


@pytest.fixture
def cipher(keys: KeyDerivationService) -> VaultCipher:
    return VaultCipher(keys)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------
@pytest.fixture
def session():
    """Mock async session whose writes affect one row by default."""
    return create_mock_session()
