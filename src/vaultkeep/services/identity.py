"""Identity collaborator consumed by the invite lifecycle.

Account registration and login live outside this package. Invite
acceptance only needs to map an email address to the account that owns it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


def normalize_email(email: str) -> str:
    """Canonical form used for invite matching (case-insensitive)."""
    return email.strip().lower()


class IdentityDirectory(ABC):
    """Lookup of user accounts by email."""

    @abstractmethod
    async def find_user_id_by_email(self, email: str) -> str | None:
        """Return the id of the account registered with email, if any.

        Implementations must match case-insensitively.
        """


class InMemoryIdentityDirectory(IdentityDirectory):
    """Directory backed by a dict, for tests and local tooling."""

    def __init__(self, users: dict[str, str] | None = None) -> None:
        self._users: dict[str, str] = {}
        for email, user_id in (users or {}).items():
            self.register(email, user_id)

    def register(self, email: str, user_id: str) -> None:
        self._users[normalize_email(email)] = user_id

    async def find_user_id_by_email(self, email: str) -> str | None:
        return self._users.get(normalize_email(email))
