"""Vault activity log and in-app notifications.

The activity log is append-only: rows are added inside the caller's
transaction and nothing here updates or deletes them. Details never
contain decrypted values. Notifications belong to one user, who may mark
them read or delete them.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, select, update

from vaultkeep.db.models import (
    MemberStatus,
    Notification,
    NotificationCategory,
    VaultLog,
    VaultLogAction,
    VaultMember,
)
from vaultkeep.services.errors import NotificationNotFound

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from vaultkeep.core.clock import Clock
    from vaultkeep.db.models import Vault

logger = logging.getLogger(__name__)

DEFAULT_LOG_PAGE_SIZE = 100


class VaultActivityLog:
    """Writes VaultLog rows for item, membership and policy actions."""

    def __init__(self, session: AsyncSession, clock: Clock) -> None:
        self._session = session
        self._clock = clock

    def record(
        self,
        vault_id: uuid.UUID,
        user_id: str,
        action: VaultLogAction,
        *,
        item_id: uuid.UUID | None = None,
        target_user_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> VaultLog:
        """Append an activity row to the current transaction.

        Args:
            vault_id: Vault the action happened in.
            user_id: Acting user.
            action: What happened.
            item_id: Affected item, if any.
            target_user_id: Affected member, if any.
            details: Extra non-sensitive context (e.g. item title).

        Returns:
            The pending VaultLog row.
        """
        entry = VaultLog(
            id=uuid.uuid4(),
            vault_id=vault_id,
            user_id=user_id,
            action=action,
            item_id=item_id,
            target_user_id=target_user_id,
            details=details,
            created_at=self._clock.now(),
        )
        self._session.add(entry)

        logger.debug(
            "Vault activity recorded: %s",
            action.value,
            extra={"vault_id": str(vault_id), "user_id": user_id},
        )
        return entry

    async def list_for_vault(
        self,
        vault_id: uuid.UUID,
        *,
        limit: int = DEFAULT_LOG_PAGE_SIZE,
    ) -> list[VaultLog]:
        """Most recent activity of a vault, newest first.

        Callers check membership first (see VaultService.list_vault_logs).
        """
        query = (
            select(VaultLog)
            .where(VaultLog.vault_id == vault_id)
            .order_by(VaultLog.created_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())


class NotificationService:
    """Creates in-app notifications for vault events."""

    def __init__(self, session: AsyncSession, clock: Clock) -> None:
        self._session = session
        self._clock = clock

    async def notify_vault_released(self, vault: Vault) -> int:
        """Notify every active non-owner member that a vault was released.

        Returns:
            Number of notifications created.
        """
        query = select(VaultMember).where(
            VaultMember.vault_id == vault.id,
            VaultMember.status == MemberStatus.ACTIVE,
            VaultMember.user_id != vault.owner_id,
        )
        result = await self._session.execute(query)
        members = list(result.scalars().all())

        now = self._clock.now()
        for member in members:
            self._session.add(
                Notification(
                    id=uuid.uuid4(),
                    user_id=member.user_id,
                    vault_id=vault.id,
                    category=NotificationCategory.VAULT_RELEASED,
                    title="Vault released",
                    message=f'The vault "{vault.name}" is now available to you.',
                    is_read=False,
                    created_at=now,
                )
            )

        logger.info(
            "Release notifications created for %d member(s)",
            len(members),
            extra={"vault_id": str(vault.id)},
        )
        return len(members)

    # -------------------------------------------------------------------------
    # Inbox
    # -------------------------------------------------------------------------

    async def list_for_user(
        self, user_id: str, *, unread_only: bool = False
    ) -> list[Notification]:
        """A user's notifications, newest first."""
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        result = await self._session.execute(query.order_by(Notification.created_at.desc()))
        return list(result.scalars().all())

    async def mark_read(self, notification_id: uuid.UUID, user_id: str) -> bool:
        """Mark one of the user's notifications as read.

        Returns:
            True if it was unread, False if it had been read already.

        Raises:
            NotificationNotFound: If the notification does not exist or
                belongs to another user.
        """
        query = (
            update(Notification)
            .where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True, read_at=self._clock.now())
        )
        result = await self._session.execute(query)
        if result.rowcount > 0:
            return True

        existing = await self._session.execute(
            select(Notification.id).where(
                Notification.id == notification_id, Notification.user_id == user_id
            )
        )
        if existing.scalar_one_or_none() is None:
            raise NotificationNotFound(notification_id)
        return False

    async def delete(self, notification_id: uuid.UUID, user_id: str) -> None:
        """Delete one of the user's notifications."""
        query = delete(Notification).where(
            Notification.id == notification_id, Notification.user_id == user_id
        )
        result = await self._session.execute(query)
        if result.rowcount == 0:
            raise NotificationNotFound(notification_id)

    async def delete_read(self, user_id: str) -> int:
        """Delete every read notification of a user.

        Returns:
            Number of notifications deleted.
        """
        query = delete(Notification).where(
            Notification.user_id == user_id, Notification.is_read.is_(True)
        )
        result = await self._session.execute(query)
        logger.debug(
            "Deleted %d read notification(s)", result.rowcount, extra={"user_id": user_id}
        )
        return result.rowcount
