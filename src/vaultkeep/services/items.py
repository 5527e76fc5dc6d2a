"""Vault item CRUD with field encryption and visibility grants.

Every item carries exactly one typed payload. Payload kinds form a closed
set of dataclasses; encoding to and decoding from the payload tables goes
through a single dispatch per direction.

New items are shared by default:
- the vault owner and the creator get EDIT
- every other active member gets VIEW

Explicit grant lists are deduplicated per member (last entry wins), and
the owner is always forced to EDIT.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy import delete, select, update

from vaultkeep.db.models import (
    ContentFormat,
    ItemPermission,
    ItemStatus,
    ItemType,
    MemberStatus,
    Privilege,
    VaultCryptoWallet,
    VaultDocument,
    VaultItem,
    VaultItemVisibility,
    VaultLink,
    VaultLogAction,
    VaultMember,
    VaultNote,
    VaultPassword,
    WalletType,
)
from vaultkeep.services.errors import (
    AccessError,
    InsufficientPrivilege,
    InvariantViolation,
    ItemNotFound,
    PolicyViolation,
    ValidationFailure,
    VaultAccessError,
)
from vaultkeep.services.permissions import Access, resolve
from vaultkeep.services.policy import PolicyService
from vaultkeep.services.vaults import DEFAULT_RESTORE_WINDOW_DAYS, VaultService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from vaultkeep.core.clock import Clock
    from vaultkeep.db.models import Vault
    from vaultkeep.services.audit import VaultActivityLog
    from vaultkeep.services.encryption import VaultCipher

logger = logging.getLogger(__name__)


# =============================================================================
# Payloads
# =============================================================================


@dataclass(frozen=True, slots=True)
class PasswordPayload:
    password: str
    username: str | None = None
    website_url: str | None = None
    notes: str | None = None
    item_type = ItemType.PASSWORD


@dataclass(frozen=True, slots=True)
class NotePayload:
    content: str
    content_format: ContentFormat = ContentFormat.PLAIN_TEXT
    item_type = ItemType.NOTE


@dataclass(frozen=True, slots=True)
class LinkPayload:
    url: str
    notes: str | None = None
    item_type = ItemType.LINK


@dataclass(frozen=True, slots=True)
class CryptoWalletPayload:
    wallet_type: WalletType
    secret: str
    platform_name: str | None = None
    public_address: str | None = None
    notes: str | None = None
    item_type = ItemType.CRYPTO_WALLET


@dataclass(frozen=True, slots=True)
class DocumentPayload:
    """Metadata of a document whose bytes live in object storage."""

    object_key: str
    file_name: str
    content_type: str
    size_bytes: int
    item_type = ItemType.DOCUMENT


ItemPayload = PasswordPayload | NotePayload | LinkPayload | CryptoWalletPayload | DocumentPayload

PayloadRow = VaultPassword | VaultNote | VaultLink | VaultCryptoWallet | VaultDocument

PAYLOAD_MODELS: dict[ItemType, type[PayloadRow]] = {
    ItemType.PASSWORD: VaultPassword,
    ItemType.NOTE: VaultNote,
    ItemType.LINK: VaultLink,
    ItemType.CRYPTO_WALLET: VaultCryptoWallet,
    ItemType.DOCUMENT: VaultDocument,
}


@dataclass(frozen=True, slots=True)
class VisibilityGrant:
    """Requested grant of a permission on an item to a vault member."""

    member_id: uuid.UUID
    permission: ItemPermission


@dataclass(frozen=True, slots=True)
class ItemAccessDecision:
    """Effective access with the reason for a denial."""

    access: Access
    reason: str | None = None
    error: AccessError | None = None


@dataclass(slots=True)
class DecryptedItem:
    """An item together with its decrypted payload."""

    item: VaultItem
    payload: ItemPayload
    access: Access
    grants: list[VisibilityGrant] = field(default_factory=list)


# =============================================================================
# Service
# =============================================================================


class VaultItemService:
    """Creates, reads, updates, soft-deletes and shares vault items."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock,
        cipher: VaultCipher,
        *,
        vaults: VaultService | None = None,
        policies: PolicyService | None = None,
        activity: VaultActivityLog | None = None,
        restore_window_days: int = DEFAULT_RESTORE_WINDOW_DAYS,
    ) -> None:
        self._session = session
        self._clock = clock
        self._cipher = cipher
        self._policies = policies or PolicyService(session, clock, activity=activity)
        self._vaults = vaults or VaultService(
            session, clock, policies=self._policies, activity=activity
        )
        self._activity = activity
        self._restore_window = timedelta(days=restore_window_days)

    # -------------------------------------------------------------------------
    # Access
    # -------------------------------------------------------------------------

    async def get_item_row(self, item_id: uuid.UUID) -> VaultItem | None:
        result = await self._session.execute(select(VaultItem).where(VaultItem.id == item_id))
        return result.scalar_one_or_none()

    async def get_grant(self, item_id: uuid.UUID, member_id: uuid.UUID) -> ItemPermission | None:
        query = select(VaultItemVisibility.permission).where(
            VaultItemVisibility.vault_item_id == item_id,
            VaultItemVisibility.vault_member_id == member_id,
        )
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def evaluate_access(
        self, vault: Vault, item: VaultItem, user_id: str
    ) -> ItemAccessDecision:
        """Resolve a user's access to an item, keeping the denial reason.

        The owner short-circuits before the release policy is consulted.
        """
        if item.vault_id != vault.id:
            logger.error(
                "Invariant violation: item resolved against a foreign vault",
                extra={"vault_id": str(vault.id), "item_id": str(item.id)},
            )
            return ItemAccessDecision(
                Access.NO_ACCESS, "Item not found", AccessError.INVARIANT_VIOLATION
            )

        privilege = await self._vaults.get_privilege(vault, user_id)
        if privilege is None:
            return ItemAccessDecision(
                Access.NO_ACCESS,
                "You are not a member of this vault",
                AccessError.INSUFFICIENT_PRIVILEGE,
            )
        if privilege == Privilege.OWNER:
            return ItemAccessDecision(resolve(privilege, True, None))

        decision = await self._policies.check_accessibility(vault)
        if not decision.accessible:
            error = (
                AccessError.INVARIANT_VIOLATION
                if decision.invariant_violation
                else AccessError.POLICY_VIOLATION
            )
            return ItemAccessDecision(Access.NO_ACCESS, decision.reason, error)

        member = await self._vaults.get_active_member(vault.id, user_id)
        grant = await self.get_grant(item.id, member.id) if member is not None else None
        access = resolve(privilege, True, grant)
        if access == Access.NO_ACCESS:
            return ItemAccessDecision(
                access, "This item is not shared with you", AccessError.INSUFFICIENT_PRIVILEGE
            )
        return ItemAccessDecision(access)

    async def _require(
        self, item_id: uuid.UUID, user_id: str, needed: Access, *, include_deleted: bool = False
    ) -> tuple[Vault, VaultItem, Access]:
        item = await self.get_item_row(item_id)
        if item is None or (not include_deleted and item.status != ItemStatus.ACTIVE):
            raise ItemNotFound(item_id)

        vault = await self._vaults.get_vault(item.vault_id)
        decision = await self.evaluate_access(vault, item, user_id)
        granted = decision.access.can_edit if needed == Access.EDIT else decision.access.can_view
        if not granted:
            raise _denial(decision, needed)
        return vault, item, decision.access

    async def _require_contributor(self, vault: Vault, user_id: str) -> Privilege:
        """Owners always; other members while the vault is accessible."""
        privilege = await self._vaults.get_privilege(vault, user_id)
        if privilege is None:
            raise InsufficientPrivilege("You are not a member of this vault")
        if privilege != Privilege.OWNER:
            decision = await self._policies.check_accessibility(vault)
            if not decision.accessible:
                if decision.invariant_violation:
                    raise InvariantViolation(decision.reason or "Vault is unavailable")
                raise PolicyViolation(decision.reason or "Vault is not accessible")
        return privilege

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    async def create_item(
        self,
        vault_id: uuid.UUID,
        user_id: str,
        title: str,
        payload: ItemPayload,
        *,
        description: str | None = None,
        visibilities: list[VisibilityGrant] | None = None,
    ) -> VaultItem:
        """Create an item with its encrypted payload and visibility grants.

        Without visibilities (None or an empty list) the item is shared with
        every active member: the owner and the creator edit, others view.

        Raises:
            InsufficientPrivilege: If the caller is not an active member.
            PolicyViolation: If a non-owner writes to an unreleased vault.
            ValidationFailure: On a blank title or grants for non-members.
        """
        vault = await self._vaults.get_vault(vault_id)
        await self._require_contributor(vault, user_id)

        title = title.strip()
        if not title:
            raise ValidationFailure("Item title is required")

        now = self._clock.now()
        item = VaultItem(
            id=uuid.uuid4(),
            vault_id=vault.id,
            created_by_user_id=user_id,
            item_type=payload.item_type,
            title=title,
            description=description,
            status=ItemStatus.ACTIVE,
            created_at=now,
            updated_at=now,
        )
        members = await self._vaults.list_active_members(vault.id)
        # An empty list shares like an omitted one
        grants = self._plan_grants(vault, user_id, members, visibilities or None)

        self._session.add(item)
        self._session.add(self._encode(item, payload, vault))
        for member_id, permission in grants.items():
            self._session.add(
                VaultItemVisibility(
                    id=uuid.uuid4(),
                    vault_item_id=item.id,
                    vault_member_id=member_id,
                    permission=permission,
                    created_at=now,
                )
            )
        await self._session.flush()

        self._record(vault, user_id, VaultLogAction.CREATE_ITEM, item)
        logger.info(
            "Vault item created",
            extra={
                "vault_id": str(vault.id),
                "item_id": str(item.id),
                "item_type": item.item_type.value,
            },
        )
        return item

    async def get_item(self, item_id: uuid.UUID, user_id: str) -> DecryptedItem:
        """Load and decrypt an item the caller can view."""
        vault, item, access = await self._require(item_id, user_id, Access.VIEW)
        row = await self._load_payload_row(item)
        return DecryptedItem(item=item, payload=self._decode(item, row, vault), access=access)

    async def list_items(self, vault_id: uuid.UUID, user_id: str) -> list[VaultItem]:
        """List active items the caller can at least view (metadata only)."""
        vault = await self._vaults.get_vault(vault_id)
        privilege = await self._require_contributor(vault, user_id)

        query = select(VaultItem).where(
            VaultItem.vault_id == vault.id, VaultItem.status == ItemStatus.ACTIVE
        )
        if privilege != Privilege.OWNER:
            member = await self._vaults.get_active_member(vault.id, user_id)
            if member is None:
                return []
            query = query.join(
                VaultItemVisibility, VaultItemVisibility.vault_item_id == VaultItem.id
            ).where(VaultItemVisibility.vault_member_id == member.id)

        result = await self._session.execute(query.order_by(VaultItem.created_at))
        return list(result.scalars().all())

    async def update_item(
        self,
        item_id: uuid.UUID,
        user_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        payload: ItemPayload | None = None,
    ) -> VaultItem:
        """Update metadata and/or payload. The payload kind cannot change."""
        vault, item, _ = await self._require(item_id, user_id, Access.EDIT)

        if payload is not None and payload.item_type != item.item_type:
            raise ValidationFailure("Item type cannot be changed")
        if title is not None:
            title = title.strip()
            if not title:
                raise ValidationFailure("Item title is required")
            item.title = title
        if description is not None:
            item.description = description
        if payload is not None:
            row = await self._load_payload_row(item)
            self._apply_payload(row, payload, vault)

        item.updated_at = self._clock.now()
        await self._session.flush()

        self._record(vault, user_id, VaultLogAction.UPDATE_ITEM, item)
        return item

    async def delete_item(self, item_id: uuid.UUID, user_id: str) -> VaultItem:
        """Soft-delete an item."""
        vault, item, _ = await self._require(item_id, user_id, Access.EDIT)

        now = self._clock.now()
        query = (
            update(VaultItem)
            .where(VaultItem.id == item.id, VaultItem.status == ItemStatus.ACTIVE)
            .values(status=ItemStatus.DELETED, deleted_at=now, deleted_by=user_id, updated_at=now)
        )
        result = await self._session.execute(query)
        if result.rowcount == 0:
            raise ItemNotFound(item_id)

        item.status = ItemStatus.DELETED
        item.deleted_at = now
        item.deleted_by = user_id
        self._record(vault, user_id, VaultLogAction.DELETE_ITEM, item)
        return item

    async def restore_item(self, item_id: uuid.UUID, user_id: str) -> VaultItem:
        """Restore a soft-deleted item within the restore window."""
        vault, item, _ = await self._require(item_id, user_id, Access.EDIT, include_deleted=True)
        if item.status != ItemStatus.DELETED:
            raise ValidationFailure("Item is not deleted")

        now = self._clock.now()
        if item.deleted_at is None or now > item.deleted_at + self._restore_window:
            raise ValidationFailure("The restore window for this item has passed")

        query = (
            update(VaultItem)
            .where(VaultItem.id == item.id, VaultItem.status == ItemStatus.DELETED)
            .values(status=ItemStatus.ACTIVE, deleted_at=None, deleted_by=None, updated_at=now)
        )
        result = await self._session.execute(query)
        if result.rowcount == 0:
            raise ValidationFailure("Item is not deleted")

        item.status = ItemStatus.ACTIVE
        item.deleted_at = None
        item.deleted_by = None
        self._record(vault, user_id, VaultLogAction.RESTORE_ITEM, item)
        return item

    async def set_visibility(
        self, item_id: uuid.UUID, user_id: str, visibilities: list[VisibilityGrant]
    ) -> dict[uuid.UUID, ItemPermission]:
        """Replace an item's grants."""
        vault, item, _ = await self._require(item_id, user_id, Access.EDIT)

        members = await self._vaults.list_active_members(vault.id)
        grants = self._plan_grants(vault, item.created_by_user_id, members, visibilities)

        await self._session.execute(
            delete(VaultItemVisibility).where(VaultItemVisibility.vault_item_id == item.id)
        )
        now = self._clock.now()
        for member_id, permission in grants.items():
            self._session.add(
                VaultItemVisibility(
                    id=uuid.uuid4(),
                    vault_item_id=item.id,
                    vault_member_id=member_id,
                    permission=permission,
                    created_at=now,
                )
            )
        await self._session.flush()

        self._record(
            vault,
            user_id,
            VaultLogAction.SHARE_ITEM,
            item,
            extra_details={"grants": len(grants)},
        )
        return grants

    # -------------------------------------------------------------------------
    # Grants
    # -------------------------------------------------------------------------

    def _plan_grants(
        self,
        vault: Vault,
        creator_id: str,
        members: list[VaultMember],
        visibilities: list[VisibilityGrant] | None,
    ) -> dict[uuid.UUID, ItemPermission]:
        """Compute the grant set for an item, keyed by member id."""
        active = {m.id: m for m in members if m.status == MemberStatus.ACTIVE}
        owner = next((m for m in active.values() if m.user_id == vault.owner_id), None)
        creator = next((m for m in active.values() if m.user_id == creator_id), None)

        grants: dict[uuid.UUID, ItemPermission] = {}
        if visibilities is None:
            for member in active.values():
                grants[member.id] = ItemPermission.VIEW
            if creator is not None:
                grants[creator.id] = ItemPermission.EDIT
        else:
            for grant in visibilities:
                if grant.member_id not in active:
                    raise ValidationFailure("Items can only be shared with active members")
                grants[grant.member_id] = grant.permission
            if creator is not None:
                grants.setdefault(creator.id, ItemPermission.EDIT)

        if owner is None:
            logger.error(
                "Invariant violation: vault has no active owner membership",
                extra={"vault_id": str(vault.id)},
            )
        else:
            grants[owner.id] = ItemPermission.EDIT
        return grants

    # -------------------------------------------------------------------------
    # Payload encoding
    # -------------------------------------------------------------------------

    async def _load_payload_row(self, item: VaultItem) -> PayloadRow:
        model = PAYLOAD_MODELS[item.item_type]
        result = await self._session.execute(
            select(model).where(model.vault_item_id == item.id)
        )
        row = result.scalar_one_or_none()
        if row is None:
            logger.error(
                "Invariant violation: item has no payload",
                extra={"item_id": str(item.id), "item_type": item.item_type.value},
            )
            raise InvariantViolation("Item payload is missing")
        return row

    def _encode(self, item: VaultItem, payload: ItemPayload, vault: Vault) -> PayloadRow:
        row = PAYLOAD_MODELS[payload.item_type](id=uuid.uuid4(), vault_item_id=item.id)
        self._apply_payload(row, payload, vault)
        return row

    def _apply_payload(self, row: PayloadRow, payload: ItemPayload, vault: Vault) -> None:
        """Write a payload onto its row, encrypting sensitive fields."""
        cipher = self._cipher
        if isinstance(payload, PasswordPayload) and isinstance(row, VaultPassword):
            row.username = payload.username
            row.password_ciphertext = cipher.encrypt(payload.password, vault)
            row.website_url = payload.website_url
            row.notes_ciphertext = cipher.encrypt_optional(payload.notes, vault)
        elif isinstance(payload, NotePayload) and isinstance(row, VaultNote):
            row.content_ciphertext = cipher.encrypt(payload.content, vault)
            row.content_format = payload.content_format
        elif isinstance(payload, LinkPayload) and isinstance(row, VaultLink):
            row.url = payload.url
            row.notes_ciphertext = cipher.encrypt_optional(payload.notes, vault)
        elif isinstance(payload, CryptoWalletPayload) and isinstance(row, VaultCryptoWallet):
            row.wallet_type = payload.wallet_type
            row.platform_name = payload.platform_name
            row.secret_ciphertext = cipher.encrypt(payload.secret, vault)
            row.public_address = payload.public_address
            row.notes_ciphertext = cipher.encrypt_optional(payload.notes, vault)
        elif isinstance(payload, DocumentPayload) and isinstance(row, VaultDocument):
            row.object_key = payload.object_key
            row.file_name = payload.file_name
            row.content_type = payload.content_type
            row.size_bytes = payload.size_bytes
        else:
            raise InvariantViolation(
                f"Payload {type(payload).__name__} does not fit {type(row).__name__}"
            )

    def _decode(self, item: VaultItem, row: PayloadRow, vault: Vault) -> ItemPayload:
        """Rebuild the payload of an item, decrypting sensitive fields."""
        cipher = self._cipher
        if isinstance(row, VaultPassword):
            return PasswordPayload(
                password=cipher.decrypt(row.password_ciphertext, vault),
                username=row.username,
                website_url=row.website_url,
                notes=cipher.decrypt_optional(row.notes_ciphertext, vault),
            )
        if isinstance(row, VaultNote):
            return NotePayload(
                content=cipher.decrypt(row.content_ciphertext, vault),
                content_format=row.content_format,
            )
        if isinstance(row, VaultLink):
            return LinkPayload(
                url=row.url, notes=cipher.decrypt_optional(row.notes_ciphertext, vault)
            )
        if isinstance(row, VaultCryptoWallet):
            return CryptoWalletPayload(
                wallet_type=row.wallet_type,
                secret=cipher.decrypt(row.secret_ciphertext, vault),
                platform_name=row.platform_name,
                public_address=row.public_address,
                notes=cipher.decrypt_optional(row.notes_ciphertext, vault),
            )
        if isinstance(row, VaultDocument):
            return DocumentPayload(
                object_key=row.object_key,
                file_name=row.file_name,
                content_type=row.content_type,
                size_bytes=row.size_bytes,
            )
        raise InvariantViolation(f"Unknown payload row for item {item.id}")

    def _record(
        self,
        vault: Vault,
        user_id: str,
        action: VaultLogAction,
        item: VaultItem,
        *,
        extra_details: dict[str, object] | None = None,
    ) -> None:
        if self._activity is None:
            return
        details: dict[str, object] = {"title": item.title, "item_type": item.item_type.value}
        if extra_details:
            details.update(extra_details)
        self._activity.record(vault.id, user_id, action, item_id=item.id, details=details)


def _denial(decision: ItemAccessDecision, needed: Access) -> VaultAccessError:
    """Exception matching an access decision that fell short."""
    if decision.error == AccessError.POLICY_VIOLATION:
        return PolicyViolation(decision.reason or "Vault is not accessible")
    if decision.error == AccessError.INVARIANT_VIOLATION:
        return InvariantViolation(decision.reason or "Vault is unavailable")
    if decision.access.can_view and needed == Access.EDIT:
        return InsufficientPrivilege("You can view but not edit this item")
    return InsufficientPrivilege(decision.reason or "This item is not shared with you")
