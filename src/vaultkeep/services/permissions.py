"""Permission resolution for vault items and membership management.

Resolution order for an item:
1. Owner -> EDIT, unconditionally (policy and grants are not consulted)
2. Vault not accessible under its release policy -> NO_ACCESS
3. Visibility grant for (item, member): none -> NO_ACCESS, VIEW -> VIEW,
   EDIT -> EDIT

Admin privilege confers management rights (invites, membership, policy
revoke) but no item access of its own.

Every function here is pure; callers load the privilege, policy decision
and grant and pass them in.
"""

from __future__ import annotations

from enum import Enum

from vaultkeep.db.models import ItemPermission, Privilege


class Access(str, Enum):
    """Effective access of a user to a vault item.

    Values:
        NO_ACCESS: Item is hidden from the user
        VIEW: User may read and decrypt the item
        EDIT: User may also modify, delete and share the item
    """

    NO_ACCESS = "no_access"
    VIEW = "view"
    EDIT = "edit"

    @property
    def can_view(self) -> bool:
        return self in (Access.VIEW, Access.EDIT)

    @property
    def can_edit(self) -> bool:
        return self == Access.EDIT


MANAGER_PRIVILEGES = frozenset({Privilege.OWNER, Privilege.ADMIN})


def resolve(
    privilege: Privilege | None,
    vault_accessible: bool,
    grant: ItemPermission | None,
) -> Access:
    """Resolve effective item access.

    Args:
        privilege: Caller's privilege in the vault, None if not an active member.
        vault_accessible: Release-policy decision for non-owners.
        grant: Caller's visibility grant on the item, if any.

    Returns:
        Effective access.
    """
    if privilege is None:
        return Access.NO_ACCESS
    if privilege == Privilege.OWNER:
        return Access.EDIT
    if not vault_accessible:
        return Access.NO_ACCESS
    if grant == ItemPermission.EDIT:
        return Access.EDIT
    if grant == ItemPermission.VIEW:
        return Access.VIEW
    return Access.NO_ACCESS


def can_manage_members(privilege: Privilege | None) -> bool:
    """Owners and admins manage invites, members and policy revocation."""
    return privilege in MANAGER_PRIVILEGES


def can_invite_as(actor: Privilege | None, privilege: Privilege) -> bool:
    """Check whether actor may issue an invite granting privilege.

    Ownership is only ever transferred, never granted by invite.
    """
    return can_manage_members(actor) and privilege != Privilege.OWNER


def can_remove(actor: Privilege | None, target: Privilege) -> bool:
    """Check whether actor may remove a member holding target.

    The owner removes admins and members; admins remove members only.
    """
    if target == Privilege.OWNER:
        return False
    if actor == Privilege.OWNER:
        return True
    return actor == Privilege.ADMIN and target == Privilege.MEMBER


def can_change_privilege(
    actor: Privilege | None, current: Privilege, new: Privilege
) -> bool:
    """Check whether actor may move a member from current to new.

    Only admin and member are assignable; the owner row never changes here.
    """
    if new == Privilege.OWNER or current == Privilege.OWNER:
        return False
    if current == new:
        return False
    return can_manage_members(actor)
