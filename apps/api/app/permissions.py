"""Per-baby capability rules for family members.

Every relation type maps to a default permission set. A member with an
explicit permission list uses that list instead; changing the relation type
later does not rewrite it.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional

from .config import CONFIG
from .errors import LastPrimaryCaregiver, PermissionDenied
from .schemas import FamilyMember, MemberAccess, Permission, RelationType

logger = logging.getLogger(__name__)

P = Permission

_FULL = frozenset(Permission)
_GUARDIAN = frozenset(
    {P.VIEW, P.VIEW_MEDICAL, P.EDIT, P.EDIT_MEDICAL, P.MANAGE_FAMILY, P.UPLOAD_MEDIA, P.VIEW_ANALYTICS}
)
_GRANDPARENT = frozenset({P.VIEW, P.VIEW_MEDICAL, P.EDIT, P.UPLOAD_MEDIA, P.VIEW_ANALYTICS})
_STEPPARENT = frozenset({P.VIEW, P.VIEW_MEDICAL, P.EDIT, P.UPLOAD_MEDIA})
_AUNT_UNCLE = frozenset({P.VIEW, P.UPLOAD_MEDIA})
_NANNY = frozenset({P.VIEW, P.VIEW_MEDICAL, P.UPLOAD_MEDIA})
_OTHER = frozenset({P.VIEW})

DEFAULT_PERMISSIONS: Dict[RelationType, FrozenSet[Permission]] = {
    RelationType.MOTHER: _FULL,
    RelationType.FATHER: _FULL,
    RelationType.GUARDIAN: _GUARDIAN,
    RelationType.GRANDMOTHER_MATERNAL: _GRANDPARENT,
    RelationType.GRANDFATHER_MATERNAL: _GRANDPARENT,
    RelationType.GRANDMOTHER_PATERNAL: _GRANDPARENT,
    RelationType.GRANDFATHER_PATERNAL: _GRANDPARENT,
    RelationType.STEPMOTHER: _STEPPARENT,
    RelationType.STEPFATHER: _STEPPARENT,
    RelationType.AUNT_MATERNAL: _AUNT_UNCLE,
    RelationType.UNCLE_MATERNAL: _AUNT_UNCLE,
    RelationType.AUNT_PATERNAL: _AUNT_UNCLE,
    RelationType.UNCLE_PATERNAL: _AUNT_UNCLE,
    RelationType.NANNY: _NANNY,
    RelationType.OTHER: _OTHER,
}


def assert_exhaustive(table: Dict, enum_cls: type[Enum]) -> None:
    missing = [member.value for member in enum_cls if member not in table]
    if missing:
        raise RuntimeError(f"{enum_cls.__name__} values without an entry: {', '.join(missing)}")


assert_exhaustive(DEFAULT_PERMISSIONS, RelationType)


class MemberOperation(str, Enum):
    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"


def derive_permissions(relation_type: RelationType) -> FrozenSet[Permission]:
    return DEFAULT_PERMISSIONS[RelationType(relation_type)]


def effective_permissions(member: FamilyMember) -> FrozenSet[Permission]:
    if member.permissions:
        return frozenset(member.permissions)
    return derive_permissions(member.relation_type)


def can_perform(member: Optional[FamilyMember], permission: Permission) -> bool:
    if member is None:
        return False
    return permission in effective_permissions(member)


def find_member(members: Iterable[FamilyMember], user_id: str) -> Optional[FamilyMember]:
    for member in members:
        if member.user_id == user_id:
            return member
    return None


def authorize_mutation(
    actor: Optional[FamilyMember],
    target: Optional[FamilyMember],
    operation: MemberOperation,
) -> None:
    """Raise PermissionDenied unless ``actor`` may apply ``operation`` to ``target``.

    ``target`` is None for ADD, where the member does not exist yet.
    """
    if actor is None:
        raise PermissionDenied("actor is not a family member of this baby")
    if operation == MemberOperation.REMOVE and target is not None and target.user_id == actor.user_id:
        raise PermissionDenied("family members cannot remove themselves", field="userId")
    if not can_perform(actor, Permission.MANAGE_FAMILY):
        logger.info(
            "member mutation denied",
            extra={"actor": actor.user_id, "operation": operation.value},
        )
        raise PermissionDenied(f"{Permission.MANAGE_FAMILY.value} is required to {operation.value} family members")


def has_moderation_authority(user_id: Optional[str]) -> bool:
    """Moderators are configured per deployment, not granted per baby."""
    return bool(user_id) and user_id in CONFIG.moderator_user_ids


def primary_count(members: Iterable[FamilyMember]) -> int:
    return sum(1 for member in members if member.is_primary)


def ensure_primary_remains(members: List[FamilyMember], target: FamilyMember) -> None:
    """Fail when removing or demoting ``target`` would leave no primary caregiver."""
    remaining = primary_count(members) - (1 if target.is_primary else 0)
    if remaining < 1:
        logger.warning(
            "primary caregiver invariant rejected mutation",
            extra={"user_id": target.user_id, "primary_count": primary_count(members)},
        )
        raise LastPrimaryCaregiver()


def permission_matrix(actor: Optional[FamilyMember], members: List[FamilyMember]) -> List[MemberAccess]:
    """Describe, for each member, what ``actor`` may do to them."""
    manages = can_perform(actor, Permission.MANAGE_FAMILY)
    primaries = primary_count(members)
    rows: List[MemberAccess] = []
    for member in members:
        is_self = actor is not None and member.user_id == actor.user_id
        last_primary = member.is_primary and primaries <= 1
        rows.append(
            MemberAccess(
                user_id=member.user_id,
                permissions=sorted(effective_permissions(member), key=lambda perm: perm.value),
                can_edit=manages,
                can_remove=manages and not is_self and not last_primary,
            )
        )
    return rows
