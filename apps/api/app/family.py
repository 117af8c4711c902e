"""Baby records and their family members.

Mutations that can affect the primary-caregiver invariant run under a
per-baby lock inside one ``BEGIN IMMEDIATE`` transaction: the member list is
read, checked and written as a single unit, and any failure leaves it as it
was.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from . import db
from .errors import EngineError, NotFound, PermissionDenied, ValidationError
from .locks import KeyedLocks
from .permissions import (
    MemberOperation,
    authorize_mutation,
    can_perform,
    ensure_primary_remains,
    find_member,
    permission_matrix,
)
from .schemas import (
    AddFamilyMemberPayload,
    Baby,
    BulkPermissionsResult,
    FamilyMember,
    MemberAccess,
    MemberFailure,
    Permission,
    PermissionUpdate,
    RelationType,
    UpdateBabyPayload,
    UpdateFamilyMemberPayload,
)

logger = logging.getLogger(__name__)

_baby_locks = KeyedLocks()


def _dedupe(permissions: Optional[List[Permission]]) -> List[Permission]:
    seen: List[Permission] = []
    for perm in permissions or []:
        if perm not in seen:
            seen.append(perm)
    return seen


def _load_baby(conn, baby_id: int) -> Baby:
    baby = db.fetch_baby(conn, baby_id)
    if baby is None:
        raise NotFound(f"baby {baby_id} not found", field="babyId")
    return baby


def _require_target(baby: Baby, user_id: str) -> FamilyMember:
    target = find_member(baby.family_members, user_id)
    if target is None:
        raise NotFound(f"user {user_id} is not a family member of baby {baby.id}", field="userId")
    return target


def create_baby(
    name: str,
    creator_user_id: str,
    *,
    relation_type: RelationType = RelationType.MOTHER,
    birth_date: Optional[str] = None,
    display_name: Optional[str] = None,
) -> Baby:
    """Create a baby whose creator is its single primary caregiver."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required", field="name")
    now = db.utcnow()
    with db.transaction() as conn:
        baby_id = db.insert_baby(conn, name=name, birth_date=birth_date, now=now)
        db.insert_member(
            conn,
            baby_id,
            FamilyMember(
                user_id=creator_user_id,
                relation_type=relation_type,
                display_name=display_name,
                is_primary=True,
                permissions=[],
                added_at=now,
                added_by=creator_user_id,
            ),
        )
        baby = _load_baby(conn, baby_id)
    logger.info("baby created", extra={"baby_id": baby_id, "user_id": creator_user_id})
    return baby


def get_baby(baby_id: int) -> Baby:
    try:
        return db.get_baby(baby_id)
    except ValueError as exc:
        raise NotFound(str(exc), field="babyId") from exc


def list_babies_for_user(user_id: str) -> List[Baby]:
    return [get_baby(baby_id) for baby_id in db.list_baby_ids_for_user(user_id)]


def list_members(baby_id: int) -> List[FamilyMember]:
    return get_baby(baby_id).family_members


def list_primary_caregivers(baby_id: int) -> List[FamilyMember]:
    return [member for member in list_members(baby_id) if member.is_primary]


def get_member(baby_id: int, user_id: str) -> Optional[FamilyMember]:
    return find_member(list_members(baby_id), user_id)


def require_viewer(baby_id: int, user_id: str) -> Baby:
    """Return the baby when ``user_id`` belongs to its family, else PermissionDenied."""
    baby = get_baby(baby_id)
    if find_member(baby.family_members, user_id) is None:
        raise PermissionDenied("actor is not a family member of this baby")
    return baby


def _require_permission(baby: Baby, actor_user_id: str, permission: Permission) -> FamilyMember:
    actor = find_member(baby.family_members, actor_user_id)
    if actor is None:
        raise PermissionDenied("actor is not a family member of this baby")
    if not can_perform(actor, permission):
        raise PermissionDenied(f"{permission.value} is required for this baby")
    return actor


def require_analytics_viewer(baby_id: int, user_id: str) -> Baby:
    baby = get_baby(baby_id)
    _require_permission(baby, user_id, Permission.VIEW_ANALYTICS)
    return baby


def update_baby(baby_id: int, actor_user_id: str, payload: UpdateBabyPayload) -> Baby:
    """Rename the baby or change its birth date; needs ``edit``."""
    with _baby_locks.get(baby_id), db.transaction() as conn:
        baby = _load_baby(conn, baby_id)
        _require_permission(baby, actor_user_id, Permission.EDIT)
        name = baby.name
        if payload.name is not None:
            name = payload.name.strip()
            if not name:
                raise ValidationError("name is required", field="name")
        birth_date = payload.birth_date if "birth_date" in payload.model_fields_set else baby.birth_date
        db.update_baby_fields(conn, baby_id, name=name, birth_date=birth_date, now=db.utcnow())
        updated = _load_baby(conn, baby_id)
    logger.info("baby updated", extra={"baby_id": baby_id, "actor": actor_user_id})
    return updated


def delete_baby(baby_id: int, actor_user_id: str) -> None:
    with _baby_locks.get(baby_id), db.transaction() as conn:
        baby = _load_baby(conn, baby_id)
        _require_permission(baby, actor_user_id, Permission.DELETE)
        db.delete_baby(conn, baby_id)
    logger.info("baby deleted", extra={"baby_id": baby_id, "actor": actor_user_id})


def member_permissions(baby_id: int, actor_user_id: str) -> List[MemberAccess]:
    baby = require_viewer(baby_id, actor_user_id)
    actor = find_member(baby.family_members, actor_user_id)
    return permission_matrix(actor, baby.family_members)


def add_member(baby_id: int, actor_user_id: str, payload: AddFamilyMemberPayload) -> Baby:
    with _baby_locks.get(baby_id), db.transaction() as conn:
        baby = _load_baby(conn, baby_id)
        actor = find_member(baby.family_members, actor_user_id)
        authorize_mutation(actor, None, MemberOperation.ADD)
        if find_member(baby.family_members, payload.user_id) is not None:
            raise ValidationError(f"user {payload.user_id} is already a family member", field="userId")
        member = FamilyMember(
            user_id=payload.user_id,
            relation_type=payload.relation_type,
            display_name=payload.display_name,
            is_primary=payload.is_primary,
            permissions=_dedupe(payload.permissions),
            added_at=db.utcnow(),
            added_by=actor_user_id,
        )
        db.insert_member(conn, baby_id, member)
        db.touch_baby(conn, baby_id, member.added_at)
        updated = _load_baby(conn, baby_id)
    logger.info(
        "family member added",
        extra={
            "baby_id": baby_id,
            "user_id": member.user_id,
            "relation_type": member.relation_type.value,
            "is_primary": member.is_primary,
            "actor": actor_user_id,
        },
    )
    return updated


def _apply_update(conn, baby: Baby, actor_user_id: str, user_id: str, payload: UpdateFamilyMemberPayload) -> FamilyMember:
    target = _require_target(baby, user_id)
    actor = find_member(baby.family_members, actor_user_id)
    changes = {field for field in payload.model_fields_set if getattr(payload, field) is not None}
    if "display_name" in payload.model_fields_set:
        changes.add("display_name")
    if not changes:
        return target

    # Members may rename themselves; everything else needs manage_family.
    self_rename = actor is not None and actor.user_id == target.user_id and changes == {"display_name"}
    if actor is None:
        raise PermissionDenied("actor is not a family member of this baby")
    if not self_rename:
        authorize_mutation(actor, target, MemberOperation.UPDATE)

    if payload.is_primary is False and target.is_primary:
        ensure_primary_remains(baby.family_members, target)

    updated = target.model_copy()
    if payload.relation_type is not None:
        updated.relation_type = payload.relation_type
    if "display_name" in changes:
        updated.display_name = payload.display_name
    if payload.is_primary is not None:
        updated.is_primary = payload.is_primary
    if payload.permissions is not None:
        updated.permissions = _dedupe(payload.permissions)
    db.save_member(conn, baby.id, updated)
    db.touch_baby(conn, baby.id, db.utcnow())
    if updated.is_primary != target.is_primary:
        logger.info(
            "primary flag changed",
            extra={"baby_id": baby.id, "user_id": user_id, "is_primary": updated.is_primary, "actor": actor_user_id},
        )
    return updated


def update_member(
    baby_id: int,
    actor_user_id: str,
    user_id: str,
    payload: UpdateFamilyMemberPayload,
) -> Baby:
    with _baby_locks.get(baby_id), db.transaction() as conn:
        baby = _load_baby(conn, baby_id)
        _apply_update(conn, baby, actor_user_id, user_id, payload)
        updated = _load_baby(conn, baby_id)
    logger.info(
        "family member updated",
        extra={"baby_id": baby_id, "user_id": user_id, "actor": actor_user_id},
    )
    return updated


def set_primary(baby_id: int, actor_user_id: str, user_id: str, is_primary: bool) -> Baby:
    return update_member(baby_id, actor_user_id, user_id, UpdateFamilyMemberPayload(is_primary=is_primary))


def remove_member(baby_id: int, actor_user_id: str, user_id: str) -> None:
    with _baby_locks.get(baby_id), db.transaction() as conn:
        baby = _load_baby(conn, baby_id)
        target = _require_target(baby, user_id)
        actor = find_member(baby.family_members, actor_user_id)
        authorize_mutation(actor, target, MemberOperation.REMOVE)
        ensure_primary_remains(baby.family_members, target)
        db.delete_member(conn, baby_id, user_id)
        db.touch_baby(conn, baby_id, db.utcnow())
    logger.info(
        "family member removed",
        extra={"baby_id": baby_id, "user_id": user_id, "actor": actor_user_id},
    )


def bulk_update_permissions(
    baby_id: int,
    actor_user_id: str,
    updates: List[PermissionUpdate],
) -> BulkPermissionsResult:
    """Apply each permission update on its own; one failure does not stop the rest."""
    get_baby(baby_id)
    result = BulkPermissionsResult()
    for update in updates:
        try:
            update_member(
                baby_id,
                actor_user_id,
                update.user_id,
                UpdateFamilyMemberPayload(permissions=update.permissions),
            )
        except EngineError as exc:
            result.failed.append(MemberFailure(user_id=update.user_id, error=exc.kind, message=exc.message))
        else:
            result.successful.append(update.user_id)
    logger.info(
        "bulk permission update",
        extra={
            "baby_id": baby_id,
            "successful": len(result.successful),
            "failed": len(result.failed),
        },
    )
    return result
