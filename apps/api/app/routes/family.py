import logging
from typing import List

from fastapi import APIRouter, Depends

from .. import family
from ..auth import ActorContext, get_actor
from ..errors import EngineError, to_http_exception
from ..schemas import (
    AddFamilyMemberPayload,
    Baby,
    BulkPermissionsPayload,
    BulkPermissionsResult,
    CreateBabyPayload,
    FamilyMember,
    MemberAccess,
    UpdateBabyPayload,
    UpdateFamilyMemberPayload,
)

router = APIRouter(prefix="/api/v1", tags=["family"])
logger = logging.getLogger(__name__)


@router.post("/babies", response_model=Baby)
async def create_baby_endpoint(payload: CreateBabyPayload, actor: ActorContext = Depends(get_actor)) -> Baby:
    try:
        return family.create_baby(
            payload.name,
            actor.user_id,
            relation_type=payload.relation_type,
            birth_date=payload.birth_date,
            display_name=payload.display_name,
        )
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.get("/babies", response_model=List[Baby])
async def list_babies_endpoint(actor: ActorContext = Depends(get_actor)) -> List[Baby]:
    return family.list_babies_for_user(actor.user_id)


@router.get("/babies/{baby_id}", response_model=Baby)
async def get_baby_endpoint(baby_id: int, actor: ActorContext = Depends(get_actor)) -> Baby:
    try:
        return family.require_viewer(baby_id, actor.user_id)
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.patch("/babies/{baby_id}", response_model=Baby)
async def update_baby_endpoint(
    baby_id: int,
    payload: UpdateBabyPayload,
    actor: ActorContext = Depends(get_actor),
) -> Baby:
    try:
        return family.update_baby(baby_id, actor.user_id, payload)
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/babies/{baby_id}")
async def delete_baby_endpoint(baby_id: int, actor: ActorContext = Depends(get_actor)) -> dict:
    logger.info(
        "baby-scoped request",
        extra={"method": "DELETE", "path": "/babies", "baby_id": baby_id, "actor": actor.user_id},
    )
    try:
        family.delete_baby(baby_id, actor.user_id)
    except EngineError as exc:
        raise to_http_exception(exc) from exc
    return {"status": "ok"}


@router.get("/babies/{baby_id}/family-members", response_model=List[FamilyMember])
async def list_members_endpoint(baby_id: int, actor: ActorContext = Depends(get_actor)) -> List[FamilyMember]:
    try:
        return family.require_viewer(baby_id, actor.user_id).family_members
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.get("/babies/{baby_id}/primary-caregivers", response_model=List[FamilyMember])
async def list_primary_caregivers_endpoint(
    baby_id: int,
    actor: ActorContext = Depends(get_actor),
) -> List[FamilyMember]:
    try:
        family.require_viewer(baby_id, actor.user_id)
        return family.list_primary_caregivers(baby_id)
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.get("/babies/{baby_id}/permissions", response_model=List[MemberAccess])
async def permission_matrix_endpoint(baby_id: int, actor: ActorContext = Depends(get_actor)) -> List[MemberAccess]:
    try:
        return family.member_permissions(baby_id, actor.user_id)
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.post("/babies/{baby_id}/family-members", response_model=Baby)
async def add_member_endpoint(
    baby_id: int,
    payload: AddFamilyMemberPayload,
    actor: ActorContext = Depends(get_actor),
) -> Baby:
    logger.info(
        "baby-scoped request",
        extra={"method": "POST", "path": "/family-members", "baby_id": baby_id, "actor": actor.user_id},
    )
    try:
        return family.add_member(baby_id, actor.user_id, payload)
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.post("/babies/{baby_id}/family-members/bulk-permissions", response_model=BulkPermissionsResult)
async def bulk_permissions_endpoint(
    baby_id: int,
    payload: BulkPermissionsPayload,
    actor: ActorContext = Depends(get_actor),
) -> BulkPermissionsResult:
    try:
        return family.bulk_update_permissions(baby_id, actor.user_id, payload.updates)
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.patch("/babies/{baby_id}/family-members/{user_id}", response_model=Baby)
async def update_member_endpoint(
    baby_id: int,
    user_id: str,
    payload: UpdateFamilyMemberPayload,
    actor: ActorContext = Depends(get_actor),
) -> Baby:
    try:
        return family.update_member(baby_id, actor.user_id, user_id, payload)
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/babies/{baby_id}/family-members/{user_id}", response_model=Baby)
async def remove_member_endpoint(baby_id: int, user_id: str, actor: ActorContext = Depends(get_actor)) -> Baby:
    try:
        family.remove_member(baby_id, actor.user_id, user_id)
        return family.get_baby(baby_id)
    except EngineError as exc:
        raise to_http_exception(exc) from exc
