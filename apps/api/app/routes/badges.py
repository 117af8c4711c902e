import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from .. import badge_catalog, badges, family
from ..auth import ActorContext, get_actor
from ..errors import EngineError, PermissionDenied, to_http_exception
from ..permissions import find_member
from ..schemas import (
    BabyBadgeStatistics,
    Badge,
    BadgeCategory,
    BadgeCollection,
    BadgeDifficulty,
    BatchVerifyPayload,
    BatchVerifyResult,
    CollectionPage,
    CreateBadgePayload,
    SubmitBadgePayload,
    UpdateSubmissionPayload,
    VerificationStatus,
    VerifyBadgePayload,
)

router = APIRouter(prefix="/api/v1", tags=["badges"])
logger = logging.getLogger(__name__)


def _require_baby_access(baby_id: int, actor: ActorContext) -> None:
    if actor.is_moderator:
        family.get_baby(baby_id)
    else:
        family.require_viewer(baby_id, actor.user_id)


def _require_moderator(actor: ActorContext) -> None:
    if not actor.is_moderator:
        raise PermissionDenied("moderation authority is required")


@router.post("/badges", response_model=Badge)
async def create_badge_endpoint(payload: CreateBadgePayload, actor: ActorContext = Depends(get_actor)) -> Badge:
    try:
        # only moderators publish system badges
        return badge_catalog.create_badge(payload, created_by=actor.user_id, is_custom=not actor.is_moderator)
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.get("/badges", response_model=List[Badge])
async def list_badges_endpoint(
    category: Optional[BadgeCategory] = Query(None),
    difficulty: Optional[BadgeDifficulty] = Query(None),
    age_months: Optional[int] = Query(
        None, ge=0, le=badge_catalog.MAX_AGE_MONTHS, description="Only badges suitable for this age"
    ),
    actor: ActorContext = Depends(get_actor),
) -> List[Badge]:
    return badge_catalog.list_badges(category=category, difficulty=difficulty, age_months=age_months)


@router.get("/badges/{badge_id}", response_model=Badge)
async def get_badge_endpoint(badge_id: int, actor: ActorContext = Depends(get_actor)) -> Badge:
    try:
        return badge_catalog.get_badge(badge_id)
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.post("/badge-collections", response_model=BadgeCollection)
async def submit_badge_endpoint(
    payload: SubmitBadgePayload,
    actor: ActorContext = Depends(get_actor),
) -> BadgeCollection:
    logger.info(
        "baby-scoped request",
        extra={"method": "POST", "path": "/badge-collections", "baby_id": payload.baby_id, "actor": actor.user_id},
    )
    try:
        return badges.submit(
            payload.baby_id,
            payload.badge_id,
            actor.user_id,
            payload.completed_at,
            payload.submission_note,
            payload.submission_media,
        )
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.get("/badge-collections/my-submissions", response_model=CollectionPage)
async def my_submissions_endpoint(
    status: Optional[VerificationStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: ActorContext = Depends(get_actor),
) -> CollectionPage:
    return badges.list_my_submissions(actor.user_id, status=status, page=page, limit=limit)


@router.get("/badge-collections/pending-verifications", response_model=CollectionPage)
async def pending_verifications_endpoint(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: ActorContext = Depends(get_actor),
) -> CollectionPage:
    try:
        _require_moderator(actor)
        return badges.list_pending_verifications(page=page, limit=limit)
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.post("/badge-collections/batch-verify", response_model=BatchVerifyResult)
async def batch_verify_endpoint(
    payload: BatchVerifyPayload,
    actor: ActorContext = Depends(get_actor),
) -> BatchVerifyResult:
    try:
        _require_moderator(actor)
    except EngineError as exc:
        raise to_http_exception(exc) from exc
    return badges.batch_verify(payload.collection_ids, payload.action, actor.user_id, payload.verification_note)


@router.get("/badge-collections/baby/{baby_id}", response_model=CollectionPage)
async def baby_collections_endpoint(
    baby_id: int,
    status: Optional[VerificationStatus] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    actor: ActorContext = Depends(get_actor),
) -> CollectionPage:
    try:
        _require_baby_access(baby_id, actor)
        return badges.list_baby_collections(baby_id, status=status, page=page, limit=limit)
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.get("/badge-collections/baby/{baby_id}/stats", response_model=BabyBadgeStatistics)
async def baby_stats_endpoint(baby_id: int, actor: ActorContext = Depends(get_actor)) -> BabyBadgeStatistics:
    try:
        if actor.is_moderator:
            family.get_baby(baby_id)
        else:
            family.require_analytics_viewer(baby_id, actor.user_id)
        return badges.baby_badge_statistics(baby_id)
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.get("/badge-collections/{collection_id}", response_model=BadgeCollection)
async def get_collection_endpoint(collection_id: int, actor: ActorContext = Depends(get_actor)) -> BadgeCollection:
    try:
        collection = badges.get_collection(collection_id)
        if collection.parent_id != actor.user_id and not actor.is_moderator:
            members = family.list_members(collection.baby_id)
            if find_member(members, actor.user_id) is None:
                raise PermissionDenied("actor is not a family member of this baby")
        return collection
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.patch("/badge-collections/{collection_id}", response_model=BadgeCollection)
async def update_collection_endpoint(
    collection_id: int,
    payload: UpdateSubmissionPayload,
    actor: ActorContext = Depends(get_actor),
) -> BadgeCollection:
    updates: dict = {}
    if "completed_at" in payload.model_fields_set:
        updates["completed_at"] = payload.completed_at
    if "submission_note" in payload.model_fields_set:
        updates["note"] = payload.submission_note
    if "submission_media" in payload.model_fields_set:
        updates["media"] = payload.submission_media or []
    try:
        return badges.update_submission(collection_id, actor.user_id, **updates)
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.patch("/badge-collections/{collection_id}/verify", response_model=BadgeCollection)
async def verify_collection_endpoint(
    collection_id: int,
    payload: VerifyBadgePayload,
    actor: ActorContext = Depends(get_actor),
) -> BadgeCollection:
    try:
        return badges.verify(collection_id, payload.action, actor.user_id, payload.verification_note)
    except EngineError as exc:
        raise to_http_exception(exc) from exc
