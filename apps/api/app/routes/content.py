from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..auth import ActorContext, get_actor
from ..errors import EngineError, PermissionDenied, to_http_exception
from ..reference_content import ContentFilter, create_care_tip, query_reference_content
from ..schemas import CareImportance, CareTip, CareTipPage, CreateCareTipPayload

router = APIRouter(prefix="/api/v1", tags=["content"])


@router.get("/care-tips", response_model=CareTipPage)
async def list_care_tips_endpoint(
    category: Optional[str] = Query(None),
    week: Optional[int] = Query(None, ge=1, le=42, description="Pregnancy week"),
    importance: Optional[CareImportance] = Query(None),
    trending: bool = Query(False, description="Most viewed first"),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    actor: ActorContext = Depends(get_actor),
) -> CareTipPage:
    content_filter = ContentFilter(
        category=category,
        week=week,
        importance=importance,
        trending=trending,
        search=(search or "").strip() or None,
        page=page,
        limit=limit,
    )
    return query_reference_content(content_filter)


@router.post("/care-tips", response_model=CareTip)
async def create_care_tip_endpoint(
    payload: CreateCareTipPayload,
    actor: ActorContext = Depends(get_actor),
) -> CareTip:
    try:
        if not actor.is_moderator:
            raise PermissionDenied("moderation authority is required to publish care tips")
        return create_care_tip(payload)
    except EngineError as exc:
        raise to_http_exception(exc) from exc
