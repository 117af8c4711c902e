"""Care-tip queries served through the time-bounded cache."""
from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel, Field

from . import db
from .cache import TimeBoundedCache
from .config import CONFIG, AppConfig
from .errors import ValidationError
from .schemas import CareImportance, CareTip, CareTipPage, CreateCareTipPayload, Pagination

logger = logging.getLogger(__name__)

CARE_TIPS_PREFIX = "care_tips:"

content_cache = TimeBoundedCache()


class ContentFilter(BaseModel):
    category: Optional[str] = None
    week: Optional[int] = Field(default=None, ge=1, le=42)
    importance: Optional[CareImportance] = None
    trending: bool = False
    search: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)


def filter_signature(content_filter: ContentFilter) -> str:
    """Canonical cache key: equal filters give equal keys whatever order they were built in."""
    params = content_filter.model_dump(mode="json")
    parts = []
    for name in sorted(params):
        value = params[name]
        if value is None or value is False or value == "":
            continue
        parts.append(f"{name}={value}")
    return CARE_TIPS_PREFIX + "&".join(parts)


def ttl_for_filter(content_filter: ContentFilter, settings: AppConfig = CONFIG) -> float:
    """Seconds a result for this query shape stays fresh."""
    if content_filter.week is not None:
        minutes = settings.cache_ttl_week_minutes
    elif content_filter.importance == CareImportance.HIGH:
        minutes = settings.cache_ttl_important_minutes
    elif content_filter.trending:
        minutes = settings.cache_ttl_trending_minutes
    else:
        minutes = settings.cache_ttl_default_minutes
    return minutes * 60


def _fetch(content_filter: ContentFilter) -> CareTipPage:
    items, total = db.query_care_tips(
        category=content_filter.category,
        week=content_filter.week,
        importance=content_filter.importance,
        trending=content_filter.trending,
        search=content_filter.search,
        limit=content_filter.limit,
        offset=(content_filter.page - 1) * content_filter.limit,
    )
    return CareTipPage(
        items=items,
        pagination=Pagination(
            page=content_filter.page,
            limit=content_filter.limit,
            total=total,
            has_next_page=content_filter.page * content_filter.limit < total,
        ),
    )


def query_reference_content(
    content_filter: ContentFilter,
    *,
    cache: Optional[TimeBoundedCache] = None,
    settings: AppConfig = CONFIG,
) -> CareTipPage:
    cache = cache if cache is not None else content_cache
    if content_filter.search:
        # free-text searches are not cached
        return _fetch(content_filter)

    cache.sweep()
    key = filter_signature(content_filter)
    cached = cache.get(key)
    if cached is not None:
        return cached
    page = _fetch(content_filter)
    cache.set(key, page, ttl_for_filter(content_filter, settings))
    logger.debug("care tips cached", extra={"cache_key": key, "count": len(page.items)})
    return page


def create_care_tip(payload: CreateCareTipPayload, *, cache: Optional[TimeBoundedCache] = None) -> CareTip:
    if payload.week_start > payload.week_end:
        raise ValidationError("weekStart cannot be after weekEnd", field="weekStart")
    tip = db.insert_care_tip(
        title=payload.title.strip(),
        content=payload.content,
        category=payload.category,
        importance=payload.importance,
        week_start=payload.week_start,
        week_end=payload.week_end,
    )
    cache = cache if cache is not None else content_cache
    removed = cache.invalidate_prefix(CARE_TIPS_PREFIX)
    logger.info("care tip created", extra={"care_tip_id": tip.id, "invalidated": removed})
    return tip
