"""Badge definitions, read through the shared time-bounded cache."""
from __future__ import annotations

import logging
from typing import List, Optional

from . import db
from .cache import TimeBoundedCache
from .config import CONFIG
from .errors import InvariantViolation, NotFound, ValidationError
from .locks import KeyedLocks
from .schemas import Badge, BadgeCategory, BadgeDifficulty, CreateBadgePayload

logger = logging.getLogger(__name__)

CATALOG_PREFIX = "badges:"
MAX_AGE_MONTHS = 216

catalog_cache = TimeBoundedCache()

_creator_locks = KeyedLocks()


def _ttl_seconds() -> float:
    return CONFIG.badge_cache_ttl_minutes * 60


def _insert(payload: CreateBadgePayload, *, created_by: Optional[str], is_custom: bool) -> Badge:
    return db.create_badge(
        title=payload.title.strip(),
        description=payload.description,
        instruction=payload.instruction,
        category=payload.category,
        difficulty=payload.difficulty,
        min_age=payload.min_age,
        max_age=payload.max_age,
        is_active=payload.is_active,
        is_custom=is_custom,
        created_by=created_by,
    )


def create_badge(payload: CreateBadgePayload, *, created_by: Optional[str] = None, is_custom: bool = False) -> Badge:
    if payload.min_age is not None and payload.max_age is not None and payload.min_age > payload.max_age:
        raise ValidationError("minAge cannot exceed maxAge", field="minAge")
    if is_custom and created_by:
        with _creator_locks.get(created_by):
            owned = db.count_custom_badges(created_by)
            if owned >= CONFIG.max_custom_badges_per_user:
                logger.warning("custom badge limit reached", extra={"created_by": created_by, "count": owned})
                raise InvariantViolation(
                    f"at most {CONFIG.max_custom_badges_per_user} custom badges per user",
                    field="isCustom",
                )
            badge = _insert(payload, created_by=created_by, is_custom=True)
    else:
        badge = _insert(payload, created_by=created_by, is_custom=is_custom)
    removed = catalog_cache.invalidate_prefix(CATALOG_PREFIX)
    logger.info("badge created", extra={"badge_id": badge.id, "invalidated": removed})
    return badge


def get_badge(badge_id: int) -> Badge:
    catalog_cache.sweep()
    key = f"{CATALOG_PREFIX}id={badge_id}"
    cached = catalog_cache.get(key)
    if cached is not None:
        return cached
    try:
        badge = db.get_badge(badge_id)
    except ValueError as exc:
        raise NotFound(str(exc), field="badgeId") from exc
    catalog_cache.set(key, badge, _ttl_seconds())
    return badge


def list_badges(
    *,
    category: Optional[BadgeCategory] = None,
    difficulty: Optional[BadgeDifficulty] = None,
    age_months: Optional[int] = None,
    include_inactive: bool = False,
) -> List[Badge]:
    params = {
        "age": age_months,
        "category": category.value if category else None,
        "difficulty": difficulty.value if difficulty else None,
        "inactive": include_inactive or None,
    }
    catalog_cache.sweep()
    key = CATALOG_PREFIX + "&".join(f"{name}={value}" for name, value in sorted(params.items()) if value is not None)
    cached = catalog_cache.get(key)
    if cached is not None:
        return cached
    badges = db.list_badges(
        category=category,
        difficulty=difficulty,
        is_active=None if include_inactive else True,
        age_months=age_months,
    )
    catalog_cache.set(key, badges, _ttl_seconds())
    return badges
