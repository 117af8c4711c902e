"""Badge submissions and their moderation.

A submission starts ``pending`` (or ``auto_approved`` for trusted submitters)
and a moderator moves it to ``approved`` or ``rejected``. Every state except
``pending`` is final.

Field checks run in a fixed order and stop at the first failure: completion
date, note, media, then the daily submission limit.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from . import badge_catalog, db, family
from .config import CONFIG, RateLimitScope
from .errors import (
    AlreadyFinalized,
    EngineError,
    NotFound,
    PermissionDenied,
    RateLimitExceeded,
    ValidationError,
)
from .locks import KeyedLocks
from .permissions import can_perform, find_member, has_moderation_authority
from .schemas import (
    TERMINAL_STATUSES,
    Baby,
    BabyBadgeStatistics,
    BadgeCollection,
    BatchFailure,
    BatchVerifyResult,
    CollectionPage,
    MediaItem,
    Pagination,
    Permission,
    VerificationAction,
    VerificationStatus,
)

logger = logging.getLogger(__name__)

MAX_NOTE_LENGTH = 500
MAX_MEDIA_ITEMS = 5
MAX_MEDIA_BYTES = 10 * 1024 * 1024
ALLOWED_MEDIA_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "video/mp4"})
MAX_COMPLETION_AGE_YEARS = 5

_ACTION_STATUS = {
    VerificationAction.APPROVE: VerificationStatus.APPROVED,
    VerificationAction.REJECT: VerificationStatus.REJECTED,
}

_UNSET: Any = object()

_submitter_locks = KeyedLocks()

MediaInput = Union[MediaItem, dict]


def _years_before(moment: datetime, years: int) -> datetime:
    try:
        return moment.replace(year=moment.year - years)
    except ValueError:
        # Feb 29 with no matching day in the target year
        return moment.replace(year=moment.year - years, day=28)


def parse_completed_at(value: Union[str, datetime, None]) -> datetime:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime."""
    if value is None or value == "":
        raise ValidationError("completedAt is required", field="completedAt")
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValidationError(f"completedAt is not a valid date: {value}", field="completedAt") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _coerce_media(media: Optional[Iterable[MediaInput]]) -> List[MediaItem]:
    items: List[MediaItem] = []
    for index, raw in enumerate(media or []):
        if isinstance(raw, MediaItem):
            items.append(raw)
            continue
        try:
            items.append(MediaItem.model_validate(raw))
        except PydanticValidationError as exc:
            raise ValidationError(f"media item {index} is malformed", field="submissionMedia") from exc
    return items


def validate_submission_fields(
    completed_at: Union[str, datetime, None],
    note: Optional[str],
    media: Optional[Iterable[MediaInput]],
    *,
    now: Optional[datetime] = None,
) -> Tuple[datetime, Optional[str], List[MediaItem]]:
    current = now or db.utcnow()
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    parsed = parse_completed_at(completed_at)
    if parsed > current:
        raise ValidationError("completedAt cannot be in the future", field="completedAt")
    if parsed < _years_before(current, MAX_COMPLETION_AGE_YEARS):
        raise ValidationError(
            f"completedAt cannot be more than {MAX_COMPLETION_AGE_YEARS} years ago",
            field="completedAt",
        )

    if note is not None and len(note) > MAX_NOTE_LENGTH:
        raise ValidationError(
            f"submissionNote must be at most {MAX_NOTE_LENGTH} characters",
            field="submissionNote",
        )

    media_list = list(media or [])
    if len(media_list) > MAX_MEDIA_ITEMS:
        raise ValidationError(
            f"at most {MAX_MEDIA_ITEMS} media items are allowed",
            field="submissionMedia",
        )
    items = _coerce_media(media_list)
    for item in items:
        if item.size > MAX_MEDIA_BYTES:
            raise ValidationError(f"{item.url} exceeds 10MB", field="submissionMedia")
        if item.type not in ALLOWED_MEDIA_TYPES:
            raise ValidationError(f"unsupported media type {item.type}", field="submissionMedia")
    return parsed, note, items


def _rate_limit_key(submitter_id: str, baby_id: int) -> Tuple[str, Optional[int]]:
    if CONFIG.rate_limit_scope == RateLimitScope.SUBMITTER_BABY:
        return submitter_id, baby_id
    return submitter_id, None


def _check_rate_limit(conn, submitter_id: str, baby_id: int, day: str) -> None:
    _, scoped_baby = _rate_limit_key(submitter_id, baby_id)
    count = db.count_submissions_on_day(conn, submitter_id, day, baby_id=scoped_baby)
    if count >= CONFIG.daily_submission_limit:
        logger.warning(
            "submission rate limit reached",
            extra={"submitter": submitter_id, "baby_id": baby_id, "day": day, "count": count},
        )
        raise RateLimitExceeded(
            f"daily limit of {CONFIG.daily_submission_limit} submissions reached for {day}",
            field="completedAt",
        )


def _require_uploader(baby: Baby, user_id: str) -> None:
    if not can_perform(find_member(baby.family_members, user_id), Permission.UPLOAD_MEDIA):
        raise PermissionDenied(f"{Permission.UPLOAD_MEDIA.value} is required to submit badges for this baby")


def initial_status(submitter_id: str) -> VerificationStatus:
    if submitter_id in CONFIG.trusted_submitter_ids:
        return VerificationStatus.AUTO_APPROVED
    return VerificationStatus.PENDING


def submit(
    baby_id: int,
    badge_id: int,
    submitter_id: str,
    completed_at: Union[str, datetime, None],
    note: Optional[str] = None,
    media: Optional[Iterable[MediaInput]] = None,
    *,
    now: Optional[datetime] = None,
) -> BadgeCollection:
    baby = family.get_baby(baby_id)
    badge = badge_catalog.get_badge(badge_id)
    _require_uploader(baby, submitter_id)
    if not badge.is_active:
        raise ValidationError(f"badge {badge_id} is not active", field="badgeId")

    parsed, note, items = validate_submission_fields(completed_at, note, media, now=now)
    status = initial_status(submitter_id)
    day = parsed.date().isoformat()
    current = now or db.utcnow()

    with _submitter_locks.get(_rate_limit_key(submitter_id, baby_id)), db.transaction() as conn:
        _check_rate_limit(conn, submitter_id, baby_id, day)
        collection_id = db.insert_collection(
            conn,
            baby_id=baby_id,
            badge_id=badge_id,
            parent_id=submitter_id,
            completed_at=parsed,
            note=note,
            media=items,
            status=status,
            now=current,
        )
        collection = db.fetch_collection(conn, collection_id)
    logger.info(
        "badge submission created",
        extra={
            "collection_id": collection_id,
            "baby_id": baby_id,
            "badge_id": badge_id,
            "submitter": submitter_id,
            "status": status.value,
        },
    )
    return collection


def get_collection(collection_id: int) -> BadgeCollection:
    try:
        return db.get_collection(collection_id)
    except ValueError as exc:
        raise NotFound(str(exc), field="collectionId") from exc


def verify(
    collection_id: int,
    action: VerificationAction,
    verifier_id: str,
    note: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> BadgeCollection:
    if not has_moderation_authority(verifier_id):
        raise PermissionDenied("moderation authority is required to verify badges")
    action = VerificationAction(action)
    current = now or db.utcnow()
    with db.transaction() as conn:
        existing = db.fetch_collection(conn, collection_id)
        if existing is None:
            raise NotFound(f"Badge collection {collection_id} not found", field="collectionId")
        if existing.verification_status in TERMINAL_STATUSES:
            raise AlreadyFinalized(
                f"badge collection {collection_id} is already {existing.verification_status.value}"
            )
        applied = db.finalize_collection(
            conn,
            collection_id,
            status=_ACTION_STATUS[action],
            verified_by=verifier_id,
            note=note,
            now=current,
        )
        if not applied:
            raise AlreadyFinalized(f"badge collection {collection_id} is no longer pending")
        collection = db.fetch_collection(conn, collection_id)
    logger.info(
        "badge verification applied",
        extra={"collection_id": collection_id, "action": action.value, "verifier": verifier_id},
    )
    return collection


def batch_verify(
    collection_ids: List[int],
    action: VerificationAction,
    verifier_id: str,
    note: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> BatchVerifyResult:
    result = BatchVerifyResult()
    for collection_id in collection_ids:
        try:
            result.successful.append(verify(collection_id, action, verifier_id, note, now=now))
        except EngineError as exc:
            result.failed.append(BatchFailure(id=collection_id, error=exc.kind, message=exc.message))
    logger.info(
        "batch verification finished",
        extra={"successful": len(result.successful), "failed": len(result.failed), "verifier": verifier_id},
    )
    return result


def update_submission(
    collection_id: int,
    actor_id: str,
    *,
    completed_at: Union[str, datetime, None] = None,
    note: Optional[str] = _UNSET,
    media: Optional[Iterable[MediaInput]] = _UNSET,
    now: Optional[datetime] = None,
) -> BadgeCollection:
    """Edit a pending submission's content; only its submitter may do this."""
    existing = get_collection(collection_id)
    if existing.parent_id != actor_id:
        raise PermissionDenied("only the submitter can edit a badge submission")
    _require_uploader(family.get_baby(existing.baby_id), actor_id)
    if existing.verification_status in TERMINAL_STATUSES:
        raise AlreadyFinalized(f"badge collection {collection_id} is already {existing.verification_status.value}")

    parsed, new_note, items = validate_submission_fields(
        completed_at if completed_at is not None else existing.completed_at,
        existing.submission_note if note is _UNSET else note,
        existing.submission_media if media is _UNSET else media,
        now=now,
    )
    day = parsed.date().isoformat()
    current = now or db.utcnow()
    with _submitter_locks.get(_rate_limit_key(actor_id, existing.baby_id)), db.transaction() as conn:
        locked = db.fetch_collection(conn, collection_id)
        if locked is None or locked.verification_status in TERMINAL_STATUSES:
            raise AlreadyFinalized(f"badge collection {collection_id} is no longer pending")
        if day != locked.completed_at.date().isoformat():
            _check_rate_limit(conn, actor_id, existing.baby_id, day)
        db.save_collection_content(
            conn,
            collection_id,
            completed_at=parsed,
            note=new_note,
            media=items,
            now=current,
        )
        collection = db.fetch_collection(conn, collection_id)
    logger.info("badge submission updated", extra={"collection_id": collection_id, "submitter": actor_id})
    return collection


def _page(items: List[BadgeCollection], total: int, page: int, limit: int) -> CollectionPage:
    return CollectionPage(
        items=items,
        pagination=Pagination(page=page, limit=limit, total=total, has_next_page=page * limit < total),
    )


def list_baby_collections(
    baby_id: int,
    *,
    status: Optional[VerificationStatus] = None,
    page: int = 1,
    limit: int = 50,
) -> CollectionPage:
    family.get_baby(baby_id)
    items, total = db.list_collections(baby_id=baby_id, status=status, limit=limit, offset=(page - 1) * limit)
    return _page(items, total, page, limit)


def list_pending_verifications(*, page: int = 1, limit: int = 20) -> CollectionPage:
    items, total = db.list_collections(
        status=VerificationStatus.PENDING,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return _page(items, total, page, limit)


def list_my_submissions(
    user_id: str,
    *,
    status: Optional[VerificationStatus] = None,
    page: int = 1,
    limit: int = 20,
) -> CollectionPage:
    items, total = db.list_collections(parent_id=user_id, status=status, limit=limit, offset=(page - 1) * limit)
    return _page(items, total, page, limit)


def baby_badge_statistics(baby_id: int) -> BabyBadgeStatistics:
    family.get_baby(baby_id)
    by_status, by_category = db.collection_counts(baby_id)
    approved = by_status.get(VerificationStatus.APPROVED.value, 0)
    rejected = by_status.get(VerificationStatus.REJECTED.value, 0)
    auto_approved = by_status.get(VerificationStatus.AUTO_APPROVED.value, 0)
    total = sum(by_status.values())
    return BabyBadgeStatistics(
        baby_id=baby_id,
        total_badges=total,
        approved_badges=approved,
        pending_badges=by_status.get(VerificationStatus.PENDING.value, 0),
        rejected_badges=rejected,
        auto_approved_badges=auto_approved,
        category_distribution=by_category,
        completion_rate=round((approved + auto_approved) / total * 100, 2) if total else 0.0,
        verification_rate=round((approved + rejected) / total * 100, 2) if total else 0.0,
    )
