"""Pydantic schemas shared across the API."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RelationType(str, Enum):
    MOTHER = "mother"
    FATHER = "father"
    GRANDMOTHER_MATERNAL = "grandmother_maternal"
    GRANDFATHER_MATERNAL = "grandfather_maternal"
    GRANDMOTHER_PATERNAL = "grandmother_paternal"
    GRANDFATHER_PATERNAL = "grandfather_paternal"
    AUNT_MATERNAL = "aunt_maternal"
    UNCLE_MATERNAL = "uncle_maternal"
    AUNT_PATERNAL = "aunt_paternal"
    UNCLE_PATERNAL = "uncle_paternal"
    STEPMOTHER = "stepmother"
    STEPFATHER = "stepfather"
    GUARDIAN = "guardian"
    NANNY = "nanny"
    OTHER = "other"


class Permission(str, Enum):
    VIEW = "view"
    VIEW_MEDICAL = "view_medical"
    EDIT = "edit"
    EDIT_MEDICAL = "edit_medical"
    DELETE = "delete"
    MANAGE_FAMILY = "manage_family"
    UPLOAD_MEDIA = "upload_media"
    VIEW_ANALYTICS = "view_analytics"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    AUTO_APPROVED = "auto_approved"


TERMINAL_STATUSES = frozenset(
    {VerificationStatus.APPROVED, VerificationStatus.REJECTED, VerificationStatus.AUTO_APPROVED}
)


class VerificationAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class BadgeCategory(str, Enum):
    MILESTONE = "milestone"
    DAILY_LIFE = "daily_life"
    SOCIAL = "social"
    PHYSICAL = "physical"
    COGNITIVE = "cognitive"
    MOTOR_SKILLS = "motor_skills"
    EMOTIONAL = "emotional"
    LANGUAGE = "language"
    FEEDING = "feeding"
    SLEEPING = "sleeping"
    HEALTH = "health"
    SAFETY = "safety"
    PLAY = "play"
    CREATIVITY = "creativity"
    MUSIC = "music"
    NATURE = "nature"
    FAMILY = "family"
    CULTURAL = "cultural"
    SEASONAL = "seasonal"
    CUSTOM = "custom"


class BadgeDifficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXPERT = "expert"


class CareImportance(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FamilyMember(WireModel):
    user_id: str
    relation_type: RelationType
    display_name: Optional[str] = None
    is_primary: bool = False
    permissions: List[Permission] = Field(
        default_factory=list,
        description="Explicit permission set; empty means derive from relation_type.",
    )
    added_at: datetime
    added_by: Optional[str] = None


class Baby(WireModel):
    id: int
    name: str
    birth_date: Optional[str] = None
    family_members: List[FamilyMember] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class Badge(WireModel):
    id: int
    title: str
    description: str = ""
    instruction: str = ""
    category: BadgeCategory
    difficulty: BadgeDifficulty
    min_age: Optional[int] = Field(default=None, ge=0, description="Months")
    max_age: Optional[int] = Field(default=None, ge=0, description="Months")
    is_active: bool = True
    is_custom: bool = False
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class MediaItem(WireModel):
    url: str
    type: str = Field(description="MIME type, e.g. image/jpeg")
    size: int = Field(ge=0, description="Size in bytes")


class BadgeCollection(WireModel):
    id: int
    baby_id: int
    badge_id: int
    parent_id: str = Field(description="User id of the submitting caregiver")
    completed_at: datetime
    submission_note: Optional[str] = None
    submission_media: List[MediaItem] = Field(default_factory=list)
    verification_status: VerificationStatus
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    verification_note: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class CareTip(WireModel):
    id: int
    title: str
    content: str = ""
    category: str
    importance: CareImportance = CareImportance.MEDIUM
    week_start: int
    week_end: int
    view_count: int = 0
    is_active: bool = True
    created_at: datetime


class Pagination(WireModel):
    page: int
    limit: int
    total: int
    has_next_page: bool


class CareTipPage(WireModel):
    items: List[CareTip]
    pagination: Pagination


class BatchFailure(WireModel):
    id: Any
    error: str
    message: Optional[str] = None


class BatchVerifyResult(WireModel):
    successful: List[BadgeCollection] = Field(default_factory=list)
    failed: List[BatchFailure] = Field(default_factory=list)


class MemberFailure(WireModel):
    user_id: str
    error: str
    message: Optional[str] = None


class BulkPermissionsResult(WireModel):
    successful: List[str] = Field(default_factory=list)
    failed: List[MemberFailure] = Field(default_factory=list)


class MemberAccess(WireModel):
    user_id: str
    permissions: List[Permission]
    can_edit: bool
    can_remove: bool


class BabyBadgeStatistics(WireModel):
    baby_id: int
    total_badges: int
    approved_badges: int
    pending_badges: int
    rejected_badges: int
    auto_approved_badges: int
    category_distribution: Dict[str, int] = Field(default_factory=dict)
    completion_rate: float = 0.0
    verification_rate: float = 0.0


class CollectionPage(WireModel):
    items: List[BadgeCollection]
    pagination: Pagination


class CreateBabyPayload(WireModel):
    name: str = Field(min_length=1)
    birth_date: Optional[str] = None
    relation_type: RelationType = RelationType.MOTHER
    display_name: Optional[str] = None


class UpdateBabyPayload(WireModel):
    name: Optional[str] = Field(default=None, min_length=1)
    birth_date: Optional[str] = None


class AddFamilyMemberPayload(WireModel):
    user_id: str = Field(min_length=1)
    relation_type: RelationType
    display_name: Optional[str] = None
    is_primary: bool = False
    permissions: Optional[List[Permission]] = None


class UpdateFamilyMemberPayload(WireModel):
    relation_type: Optional[RelationType] = None
    display_name: Optional[str] = None
    is_primary: Optional[bool] = None
    permissions: Optional[List[Permission]] = None


class PermissionUpdate(WireModel):
    user_id: str
    permissions: List[Permission]


class BulkPermissionsPayload(WireModel):
    updates: List[PermissionUpdate]


class CreateBadgePayload(WireModel):
    title: str = Field(min_length=1)
    description: str = ""
    instruction: str = ""
    category: BadgeCategory
    difficulty: BadgeDifficulty = BadgeDifficulty.EASY
    min_age: Optional[int] = Field(default=None, ge=0)
    max_age: Optional[int] = Field(default=None, ge=0)
    is_active: bool = True


class SubmitBadgePayload(WireModel):
    baby_id: int
    badge_id: int
    completed_at: str
    submission_note: Optional[str] = None
    submission_media: Optional[List[MediaItem]] = None


class UpdateSubmissionPayload(WireModel):
    completed_at: Optional[str] = None
    submission_note: Optional[str] = None
    submission_media: Optional[List[MediaItem]] = None


class VerifyBadgePayload(WireModel):
    action: VerificationAction
    verification_note: Optional[str] = None


class BatchVerifyPayload(WireModel):
    collection_ids: List[int] = Field(min_length=1)
    action: VerificationAction
    verification_note: Optional[str] = None


class CreateCareTipPayload(WireModel):
    title: str = Field(min_length=1)
    content: str = ""
    category: str = Field(min_length=1)
    importance: CareImportance = CareImportance.MEDIUM
    week_start: int = Field(ge=1, le=42)
    week_end: int = Field(ge=1, le=42)
