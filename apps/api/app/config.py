"""Application configuration utilities."""
from __future__ import annotations

import json
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class RateLimitScope(str, Enum):
    SUBMITTER = "submitter"
    SUBMITTER_BABY = "submitter_baby"


class AppConfig(BaseModel):
    """Strongly typed configuration loaded from config.json and the environment."""

    database_path: str = Field(default="./data/nestling.db")
    jwt_secret: str = Field(default="nestling-dev-secret-change-me-before-deploying")
    jwt_audience: Optional[str] = Field(default=None)

    daily_submission_limit: int = Field(default=20, ge=1)
    rate_limit_scope: RateLimitScope = Field(default=RateLimitScope.SUBMITTER)
    trusted_submitter_ids: List[str] = Field(
        default_factory=list,
        description="Submitters whose badge claims skip moderation (auto_approved).",
    )
    moderator_user_ids: List[str] = Field(default_factory=list)
    max_custom_badges_per_user: int = Field(default=50, ge=1)

    cache_ttl_week_minutes: float = Field(default=60)
    cache_ttl_important_minutes: float = Field(default=120)
    cache_ttl_trending_minutes: float = Field(default=30)
    cache_ttl_default_minutes: float = Field(default=30)
    badge_cache_ttl_minutes: float = Field(default=15)

    remote_timeout_seconds: float = Field(default=15.0, gt=0)

    @property
    def resolved_database_path(self) -> Path:
        """Return the absolute path for the SQLite database file."""
        path = Path(self.database_path)
        if path.is_absolute():
            return path
        return (Path(__file__).resolve().parents[1] / path).resolve()


_ENV_OVERRIDES = {
    "NESTLING_DATABASE_PATH": "database_path",
    "NESTLING_JWT_SECRET": "jwt_secret",
    "NESTLING_JWT_AUDIENCE": "jwt_audience",
    "NESTLING_RATE_LIMIT_SCOPE": "rate_limit_scope",
    "NESTLING_DAILY_SUBMISSION_LIMIT": "daily_submission_limit",
}

_LIST_ENV_OVERRIDES = {
    "NESTLING_MODERATOR_IDS": "moderator_user_ids",
    "NESTLING_TRUSTED_SUBMITTER_IDS": "trusted_submitter_ids",
}


def _config_path() -> Path:
    return Path(__file__).resolve().parents[1] / "config.json"


def load_config() -> AppConfig:
    """Load configuration from config.json (optional), then apply env overrides."""

    contents: Dict[str, Any] = {}
    config_file = _config_path()
    if config_file.exists():
        contents = json.loads(config_file.read_text())

    for env_name, field_name in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            contents[field_name] = value
    for env_name, field_name in _LIST_ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            contents[field_name] = [item.strip() for item in value.split(",") if item.strip()]

    return AppConfig(**contents)


CONFIG = load_config()
