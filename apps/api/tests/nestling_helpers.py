from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict

import jwt

from app.badge_catalog import catalog_cache
from app.config import CONFIG
from app.db import get_connection, initialize_db
from app.reference_content import content_cache

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
MODERATOR = "moderator-1"


def reset_state() -> None:
    initialize_db()
    with get_connection() as conn:
        for table in ["badge_collections", "badges", "family_members", "babies", "care_tips"]:
            conn.execute(f"DELETE FROM {table}")
        conn.commit()
    catalog_cache.clear()
    content_cache.clear()


def auth_headers(user_id: str) -> Dict[str, str]:
    token = jwt.encode({"sub": user_id}, CONFIG.jwt_secret, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


def image(size: int = 1024, mime: str = "image/jpeg", name: str = "photo") -> dict:
    return {"url": f"https://cdn.example.com/{name}.jpg", "type": mime, "size": size}
