from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app import badge_catalog
from app.config import CONFIG
from app.db import get_connection
from app.cache import TimeBoundedCache
from app.errors import InvariantViolation, NotFound, ValidationError
from app.main import app
from app.schemas import BadgeCategory, BadgeDifficulty, CreateBadgePayload
from nestling_helpers import MODERATOR, auth_headers, reset_state

client = TestClient(app)


def _badge(title: str, category: BadgeCategory, **kwargs):
    return badge_catalog.create_badge(CreateBadgePayload(title=title, category=category, **kwargs))


def test_list_filters_by_category_difficulty_and_age() -> None:
    reset_state()
    smile = _badge("First smile", BadgeCategory.MILESTONE, min_age=1, max_age=4)
    crawl = _badge("Crawling", BadgeCategory.MOTOR_SKILLS, difficulty=BadgeDifficulty.HARD, min_age=6, max_age=10)
    _badge("Retired", BadgeCategory.MILESTONE, is_active=False)

    assert [badge.id for badge in badge_catalog.list_badges()] == [smile.id, crawl.id]
    assert [badge.id for badge in badge_catalog.list_badges(category=BadgeCategory.MILESTONE)] == [smile.id]
    assert [badge.id for badge in badge_catalog.list_badges(difficulty=BadgeDifficulty.HARD)] == [crawl.id]
    assert [badge.id for badge in badge_catalog.list_badges(age_months=7)] == [crawl.id]
    assert len(badge_catalog.list_badges(include_inactive=True)) == 3


def test_reads_are_cached_and_writes_invalidate() -> None:
    reset_state()
    smile = _badge("First smile", BadgeCategory.MILESTONE)
    assert badge_catalog.get_badge(smile.id).title == "First smile"
    assert len(badge_catalog.list_badges()) == 1

    with get_connection() as conn:
        conn.execute("UPDATE badges SET title = ? WHERE id = ?", ("Changed behind the cache", smile.id))
        conn.commit()
    assert badge_catalog.get_badge(smile.id).title == "First smile"

    _badge("Bath time", BadgeCategory.DAILY_LIFE)
    assert len(badge_catalog.list_badges()) == 2
    assert badge_catalog.get_badge(smile.id).title == "Changed behind the cache"


def test_catalog_errors() -> None:
    reset_state()
    with pytest.raises(NotFound):
        badge_catalog.get_badge(123456)
    with pytest.raises(ValidationError):
        _badge("Backwards", BadgeCategory.CUSTOM, min_age=12, max_age=3)


def test_badge_endpoints(monkeypatch) -> None:
    reset_state()
    monkeypatch.setattr(CONFIG, "moderator_user_ids", [MODERATOR])

    system = client.post(
        "/api/v1/badges",
        json={"title": "Peekaboo", "category": "play", "difficulty": "easy", "minAge": 4},
        headers=auth_headers(MODERATOR),
    )
    assert system.status_code == 200
    assert system.json()["isCustom"] is False
    assert system.json()["minAge"] == 4

    custom = client.post(
        "/api/v1/badges",
        json={"title": "Met grandpa", "category": "family"},
        headers=auth_headers("mom"),
    )
    assert custom.json()["isCustom"] is True
    assert custom.json()["createdBy"] == "mom"

    unknown = client.post(
        "/api/v1/badges",
        json={"title": "Bad", "category": "astronaut"},
        headers=auth_headers("mom"),
    )
    assert unknown.status_code == 422

    listed = client.get("/api/v1/badges", params={"category": "play"}, headers=auth_headers("mom"))
    assert [badge["title"] for badge in listed.json()] == ["Peekaboo"]

    one = client.get(f"/api/v1/badges/{custom.json()['id']}", headers=auth_headers("dad"))
    assert one.json()["category"] == "family"
    assert client.get("/api/v1/badges/999999", headers=auth_headers("dad")).status_code == 404


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_expired_catalog_entries_are_swept_on_read(monkeypatch) -> None:
    reset_state()
    clock = FakeClock()
    cache = TimeBoundedCache(clock=clock)
    monkeypatch.setattr(badge_catalog, "catalog_cache", cache)
    _badge("First smile", BadgeCategory.MILESTONE)

    for age in range(30):
        badge_catalog.list_badges(age_months=age)
    assert len(cache) == 30

    clock.now += CONFIG.badge_cache_ttl_minutes * 60
    badge_catalog.list_badges(age_months=0)
    assert len(cache) == 1


def test_age_filter_is_bounded() -> None:
    reset_state()
    ok = client.get("/api/v1/badges", params={"age_months": badge_catalog.MAX_AGE_MONTHS}, headers=auth_headers("mom"))
    assert ok.status_code == 200
    too_old = client.get("/api/v1/badges", params={"age_months": 5000}, headers=auth_headers("mom"))
    assert too_old.status_code == 422


def test_custom_badges_are_capped_per_user(monkeypatch) -> None:
    reset_state()
    monkeypatch.setattr(CONFIG, "max_custom_badges_per_user", 2)
    monkeypatch.setattr(CONFIG, "moderator_user_ids", [MODERATOR])
    payload = CreateBadgePayload(title="Met grandpa", category=BadgeCategory.FAMILY)
    badge_catalog.create_badge(payload, created_by="mom", is_custom=True)
    badge_catalog.create_badge(payload, created_by="mom", is_custom=True)

    with pytest.raises(InvariantViolation):
        badge_catalog.create_badge(payload, created_by="mom", is_custom=True)
    assert badge_catalog.create_badge(payload, created_by="dad", is_custom=True).created_by == "dad"
    assert badge_catalog.create_badge(payload, created_by=MODERATOR).is_custom is False

    over_http = client.post("/api/v1/badges", json={"title": "One more", "category": "family"}, headers=auth_headers("mom"))
    assert over_http.status_code == 409
    assert over_http.json()["detail"]["error"] == "InvariantViolation"
