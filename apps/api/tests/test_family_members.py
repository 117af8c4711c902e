from __future__ import annotations

import random
import threading

import pytest
from fastapi.testclient import TestClient

from app import family
from app.errors import EngineError, InvariantViolation, NotFound, PermissionDenied, ValidationError
from app.main import app
from app.schemas import (
    AddFamilyMemberPayload,
    Permission,
    PermissionUpdate,
    RelationType,
    UpdateBabyPayload,
    UpdateFamilyMemberPayload,
)
from nestling_helpers import auth_headers, reset_state

client = TestClient(app)


def _primary_ids(baby_id: int) -> set:
    return {member.user_id for member in family.list_primary_caregivers(baby_id)}


def test_creator_is_sole_primary_caregiver() -> None:
    reset_state()
    resp = client.post("/api/v1/babies", json={"name": "Ada", "birthDate": "2025-11-02"}, headers=auth_headers("mom"))
    assert resp.status_code == 200
    body = resp.json()
    assert body["name"] == "Ada"
    assert body["birthDate"] == "2025-11-02"
    assert len(body["familyMembers"]) == 1
    creator = body["familyMembers"][0]
    assert creator["userId"] == "mom"
    assert creator["relationType"] == "mother"
    assert creator["isPrimary"] is True
    assert creator["permissions"] == []

    listed = client.get("/api/v1/babies", headers=auth_headers("mom"))
    assert [baby["id"] for baby in listed.json()] == [body["id"]]
    assert client.get("/api/v1/babies", headers=auth_headers("stranger")).json() == []


def test_requests_without_token_are_rejected() -> None:
    reset_state()
    assert client.get("/api/v1/babies").status_code == 401
    bad = client.get("/api/v1/babies", headers={"Authorization": "Bearer not-a-jwt"})
    assert bad.status_code == 401


def test_add_member_and_reject_duplicates() -> None:
    reset_state()
    baby = family.create_baby("Ada", "mom")

    resp = client.post(
        f"/api/v1/babies/{baby.id}/family-members",
        json={"userId": "grandma", "relationType": "grandmother_maternal", "displayName": "Nana"},
        headers=auth_headers("mom"),
    )
    assert resp.status_code == 200
    members = {member["userId"]: member for member in resp.json()["familyMembers"]}
    assert members["grandma"]["displayName"] == "Nana"
    assert members["grandma"]["addedBy"] == "mom"
    assert members["grandma"]["isPrimary"] is False

    dup = client.post(
        f"/api/v1/babies/{baby.id}/family-members",
        json={"userId": "grandma", "relationType": "nanny"},
        headers=auth_headers("mom"),
    )
    assert dup.status_code == 422
    assert dup.json()["detail"]["error"] == "ValidationError"
    assert dup.json()["detail"]["field"] == "userId"


def test_unknown_permission_is_rejected_by_the_model() -> None:
    reset_state()
    baby = family.create_baby("Ada", "mom")
    resp = client.post(
        f"/api/v1/babies/{baby.id}/family-members",
        json={"userId": "aunt", "relationType": "aunt_paternal", "permissions": ["view", "launch_rockets"]},
        headers=auth_headers("mom"),
    )
    assert resp.status_code == 422
    assert len(family.list_members(baby.id)) == 1


def test_member_without_manage_family_cannot_add() -> None:
    reset_state()
    baby = family.create_baby("Ada", "mom")
    family.add_member(baby.id, "mom", AddFamilyMemberPayload(user_id="grandma", relation_type=RelationType.GRANDMOTHER_PATERNAL))

    resp = client.post(
        f"/api/v1/babies/{baby.id}/family-members",
        json={"userId": "cousin", "relationType": "other"},
        headers=auth_headers("grandma"),
    )
    assert resp.status_code == 403
    assert resp.json()["detail"]["error"] == "PermissionDenied"

    stranger = client.post(
        f"/api/v1/babies/{baby.id}/family-members",
        json={"userId": "cousin", "relationType": "other"},
        headers=auth_headers("stranger"),
    )
    assert stranger.status_code == 403


def test_demoting_the_only_primary_fails_and_changes_nothing() -> None:
    reset_state()
    baby = family.create_baby("Ada", "mom")
    family.add_member(baby.id, "mom", AddFamilyMemberPayload(user_id="dad", relation_type=RelationType.FATHER))
    before = family.list_members(baby.id)

    with pytest.raises(InvariantViolation):
        family.set_primary(baby.id, "mom", "mom", False)

    assert family.list_members(baby.id) == before

    resp = client.patch(
        f"/api/v1/babies/{baby.id}/family-members/mom",
        json={"isPrimary": False},
        headers=auth_headers("dad"),
    )
    assert resp.status_code == 409
    assert resp.json()["detail"] == {
        "error": "InvariantViolation",
        "message": "would leave zero primary caregivers",
        "field": "isPrimary",
    }
    assert family.list_members(baby.id) == before


def test_remove_rules() -> None:
    reset_state()
    baby = family.create_baby("Ada", "mom")
    family.add_member(baby.id, "mom", AddFamilyMemberPayload(user_id="dad", relation_type=RelationType.FATHER))
    family.add_member(baby.id, "mom", AddFamilyMemberPayload(user_id="nanny", relation_type=RelationType.NANNY))

    self_remove = client.delete(f"/api/v1/babies/{baby.id}/family-members/mom", headers=auth_headers("mom"))
    assert self_remove.status_code == 403

    last_primary = client.delete(f"/api/v1/babies/{baby.id}/family-members/mom", headers=auth_headers("dad"))
    assert last_primary.status_code == 409

    missing = client.delete(f"/api/v1/babies/{baby.id}/family-members/ghost", headers=auth_headers("mom"))
    assert missing.status_code == 404

    removed = client.delete(f"/api/v1/babies/{baby.id}/family-members/nanny", headers=auth_headers("mom"))
    assert removed.status_code == 200
    assert {member["userId"] for member in removed.json()["familyMembers"]} == {"mom", "dad"}

    family.set_primary(baby.id, "mom", "dad", True)
    family.remove_member(baby.id, "dad", "mom")
    assert _primary_ids(baby.id) == {"dad"}


def test_self_rename_is_allowed_but_self_promotion_is_not() -> None:
    reset_state()
    baby = family.create_baby("Ada", "mom")
    family.add_member(baby.id, "mom", AddFamilyMemberPayload(user_id="aunt", relation_type=RelationType.AUNT_MATERNAL))

    renamed = family.update_member(baby.id, "aunt", "aunt", UpdateFamilyMemberPayload(display_name="Auntie Jo"))
    aunt = next(member for member in renamed.family_members if member.user_id == "aunt")
    assert aunt.display_name == "Auntie Jo"

    with pytest.raises(PermissionDenied):
        family.update_member(
            baby.id,
            "aunt",
            "aunt",
            UpdateFamilyMemberPayload(permissions=[Permission.VIEW, Permission.MANAGE_FAMILY]),
        )


def test_relation_change_keeps_explicit_permissions() -> None:
    reset_state()
    baby = family.create_baby("Ada", "mom")
    family.add_member(
        baby.id,
        "mom",
        AddFamilyMemberPayload(user_id="sam", relation_type=RelationType.OTHER, permissions=[Permission.VIEW, Permission.EDIT]),
    )
    updated = family.update_member(baby.id, "mom", "sam", UpdateFamilyMemberPayload(relation_type=RelationType.GUARDIAN))
    sam = next(member for member in updated.family_members if member.user_id == "sam")
    assert sam.relation_type == RelationType.GUARDIAN
    assert sam.permissions == [Permission.VIEW, Permission.EDIT]


def test_bulk_permission_update_partitions_results() -> None:
    reset_state()
    baby = family.create_baby("Ada", "mom")
    family.add_member(baby.id, "mom", AddFamilyMemberPayload(user_id="nanny", relation_type=RelationType.NANNY))

    resp = client.post(
        f"/api/v1/babies/{baby.id}/family-members/bulk-permissions",
        json={
            "updates": [
                {"userId": "nanny", "permissions": ["view", "edit"]},
                {"userId": "ghost", "permissions": ["view"]},
            ]
        },
        headers=auth_headers("mom"),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["successful"] == ["nanny"]
    assert body["failed"][0]["userId"] == "ghost"
    assert body["failed"][0]["error"] == "NotFound"

    result = family.bulk_update_permissions(
        baby.id, "nanny", [PermissionUpdate(user_id="mom", permissions=[Permission.VIEW])]
    )
    assert result.successful == []
    assert result.failed[0].error == "PermissionDenied"


def test_permission_matrix_endpoint() -> None:
    reset_state()
    baby = family.create_baby("Ada", "mom")
    family.add_member(baby.id, "mom", AddFamilyMemberPayload(user_id="nanny", relation_type=RelationType.NANNY))

    resp = client.get(f"/api/v1/babies/{baby.id}/permissions", headers=auth_headers("mom"))
    assert resp.status_code == 200
    rows = {row["userId"]: row for row in resp.json()}
    assert rows["mom"]["canRemove"] is False
    assert rows["nanny"]["canRemove"] is True
    assert rows["nanny"]["permissions"] == ["upload_media", "view", "view_medical"]

    assert client.get(f"/api/v1/babies/{baby.id}/permissions", headers=auth_headers("stranger")).status_code == 403
    assert client.get("/api/v1/babies/9999", headers=auth_headers("mom")).status_code == 404

    primaries = client.get(f"/api/v1/babies/{baby.id}/primary-caregivers", headers=auth_headers("nanny"))
    assert [member["userId"] for member in primaries.json()] == ["mom"]


def test_random_mutation_sequences_keep_a_primary() -> None:
    reset_state()
    rng = random.Random(7)
    baby = family.create_baby("Ada", "u0")
    users = [f"u{i}" for i in range(6)]
    for user in users[1:]:
        family.add_member(
            baby.id,
            "u0",
            AddFamilyMemberPayload(user_id=user, relation_type=RelationType.GUARDIAN, is_primary=rng.random() < 0.3),
        )

    for _ in range(60):
        members = family.list_members(baby.id)
        actor = rng.choice(members).user_id
        target = rng.choice(users)
        op = rng.choice(["demote", "promote", "remove", "add"])
        try:
            if op == "demote":
                family.set_primary(baby.id, actor, target, False)
            elif op == "promote":
                family.set_primary(baby.id, actor, target, True)
            elif op == "remove":
                family.remove_member(baby.id, actor, target)
            else:
                family.add_member(
                    baby.id,
                    actor,
                    AddFamilyMemberPayload(user_id=target, relation_type=RelationType.GUARDIAN),
                )
        except EngineError:
            pass
        assert len(_primary_ids(baby.id)) >= 1


def test_concurrent_demotions_cannot_remove_every_primary() -> None:
    reset_state()
    baby = family.create_baby("Ada", "mom")
    family.add_member(
        baby.id,
        "mom",
        AddFamilyMemberPayload(user_id="dad", relation_type=RelationType.FATHER, is_primary=True),
    )
    barrier = threading.Barrier(2)
    outcomes = []

    def demote(actor: str, target: str) -> None:
        barrier.wait()
        try:
            family.set_primary(baby.id, actor, target, False)
            outcomes.append("ok")
        except InvariantViolation:
            outcomes.append("invariant")

    threads = [
        threading.Thread(target=demote, args=("mom", "dad")),
        threading.Thread(target=demote, args=("dad", "mom")),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["invariant", "ok"]
    assert len(_primary_ids(baby.id)) == 1


def test_missing_baby_raises_not_found() -> None:
    reset_state()
    with pytest.raises(NotFound):
        family.list_members(424242)
    with pytest.raises(ValidationError):
        family.create_baby("   ", "mom")


def test_baby_edit_needs_edit_and_delete_needs_delete() -> None:
    reset_state()
    baby = family.create_baby("Ada", "mom", birth_date="2025-11-02")
    family.add_member(baby.id, "mom", AddFamilyMemberPayload(user_id="grandma", relation_type=RelationType.GRANDMOTHER_MATERNAL))
    family.add_member(baby.id, "mom", AddFamilyMemberPayload(user_id="aunt", relation_type=RelationType.AUNT_MATERNAL))

    renamed = family.update_baby(baby.id, "grandma", UpdateBabyPayload(name="Ada Lovelace"))
    assert renamed.name == "Ada Lovelace"
    assert renamed.birth_date == "2025-11-02"

    with pytest.raises(PermissionDenied):
        family.update_baby(baby.id, "aunt", UpdateBabyPayload(name="Nope"))
    with pytest.raises(PermissionDenied):
        family.update_baby(baby.id, "stranger", UpdateBabyPayload(name="Nope"))
    with pytest.raises(ValidationError):
        family.update_baby(baby.id, "mom", UpdateBabyPayload(name="   "))
    assert family.get_baby(baby.id).name == "Ada Lovelace"

    with pytest.raises(PermissionDenied):
        family.delete_baby(baby.id, "grandma")
    family.delete_baby(baby.id, "mom")
    with pytest.raises(NotFound):
        family.get_baby(baby.id)
    with pytest.raises(NotFound):
        family.delete_baby(baby.id, "mom")
    assert family.list_babies_for_user("grandma") == []


def test_baby_edit_and_delete_endpoints() -> None:
    reset_state()
    created = client.post("/api/v1/babies", json={"name": "Ada"}, headers=auth_headers("mom")).json()
    family.add_member(created["id"], "mom", AddFamilyMemberPayload(user_id="aunt", relation_type=RelationType.AUNT_PATERNAL))
    url = f"/api/v1/babies/{created['id']}"

    patched = client.patch(url, json={"birthDate": "2025-12-01"}, headers=auth_headers("mom"))
    assert patched.status_code == 200
    assert patched.json()["birthDate"] == "2025-12-01"
    assert patched.json()["name"] == "Ada"

    assert client.patch(url, json={"name": "Bo"}, headers=auth_headers("aunt")).status_code == 403
    assert client.delete(url, headers=auth_headers("aunt")).status_code == 403
    assert client.patch("/api/v1/babies/999999", json={"name": "Bo"}, headers=auth_headers("mom")).status_code == 404

    deleted = client.delete(url, headers=auth_headers("mom"))
    assert deleted.status_code == 200
    assert deleted.json() == {"status": "ok"}
    assert client.get(url, headers=auth_headers("mom")).status_code == 404
