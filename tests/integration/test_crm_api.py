"""
Integration tests for the CRM API endpoints and health checks.
"""
from datetime import datetime, timezone

from backend.app.core.security import Role
from tests.data.crm_fixtures import make_customer, make_package


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


async def test_mapping_is_null_before_matching(client, make_profile, auth_headers):
    profile_id = await make_profile(display_name="Somchai Jaidee")

    response = await client.get("/api/crm/mapping", headers=auth_headers(profile_id))

    assert response.status_code == 200
    assert response.json() is None


async def test_match_then_mapping(client, crm_source, make_profile, auth_headers):
    crm_source.add_customer(make_customer("c1", name="Somchai Jaidee", phone="0812345678"))
    profile_id = await make_profile(display_name="Somchai Jaidee", phone_number="0812345678")
    headers = auth_headers(profile_id)

    response = await client.post("/api/crm/match", json={"profile_id": profile_id}, headers=headers)

    assert response.status_code == 200
    result = response.json()
    assert result["matched"] is True
    assert result["crm_customer_id"] == "c1"
    assert result["match_method"] == "auto_phone"

    mapping = (await client.get("/api/crm/mapping", params={"profile_id": profile_id}, headers=headers)).json()
    assert mapping["external_customer_id"] == "c1"
    assert mapping["generation"] == "v2_link"


async def test_match_without_matchable_data_returns_null(client, make_profile, auth_headers):
    profile_id = await make_profile(provider="guest")

    response = await client.post("/api/crm/match", json={"profile_id": profile_id}, headers=auth_headers(profile_id))

    assert response.status_code == 200
    assert response.json() is None


async def test_customers_cannot_touch_other_profiles(client, make_profile, auth_headers):
    own_id = await make_profile(display_name="Somchai Jaidee")
    other_id = await make_profile(display_name="Someone Else")
    headers = auth_headers(own_id)

    mapping = await client.get("/api/crm/mapping", params={"profile_id": other_id}, headers=headers)
    match = await client.post("/api/crm/match", json={"profile_id": other_id}, headers=headers)

    assert mapping.status_code == 403
    assert match.status_code == 403


async def test_admin_can_match_any_profile(client, crm_source, make_profile, auth_headers):
    crm_source.add_customer(make_customer("c1", name="Somchai Jaidee", phone="0812345678"))
    profile_id = await make_profile(display_name="Somchai Jaidee", phone_number="0812345678")

    response = await client.post(
        "/api/crm/match", json={"profile_id": profile_id}, headers=auth_headers("admin-1", role=Role.ADMIN)
    )

    assert response.status_code == 200
    assert response.json()["matched"] is True


async def test_match_unknown_profile(client, auth_headers):
    response = await client.post(
        "/api/crm/match", json={"profile_id": "missing"}, headers=auth_headers("admin-1", role=Role.ADMIN)
    )
    assert response.status_code == 404


async def test_sync_packages(client, crm_source, make_profile, auth_headers):
    crm_source.add_customer(make_customer("c1", name="Somchai Jaidee", phone="0812345678"))
    profile_id = await make_profile(display_name="Somchai Jaidee", phone_number="0812345678")
    headers = auth_headers(profile_id)

    unlinked = await client.post("/api/crm/sync-packages", headers=headers)
    assert unlinked.json() == {"profile_id": profile_id, "packages_synced": 0, "packages": []}

    await client.post("/api/crm/match", json={"profile_id": profile_id}, headers=headers)
    crm_source.add_package(make_package("pkg-1", "hash-c1"))

    response = await client.post("/api/crm/sync-packages", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["packages_synced"] == 1
    assert [p["crm_package_id"] for p in body["packages"]] == ["pkg-1"]
    assert body["packages"][0]["expiration_date"] == "2026-12-31"


async def test_admin_mapping_requires_admin_scope(client, make_profile, auth_headers):
    profile_id = await make_profile(display_name="Somchai Jaidee")

    response = await client.post(
        "/api/crm/admin/mapping",
        json={"profile_id": profile_id, "crm_customer_id": "c1"},
        headers=auth_headers(profile_id),
    )

    assert response.status_code == 403


async def test_admin_manual_link_and_unlink(client, crm_source, make_profile, auth_headers):
    crm_source.add_customer(make_customer("c1", name="Somchai Jaidee"))
    profile_id = await make_profile(display_name="S. J.")
    admin = auth_headers("admin-1", role=Role.ADMIN)

    linked = await client.post(
        "/api/crm/admin/mapping", json={"profile_id": profile_id, "crm_customer_id": "c1"}, headers=admin
    )
    assert linked.status_code == 200
    assert linked.json()["match_method"] == "manual"
    assert linked.json()["is_matched"] is True

    status = (await client.get("/api/vip/status", headers=auth_headers(profile_id))).json()
    assert status["status"] == "linked_matched"

    unlinked = await client.post(
        "/api/crm/admin/mapping",
        json={"profile_id": profile_id, "crm_customer_id": "c1", "is_matched": False},
        headers=admin,
    )
    assert unlinked.status_code == 200
    assert unlinked.json()["is_matched"] is False


async def test_admin_mapping_not_found_cases(client, make_profile, auth_headers):
    profile_id = await make_profile(display_name="Somchai Jaidee")
    admin = auth_headers("admin-1", role=Role.ADMIN)

    unknown_customer = await client.post(
        "/api/crm/admin/mapping", json={"profile_id": profile_id, "crm_customer_id": "ghost"}, headers=admin
    )
    unknown_pair = await client.post(
        "/api/crm/admin/mapping",
        json={"profile_id": profile_id, "crm_customer_id": "ghost", "is_matched": False},
        headers=admin,
    )

    assert unknown_customer.status_code == 404
    assert unknown_pair.status_code == 404


async def test_get_packages(client, crm_source, make_profile, auth_headers):
    crm_source.add_customer(make_customer("c1", name="Somchai Jaidee", phone="0812345678"))
    crm_source.add_package(make_package("pkg-1", "hash-c1"))
    profile_id = await make_profile(display_name="Somchai Jaidee", phone_number="0812345678")
    other_id = await make_profile(display_name="Nok Srisuk")
    headers = auth_headers(profile_id)
    await client.post("/api/crm/match", json={"profile_id": profile_id}, headers=headers)

    own = await client.get("/api/crm/packages", headers=headers)
    other = await client.get("/api/crm/packages", params={"profile_id": other_id}, headers=headers)

    assert own.status_code == 200
    assert own.json()["profile_id"] == profile_id
    assert [p["crm_package_id"] for p in own.json()["packages"]] == ["pkg-1"]
    assert other.status_code == 403


async def test_admin_reviews_recorded_candidates(client, crm_source, make_profile, auth_headers):
    crm_source.add_customer(make_customer("c1", name="Someone Else", email="a@b.com"))
    profile_id = await make_profile(email="a@b.com")
    admin = auth_headers("admin-1", role=Role.ADMIN)
    await client.post("/api/crm/match", json={"profile_id": profile_id}, headers=admin)

    listed = await client.get("/api/crm/admin/mappings", params={"profile_id": profile_id}, headers=admin)
    one = await client.get(
        "/api/crm/admin/mappings", params={"profile_id": profile_id, "crm_customer_id": "c1"}, headers=admin
    )
    none = await client.get(
        "/api/crm/admin/mappings", params={"profile_id": profile_id, "crm_customer_id": "c9"}, headers=admin
    )
    forbidden = await client.get(
        "/api/crm/admin/mappings", params={"profile_id": profile_id}, headers=auth_headers(profile_id)
    )

    assert listed.status_code == 200
    assert [(m["external_customer_id"], m["is_matched"]) for m in listed.json()] == [("c1", False)]
    assert listed.json()[0]["match_confidence"] == 0.5
    assert len(one.json()) == 1
    assert none.json() == []
    assert forbidden.status_code == 403


async def test_admin_crm_sync(client, crm_source, make_profile, auth_headers):
    crm_source.add_customer(make_customer(
        "c1", name="Somchai Jaidee", phone="0812345678", update_time=datetime(2026, 6, 1, tzinfo=timezone.utc)
    ))
    profile_id = await make_profile(display_name="Somchai Jaidee", phone_number="0812345678")
    admin = auth_headers("admin-1", role=Role.ADMIN)

    forbidden = await client.post("/api/crm/admin/sync", json={}, headers=auth_headers(profile_id))
    later = await client.post(
        "/api/crm/admin/sync", json={"updated_since": "2026-07-01T00:00:00Z"}, headers=admin
    )
    full = await client.post("/api/crm/admin/sync", headers=admin)

    assert forbidden.status_code == 403
    assert later.json()["total_crm_customers"] == 0
    assert full.status_code == 200
    assert full.json() == {
        "total_crm_customers": 1,
        "potential_matches": 1,
        "high_confidence_matches": 1,
        "linked": 1,
        "skipped_conflicts": 0,
    }
    status = (await client.get("/api/vip/status", headers=auth_headers(profile_id))).json()
    assert status["status"] == "linked_matched"
