from datetime import datetime, timedelta, timezone

import pytest

CLIENT_ID = 1
PROFESSIONAL_ID = 2


def _body(**overrides):
    body = {
        "professional_id": PROFESSIONAL_ID,
        "description": "Fix leak",
        "address": "Av X",
        "district": "Lima",
        "service_date": (datetime.now(timezone.utc) + timedelta(days=1)).isoformat(),
    }
    body.update(overrides)
    return body


async def _create(client, auth_headers, client_id=CLIENT_ID, **overrides):
    resp = await client.post(
        "/api/v1/service-requests",
        json=_body(**overrides),
        headers=auth_headers(client_id, "CLIENT"),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_create_request_uses_token_client_id(client, auth_headers):
    resp = await client.post(
        "/api/v1/service-requests",
        json={**_body(), "client_id": 999},
        headers=auth_headers(CLIENT_ID, "CLIENT"),
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["client_id"] == CLIENT_ID
    assert data["state"] == "pending"
    assert data["active"] is True
    assert data["request_code"].startswith("SR-")
    assert data["available_events"] == ["cancel"]


@pytest.mark.asyncio
async def test_duplicate_request_conflict(client, auth_headers):
    await _create(client, auth_headers)

    resp = await client.post(
        "/api/v1/service-requests",
        json=_body(),
        headers=auth_headers(CLIENT_ID, "CLIENT"),
    )
    assert resp.status_code == 409
    assert resp.json()["kind"] == "duplicate_request"


@pytest.mark.asyncio
async def test_validation_error_names_field(client, auth_headers):
    resp = await client.post(
        "/api/v1/service-requests",
        json=_body(description=""),
        headers=auth_headers(CLIENT_ID, "CLIENT"),
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["kind"] == "validation_error"
    assert body["field"] == "description"


@pytest.mark.asyncio
async def test_oversized_budget_is_bad_request(client, auth_headers):
    resp = await client.post(
        "/api/v1/service-requests",
        json=_body(estimated_budget=1e15),
        headers=auth_headers(CLIENT_ID, "CLIENT"),
    )
    assert resp.status_code == 400
    assert resp.json()["field"] == "estimated_budget"


@pytest.mark.asyncio
async def test_professional_cannot_create(client, auth_headers):
    resp = await client.post(
        "/api/v1/service-requests",
        json=_body(),
        headers=auth_headers(PROFESSIONAL_ID, "PROFESSIONAL"),
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_missing_or_bad_token_rejected(client):
    resp = await client.get("/api/v1/service-requests")
    assert resp.status_code == 401

    resp = await client.get("/api/v1/service-requests", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_list_by_role(client, auth_headers):
    first = await _create(client, auth_headers, professional_id=PROFESSIONAL_ID)
    second = await _create(client, auth_headers, professional_id=3)

    resp = await client.get("/api/v1/service-requests", headers=auth_headers(CLIENT_ID, "CLIENT"))
    assert resp.status_code == 200
    assert [item["id"] for item in resp.json()["items"]] == [second["id"], first["id"]]
    assert resp.json()["total"] == 2

    resp = await client.get("/api/v1/service-requests", headers=auth_headers(PROFESSIONAL_ID, "PROFESSIONAL"))
    items = resp.json()["items"]
    assert [item["id"] for item in items] == [first["id"]]
    assert items[0]["available_events"] == ["accept", "reject"]


@pytest.mark.asyncio
async def test_accept_then_complete(client, auth_headers):
    created = await _create(client, auth_headers)
    pro = auth_headers(PROFESSIONAL_ID, "PROFESSIONAL")

    resp = await client.post(
        f"/api/v1/service-requests/{created['id']}/transitions", json={"event": "accept"}, headers=pro
    )
    assert resp.status_code == 200
    assert resp.json()["state"] == "accepted"
    assert resp.json()["responded_at"] is not None

    resp = await client.post(
        f"/api/v1/service-requests/{created['id']}/transitions", json={"event": "complete"}, headers=pro
    )
    assert resp.status_code == 200
    assert resp.json()["state"] == "completed"
    assert resp.json()["available_events"] == []


@pytest.mark.asyncio
async def test_cancel_after_accept_conflict(client, auth_headers):
    created = await _create(client, auth_headers)
    await client.post(
        f"/api/v1/service-requests/{created['id']}/transitions",
        json={"event": "accept"},
        headers=auth_headers(PROFESSIONAL_ID, "PROFESSIONAL"),
    )

    resp = await client.post(
        f"/api/v1/service-requests/{created['id']}/cancel",
        headers=auth_headers(CLIENT_ID, "CLIENT"),
    )
    assert resp.status_code == 409
    assert resp.json()["kind"] == "invalid_transition"


@pytest.mark.asyncio
async def test_non_owner_cancel_forbidden(client, auth_headers):
    created = await _create(client, auth_headers)

    resp = await client.post(
        f"/api/v1/service-requests/{created['id']}/cancel",
        headers=auth_headers(99, "CLIENT"),
    )
    assert resp.status_code == 403
    assert resp.json()["kind"] == "not_owner"


@pytest.mark.asyncio
async def test_cancel_hides_request_but_detail_remains(client, auth_headers):
    created = await _create(client, auth_headers)
    headers = auth_headers(CLIENT_ID, "CLIENT")

    resp = await client.post(f"/api/v1/service-requests/{created['id']}/cancel", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["active"] is False

    listing = await client.get("/api/v1/service-requests", headers=headers)
    assert listing.json()["items"] == []

    detail = await client.get(f"/api/v1/service-requests/{created['id']}", headers=headers)
    assert detail.status_code == 200
    assert detail.json()["state"] == "cancelled"


@pytest.mark.asyncio
async def test_detail_restricted_to_parties(client, auth_headers):
    created = await _create(client, auth_headers)

    resp = await client.get(
        f"/api/v1/service-requests/{created['id']}", headers=auth_headers(3, "PROFESSIONAL")
    )
    assert resp.status_code == 403

    resp = await client.get("/api/v1/service-requests/999999", headers=auth_headers(CLIENT_ID, "CLIENT"))
    assert resp.status_code == 404
    assert resp.json()["kind"] == "not_found"


@pytest.mark.asyncio
async def test_unknown_event_is_bad_request(client, auth_headers):
    created = await _create(client, auth_headers)

    resp = await client.post(
        f"/api/v1/service-requests/{created['id']}/transitions",
        json={"event": "approve"},
        headers=auth_headers(PROFESSIONAL_ID, "PROFESSIONAL"),
    )
    assert resp.status_code == 400
    assert resp.json()["field"] == "event"


@pytest.mark.asyncio
async def test_pending_count(client, auth_headers):
    await _create(client, auth_headers, client_id=1)
    await _create(client, auth_headers, client_id=4)

    resp = await client.get(
        "/api/v1/service-requests/pending/count", headers=auth_headers(PROFESSIONAL_ID, "PROFESSIONAL")
    )
    assert resp.status_code == 200
    assert resp.json() == {"professional_id": PROFESSIONAL_ID, "count": 2}

    resp = await client.get("/api/v1/service-requests/pending/count", headers=auth_headers(CLIENT_ID, "CLIENT"))
    assert resp.status_code == 403
