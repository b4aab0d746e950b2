"""
Tests for the transaction endpoints.
"""

from datetime import timedelta

import pytest
from httpx import AsyncClient

from ticketing.core.security import ROLE_ORGANIZER

BASE = "/api/v1/transactions"


async def _register(client: AsyncClient, headers: dict, event_id: int, **extra) -> dict:
    response = await client.post(f"{BASE}/", json={"event_id": event_id, **extra}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


async def _pay(client: AsyncClient, headers: dict, transaction_id: int) -> dict:
    response = await client.post(
        f"{BASE}/{transaction_id}/payment-proof",
        json={"payment_proof": "https://bank.test/receipt.png"},
        headers=headers,
    )
    assert response.status_code == 200, response.text
    return response.json()


@pytest.mark.asyncio
async def test_create_transaction(client: AsyncClient, auth_headers, storage, test_event):
    """Successful registration holds the seats."""
    response = await client.post(
        f"{BASE}/",
        json={"event_id": test_event.id, "quantity": 2, "points_used": 10000},
        headers=auth_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["event_id"] == test_event.id
    assert data["quantity"] == 2
    assert data["status"] == "WAITING_PAYMENT"
    assert data["points_used"] == 10000
    assert data["final_amount"] == 990000
    assert data["payment_deadline"] is not None

    assert storage.event(test_event.id).available_seats == 98


@pytest.mark.asyncio
async def test_create_unauthenticated(client: AsyncClient, test_event):
    response = await client.post(f"{BASE}/", json={"event_id": test_event.id})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_with_bad_token(client: AsyncClient, test_event):
    response = await client.post(
        f"{BASE}/",
        json={"event_id": test_event.id},
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_sold_out(client: AsyncClient, auth_headers, sold_out_event):
    response = await client.post(f"{BASE}/", json={"event_id": sold_out_event.id}, headers=auth_headers)
    assert response.status_code == 409
    assert response.json()["code"] == "INSUFFICIENT_SEATS"


@pytest.mark.asyncio
async def test_create_duplicate(client: AsyncClient, auth_headers, test_event):
    """Duplicate registration is a 409 the client can tell apart from sold out."""
    await _register(client, auth_headers, test_event.id)

    response = await client.post(f"{BASE}/", json={"event_id": test_event.id}, headers=auth_headers)
    assert response.status_code == 409
    assert response.json()["code"] == "ALREADY_REGISTERED"


@pytest.mark.asyncio
async def test_create_nonexistent_event(client: AsyncClient, auth_headers):
    response = await client.post(f"{BASE}/", json={"event_id": 99999}, headers=auth_headers)
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_create_invalid_quantity(client: AsyncClient, auth_headers, test_event):
    response = await client.post(
        f"{BASE}/", json={"event_id": test_event.id, "quantity": 0}, headers=auth_headers
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_create_large_quantity(client: AsyncClient, auth_headers, storage, test_event):
    """Only available seats bound the quantity."""
    created = await _register(client, auth_headers, test_event.id, quantity=11)
    assert created["quantity"] == 11
    assert storage.event(test_event.id).available_seats == 89


@pytest.mark.asyncio
async def test_create_with_invalid_promotion(client: AsyncClient, auth_headers, test_event):
    response = await client.post(
        f"{BASE}/",
        json={"event_id": test_event.id, "promotion_code": "NOPE"},
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_PROMOTION"


@pytest.mark.asyncio
async def test_my_transactions(client: AsyncClient, auth_headers, test_event):
    await _register(client, auth_headers, test_event.id)

    response = await client.get(f"{BASE}/my-transactions", headers=auth_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["pagination"] == {
        "page": 1,
        "limit": 10,
        "total": 1,
        "pages": 1,
        "has_next": False,
        "has_prev": False,
    }
    item = body["data"][0]
    assert item["event_id"] == test_event.id
    assert item["can_cancel"] is True
    assert item["can_upload_payment"] is True
    assert item["is_expired"] is False
    assert item["can_review"] is False
    assert item["event_status"] == "UPCOMING"


@pytest.mark.asyncio
async def test_my_transactions_status_filter(client: AsyncClient, auth_headers, test_event):
    await _register(client, auth_headers, test_event.id)

    response = await client.get(f"{BASE}/my-transactions?status=DONE", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["data"] == []

    response = await client.get(f"{BASE}/my-transactions?status=BOGUS", headers=auth_headers)
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_my_transactions_review_after_event(
    client: AsyncClient, auth_headers, organizer_headers, clock, test_event
):
    created = await _register(client, auth_headers, test_event.id)
    await _pay(client, auth_headers, created["id"])
    await client.post(f"{BASE}/{created['id']}/accept", headers=organizer_headers)

    clock.now = test_event.start_date + timedelta(minutes=30)
    item = (await client.get(f"{BASE}/my-transactions", headers=auth_headers)).json()["data"][0]
    assert item["event_status"] == "ONGOING"
    assert item["can_review"] is False

    clock.now = test_event.end_date + timedelta(minutes=1)
    item = (await client.get(f"{BASE}/my-transactions", headers=auth_headers)).json()["data"][0]
    assert item["event_status"] == "ENDED"
    assert item["can_review"] is True


@pytest.mark.asyncio
async def test_my_tickets(client: AsyncClient, auth_headers, make_event, test_event):
    first = await _register(client, auth_headers, test_event.id, quantity=2)
    other_event = make_event(title="Jazz Night")
    second = await _register(client, auth_headers, other_event.id)
    await client.post(f"{BASE}/{first['id']}/cancel", headers=auth_headers)

    response = await client.get(f"{BASE}/my-tickets", headers=auth_headers)
    assert response.status_code == 200
    tickets = response.json()
    assert [t["id"] for t in tickets] == [second["id"], first["id"]]
    assert tickets[0]["event"]["title"] == "Jazz Night"
    assert tickets[0]["event"]["organizer_id"] == other_event.organizer_id
    assert tickets[1]["status"] == "CANCELLED"
    assert tickets[1]["quantity"] == 2
    assert all(t["can_review"] is False for t in tickets)


@pytest.mark.asyncio
async def test_my_tickets_only_own(client: AsyncClient, auth_headers, headers_for, storage, test_event):
    await _register(client, auth_headers, test_event.id)
    other = headers_for(storage.add_user())

    response = await client.get(f"{BASE}/my-tickets", headers=other)
    assert response.status_code == 200
    assert response.json() == []


@pytest.mark.asyncio
async def test_check_registration(client: AsyncClient, auth_headers, test_event):
    response = await client.get(f"{BASE}/check/{test_event.id}", headers=auth_headers)
    assert response.json() == {"event_id": test_event.id, "is_registered": False}

    await _register(client, auth_headers, test_event.id)

    response = await client.get(f"{BASE}/check/{test_event.id}", headers=auth_headers)
    assert response.json()["is_registered"] is True


@pytest.mark.asyncio
async def test_upload_payment_proof(client: AsyncClient, auth_headers, test_event):
    created = await _register(client, auth_headers, test_event.id)

    data = await _pay(client, auth_headers, created["id"])

    assert data["status"] == "WAITING_CONFIRMATION"
    assert data["payment_proof"].startswith("https://images.test/")
    assert data["confirmation_deadline"] is not None


@pytest.mark.asyncio
async def test_upload_after_deadline(client: AsyncClient, auth_headers, clock, storage, test_event):
    created = await _register(client, auth_headers, test_event.id)
    clock.advance(hours=2, seconds=1)

    response = await client.post(
        f"{BASE}/{created['id']}/payment-proof",
        json={"payment_proof": "https://bank.test/receipt.png"},
        headers=auth_headers,
    )
    assert response.status_code == 410
    assert response.json()["code"] == "PAYMENT_EXPIRED"
    assert storage.event(test_event.id).available_seats == 100


@pytest.mark.asyncio
async def test_upload_failure(client: AsyncClient, auth_headers, image_store, test_event):
    created = await _register(client, auth_headers, test_event.id)
    image_store.fail = True

    response = await client.post(
        f"{BASE}/{created['id']}/payment-proof",
        json={"payment_proof": "https://bank.test/receipt.png"},
        headers=auth_headers,
    )
    assert response.status_code == 502
    assert response.json()["code"] == "UPLOAD_FAILURE"


@pytest.mark.asyncio
async def test_cancel(client: AsyncClient, auth_headers, storage, test_event):
    created = await _register(client, auth_headers, test_event.id, quantity=3)

    response = await client.post(f"{BASE}/{created['id']}/cancel", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"
    assert response.json()["changed"] is True
    assert storage.event(test_event.id).available_seats == 100

    # Second cancel is a no-op
    response = await client.post(f"{BASE}/{created['id']}/cancel", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["changed"] is False
    assert storage.event(test_event.id).available_seats == 100


@pytest.mark.asyncio
async def test_cancel_by_organizer(client: AsyncClient, auth_headers, organizer_headers, test_event):
    created = await _register(client, auth_headers, test_event.id)

    response = await client.post(f"{BASE}/{created['id']}/cancel", headers=organizer_headers)
    assert response.status_code == 200
    assert response.json()["changed"] is True


@pytest.mark.asyncio
async def test_cancel_by_stranger(client: AsyncClient, auth_headers, headers_for, storage, test_event):
    created = await _register(client, auth_headers, test_event.id)
    stranger = headers_for(storage.add_user())

    response = await client.post(f"{BASE}/{created['id']}/cancel", headers=stranger)
    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"

    response = await client.post(f"{BASE}/{created['id']}/accept", headers=stranger)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_organizer_cannot_cancel_after_proof(
    client: AsyncClient, auth_headers, organizer_headers, admin_headers, storage, test_event
):
    """Once a proof is in, the organizer must accept or reject instead."""
    created = await _register(client, auth_headers, test_event.id)
    await _pay(client, auth_headers, created["id"])

    for headers in (organizer_headers, admin_headers):
        response = await client.post(f"{BASE}/{created['id']}/cancel", headers=headers)
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_TRANSITION"

    assert storage.event(test_event.id).available_seats == 99
    response = await client.get(f"{BASE}/{created['id']}", headers=auth_headers)
    assert response.json()["status"] == "WAITING_CONFIRMATION"

    # The owner still can
    response = await client.post(f"{BASE}/{created['id']}/cancel", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["changed"] is True


@pytest.mark.asyncio
async def test_accept_by_organizer(client: AsyncClient, auth_headers, organizer_headers, test_event):
    created = await _register(client, auth_headers, test_event.id)
    await _pay(client, auth_headers, created["id"])

    response = await client.post(f"{BASE}/{created['id']}/accept", headers=organizer_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "DONE"


@pytest.mark.asyncio
async def test_accept_by_customer_forbidden(client: AsyncClient, auth_headers, test_event):
    created = await _register(client, auth_headers, test_event.id)
    await _pay(client, auth_headers, created["id"])

    response = await client.post(f"{BASE}/{created['id']}/accept", headers=auth_headers)
    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_accept_before_payment(client: AsyncClient, auth_headers, admin_headers, test_event):
    created = await _register(client, auth_headers, test_event.id)

    response = await client.post(f"{BASE}/{created['id']}/accept", headers=admin_headers)
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_TRANSITION"


@pytest.mark.asyncio
async def test_reject_by_admin(client: AsyncClient, auth_headers, admin_headers, storage, customer, test_event):
    created = await _register(client, auth_headers, test_event.id, points_used=5000)
    await _pay(client, auth_headers, created["id"])

    response = await client.post(f"{BASE}/{created['id']}/reject", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "REJECTED"
    assert response.json()["changed"] is True
    assert storage.user(customer.id).points == 20000

    response = await client.post(f"{BASE}/{created['id']}/reject", headers=admin_headers)
    assert response.json()["changed"] is False
    assert storage.user(customer.id).points == 20000


@pytest.mark.asyncio
async def test_get_transaction_visibility(
    client: AsyncClient, auth_headers, organizer_headers, headers_for, storage, test_event
):
    created = await _register(client, auth_headers, test_event.id)
    url = f"{BASE}/{created['id']}"

    assert (await client.get(url, headers=auth_headers)).status_code == 200
    assert (await client.get(url, headers=organizer_headers)).status_code == 200

    stranger = headers_for(storage.add_user())
    assert (await client.get(url, headers=stranger)).status_code == 404


@pytest.mark.asyncio
async def test_event_transactions(client: AsyncClient, auth_headers, organizer_headers, headers_for, storage, test_event):
    await _register(client, auth_headers, test_event.id)

    response = await client.get(f"{BASE}/event/{test_event.id}", headers=organizer_headers)
    assert response.status_code == 200
    assert len(response.json()) == 1

    other_organizer = headers_for(storage.add_user(), ROLE_ORGANIZER)
    response = await client.get(f"{BASE}/event/{test_event.id}", headers=other_organizer)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_endpoints(client: AsyncClient, auth_headers, admin_headers, test_event):
    await _register(client, auth_headers, test_event.id)

    response = await client.get(f"{BASE}/admin/all", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["pagination"]["total"] == 1
    assert len(response.json()["data"]) == 1

    response = await client.get(f"{BASE}/admin/stats", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["total"] == 1
    assert response.json()["WAITING_PAYMENT"] == 1


@pytest.mark.asyncio
async def test_admin_endpoints_require_admin(client: AsyncClient, auth_headers):
    assert (await client.get(f"{BASE}/admin/all", headers=auth_headers)).status_code == 403
    assert (await client.get(f"{BASE}/admin/stats", headers=auth_headers)).status_code == 403


@pytest.mark.asyncio
async def test_health_and_metrics(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.headers["X-Request-ID"]

    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "transaction_attempts_total" in response.text
