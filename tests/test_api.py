"""
HTTP API Tests

Drives the FastAPI app in-process through httpx with the services wired
to an in-memory gateway.

Tests:
  1. Auth flow: register, login, refresh rotation, replay detection, logout
  2. Orders: placement with money as strings, reads, status workflow
  3. Error envelopes: 400 validation, 401, 403, 404
  4. Maintenance endpoint is admin-only
"""
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from foodhub.main import app
from foodhub.services import get_services
from foodhub.storage.base import PageRequest, RefreshTokenFilter

from tests.conftest import PASSWORD


@pytest_asyncio.fixture
async def client(services):
    app.dependency_overrides[get_services] = lambda: services
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _login(client, email) -> dict:
    response = await client.post(
        "/api/auth/login",
        json={"email": email, "password": PASSWORD},
        headers={"User-Agent": "pytest"},
    )
    assert response.status_code == 200, response.text
    return response.json()["data"]["tokens"]


def _bearer(tokens) -> dict:
    return {"Authorization": f"Bearer {tokens['access_token']}"}


# ─── Auth ──────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_register_returns_user_and_tokens(client):
    response = await client.post(
        "/api/auth/register",
        json={"email": "Ana@Example.com", "password": "Secret123", "name": "Ana"},
    )

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["success"] is True
    assert body["data"]["user"]["email"] == "ana@example.com"
    assert "password_hash" not in body["data"]["user"]
    assert body["data"]["tokens"]["token_type"] == "bearer"


@pytest.mark.asyncio
async def test_register_weak_password_is_validation_error(client):
    response = await client.post(
        "/api/auth/register",
        json={"email": "weak@example.com", "password": "alllowercase", "name": "Weak"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "validation_error"
    assert any(d["field"] == "password" for d in body["details"])


@pytest.mark.asyncio
async def test_register_duplicate_is_conflict(client, world):
    response = await client.post(
        "/api/auth/register",
        json={"email": "customer@example.com", "password": "Secret123", "name": "Dup"},
    )

    assert response.status_code == 409
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_wrong_password_is_unauthorized(client, world):
    response = await client.post(
        "/api/auth/login",
        json={"email": "customer@example.com", "password": "nope"},
    )

    assert response.status_code == 401
    assert response.json()["error"] == "Invalid email or password"


@pytest.mark.asyncio
async def test_login_with_oversized_user_agent(client, gateway, world):
    response = await client.post(
        "/api/auth/login",
        json={"email": "customer@example.com", "password": PASSWORD},
        headers={"User-Agent": "a" * 300},
    )

    assert response.status_code == 200, response.text
    async with gateway.transaction() as uow:
        page = await uow.refresh_tokens.list(
            RefreshTokenFilter(user_id=world.customer.id), PageRequest()
        )
    assert page.items[0].device_info == "a" * 255


@pytest.mark.asyncio
async def test_refresh_rotation_and_replay(client, world):
    tokens = await _login(client, "customer@example.com")

    rotated = await client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert rotated.status_code == 200, rotated.text
    new_tokens = rotated.json()["data"]["tokens"]
    assert new_tokens["refresh_token"] != tokens["refresh_token"]

    replayed = await client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert replayed.status_code == 401
    assert replayed.json()["code"] == "session_revoked"

    # The rotated token was revoked along with everything else
    after = await client.post("/api/auth/refresh", json={"refresh_token": new_tokens["refresh_token"]})
    assert after.status_code == 401


@pytest.mark.asyncio
async def test_garbage_refresh_token_is_generic_401(client):
    response = await client.post("/api/auth/refresh", json={"refresh_token": "garbage"})

    assert response.status_code == 401
    assert response.json()["error"] == "Invalid or expired refresh token"


@pytest.mark.asyncio
async def test_logout_and_logout_all(client, world):
    first = await _login(client, "customer@example.com")
    await _login(client, "customer@example.com")

    response = await client.post(
        "/api/auth/logout",
        json={"refresh_token": first["refresh_token"]},
        headers=_bearer(first),
    )
    assert response.status_code == 200
    assert response.json()["message"] == "Logged out successfully"

    response = await client.post("/api/auth/logout-all", headers=_bearer(first))
    assert response.status_code == 200
    assert response.json()["data"]["revoked_tokens_count"] == 1


@pytest.mark.asyncio
async def test_google_login_creates_account(client):
    response = await client.post(
        "/api/auth/google",
        json={"email": "g@example.com", "google_id": "google-1", "name": "G User"},
    )

    assert response.status_code == 200, response.text
    assert response.json()["message"] == "Registration and login successful"


# ─── Orders ────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_place_order_returns_money_as_strings(client, world):
    tokens = await _login(client, "customer@example.com")

    response = await client.post(
        "/api/orders",
        json={
            "restaurant_id": world.restaurant_id,
            "items": [
                {"dish_id": world.pizza_id, "quantity": 2},
                {"dish_id": world.salad_id, "quantity": 1, "special_instructions": "No onions"},
            ],
            "delivery_address": "1 Main St",
        },
        headers=_bearer(tokens),
    )

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["message"] == "Order placed successfully"
    order = body["data"]
    assert order["status"] == "pending"
    assert order["subtotal"] == "25.00"
    assert order["service_charge"] == "1.35"
    assert order["tax_amount"] == "2.84"
    assert order["total_amount"] == "31.19"
    assert order["order_number"].startswith("ORD-")
    assert len(order["items"]) == 2
    assert order["restaurant"]["name"] == "Trattoria"


@pytest.mark.asyncio
async def test_place_order_requires_authentication(client, world):
    response = await client.post(
        "/api/orders",
        json={
            "restaurant_id": world.restaurant_id,
            "items": [{"dish_id": world.pizza_id, "quantity": 1}],
            "delivery_address": "1 Main St",
        },
    )

    assert response.status_code == 401
    assert response.json()["error"] == "Authentication required"


@pytest.mark.asyncio
async def test_place_order_validation(client, world):
    tokens = await _login(client, "customer@example.com")

    response = await client.post(
        "/api/orders",
        json={"restaurant_id": world.restaurant_id, "items": [], "delivery_address": ""},
        headers=_bearer(tokens),
    )

    assert response.status_code == 400
    fields = {d["field"] for d in response.json()["details"]}
    assert {"items", "delivery_address"} <= fields


@pytest.mark.asyncio
async def test_place_order_quantity_is_capped(client, world, stored_orders):
    tokens = await _login(client, "customer@example.com")

    response = await client.post(
        "/api/orders",
        json={
            "restaurant_id": world.restaurant_id,
            "items": [{"dish_id": world.pizza_id, "quantity": 10**12}],
            "delivery_address": "1 Main St",
        },
        headers=_bearer(tokens),
    )

    assert response.status_code == 400
    fields = {d["field"] for d in response.json()["details"]}
    assert "items.0.quantity" in fields
    assert await stored_orders() == (0, 0)


@pytest.mark.asyncio
async def test_place_order_business_failures(client, world):
    tokens = await _login(client, "customer@example.com")

    below = await client.post(
        "/api/orders",
        json={
            "restaurant_id": world.restaurant_id,
            "items": [{"dish_id": world.salad_id, "quantity": 1}],
            "delivery_address": "1 Main St",
        },
        headers=_bearer(tokens),
    )
    assert below.status_code == 400
    assert below.json()["code"] == "below_minimum_order"

    unavailable = await client.post(
        "/api/orders",
        json={
            "restaurant_id": world.restaurant_id,
            "items": [{"dish_id": world.soup_id, "quantity": 2}],
            "delivery_address": "1 Main St",
        },
        headers=_bearer(tokens),
    )
    assert unavailable.status_code == 400
    assert unavailable.json()["unavailable_dishes"][0]["id"] == world.soup_id

    missing = await client.post(
        "/api/orders",
        json={
            "restaurant_id": 4242,
            "items": [{"dish_id": world.pizza_id, "quantity": 1}],
            "delivery_address": "1 Main St",
        },
        headers=_bearer(tokens),
    )
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_order_reads_and_status_workflow(client, world):
    customer = await _login(client, "customer@example.com")
    other = await _login(client, "other_customer@example.com")
    staff = await _login(client, "staff@example.com")

    placed = await client.post(
        "/api/orders",
        json={
            "restaurant_id": world.restaurant_id,
            "items": [{"dish_id": world.pizza_id, "quantity": 1}],
            "delivery_address": "1 Main St",
        },
        headers=_bearer(customer),
    )
    order_id = placed.json()["data"]["id"]

    mine = await client.get(f"/api/orders/{order_id}", headers=_bearer(customer))
    assert mine.status_code == 200
    theirs = await client.get(f"/api/orders/{order_id}", headers=_bearer(other))
    assert theirs.status_code == 403

    listing = await client.get("/api/orders?status=pending&limit=5", headers=_bearer(customer))
    assert listing.status_code == 200
    assert listing.json()["pagination"]["total"] == 1

    forbidden = await client.patch(
        f"/api/orders/{order_id}/status",
        json={"status": "confirmed"},
        headers=_bearer(customer),
    )
    assert forbidden.status_code == 403

    confirmed = await client.patch(
        f"/api/orders/{order_id}/status",
        json={"status": "confirmed", "estimated_delivery_time": "2030-01-01T19:30:00Z"},
        headers=_bearer(staff),
    )
    assert confirmed.status_code == 200, confirmed.text
    assert confirmed.json()["data"]["status"] == "confirmed"
    assert confirmed.json()["message"] == "Order status updated successfully"

    illegal = await client.patch(
        f"/api/orders/{order_id}/status",
        json={"status": "delivered"},
        headers=_bearer(staff),
    )
    assert illegal.status_code == 400
    assert illegal.json()["allowed_transitions"] == ["preparing", "cancelled"]

    board = await client.get(f"/api/restaurants/{world.restaurant_id}/orders", headers=_bearer(staff))
    assert board.status_code == 200
    assert len(board.json()["data"][0]["items"]) == 1

    outsider = await client.get(f"/api/restaurants/{world.restaurant_id}/orders", headers=_bearer(other))
    assert outsider.status_code == 403


@pytest.mark.asyncio
async def test_unknown_order_is_404(client, world):
    tokens = await _login(client, "admin@example.com")

    response = await client.get("/api/orders/4242", headers=_bearer(tokens))

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


# ─── Maintenance ───────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_rating_recalculation_is_admin_only(client, world):
    customer = await _login(client, "customer@example.com")
    admin = await _login(client, "admin@example.com")

    denied = await client.post("/api/maintenance/ratings/recalculate", headers=_bearer(customer))
    assert denied.status_code == 403

    response = await client.post("/api/maintenance/ratings/recalculate", headers=_bearer(admin))
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    assert body["data"]["processed"] == 3
    assert body["data"]["errors"] == 0


@pytest.mark.asyncio
async def test_root(client):
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json()["health"] == "/health"
