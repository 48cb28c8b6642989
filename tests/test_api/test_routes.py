"""Tests for the HTTP routes."""

from typing import Any

import pytest
from httpx import AsyncClient

from openfridge.kiosk.checkout import ManualActivate
from openfridge.kiosk.hub import KioskHub
from openfridge.state.store import FridgeStore


def confirm_payload(reference: str = "pi_test_1", machine_id: str = "fridge-1") -> dict[str, Any]:
    return {
        "payment_reference": reference,
        "machine_id": machine_id,
        "lines": [{"inventory_id": "cold-brew", "name": "Cold Brew", "qty": 2, "total": "9.00"}],
        "payment_method": "card",
        "contact": {"email": "pat@example.com"},
    }


@pytest.mark.asyncio
async def test_health_check(test_client: AsyncClient) -> None:
    """Test health check endpoint."""
    response = await test_client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_root_endpoint(test_client: AsyncClient) -> None:
    response = await test_client.get("/")

    assert response.status_code == 200
    assert response.json()["health"] == "/health"


@pytest.mark.asyncio
async def test_stripe_checkout(test_client: AsyncClient, stripe: Any) -> None:
    response = await test_client.post(
        "/api/v1/checkout/stripe",
        json={"amount": "9.00", "machine_id": "fridge-1", "items": [{"name": "Cold Brew", "qty": 2}]},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["reference"] == "pi_test_1"
    assert data["client_secret"] == "pi_test_1_secret"
    assert data["method"] == "card"
    assert len(stripe.requests) == 1


@pytest.mark.asyncio
async def test_stripe_checkout_rejects_crypto(test_client: AsyncClient) -> None:
    response = await test_client.post(
        "/api/v1/checkout/stripe",
        json={"amount": "9.00", "machine_id": "fridge-1", "method": "crypto"},
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_stripe_decline_is_bad_gateway(test_client: AsyncClient, stripe: Any) -> None:
    stripe.status_code = 402

    response = await test_client.post(
        "/api/v1/checkout/stripe",
        json={"amount": "9.00", "machine_id": "fridge-1"},
    )

    assert response.status_code == 502
    assert response.json()["detail"] == "Your card was declined."


@pytest.mark.asyncio
async def test_invalid_amount_is_rejected(test_client: AsyncClient) -> None:
    response = await test_client.post(
        "/api/v1/checkout/stripe",
        json={"amount": "0", "machine_id": "fridge-1"},
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_coinbase_checkout_demo(test_client: AsyncClient) -> None:
    response = await test_client.post(
        "/api/v1/checkout/coinbase",
        json={"amount": "4.50", "machine_id": "fridge-1"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["method"] == "crypto"
    assert data["demo"] is True
    assert data["reference"].startswith("demo_")


@pytest.mark.asyncio
async def test_confirm_settles_and_replays(
    test_client: AsyncClient,
    seeded_store: FridgeStore,
    lock_server: Any,
) -> None:
    """Test settlement over HTTP, then a replay of the same payment."""
    response = await test_client.post("/api/v1/checkout/confirm", json=confirm_payload())

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["order_id"] == "pi_test_1"
    assert data["lock"]["unlocked"] is True
    assert data["contact"]["email"] == "pat@example.com"

    replay = await test_client.post("/api/v1/checkout/confirm", json=confirm_payload())
    assert replay.json()["replayed"] is True

    assert (await seeded_store.get_item("fridge-1", "cold-brew")).stock_count == 3
    assert len(await seeded_store.list_sales("fridge-1")) == 1
    assert lock_server.actions() == ["unlock"]


@pytest.mark.asyncio
async def test_confirm_unknown_machine(test_client: AsyncClient) -> None:
    response = await test_client.post(
        "/api/v1/checkout/confirm", json=confirm_payload(machine_id="nowhere")
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_confirm_requires_lines(test_client: AsyncClient) -> None:
    payload = confirm_payload()
    payload["lines"] = []

    response = await test_client.post("/api/v1/checkout/confirm", json=payload)

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_manual_unlock_and_door_logs(
    test_client: AsyncClient,
    lock_server: Any,
) -> None:
    response = await test_client.post("/api/v1/machines/unlock", json={"machine_id": "fridge-1"})

    assert response.status_code == 200
    assert response.json()["unlocked"] is True

    logs = await test_client.get("/api/v1/machines/fridge-1/door-logs")
    assert logs.status_code == 200
    [entry] = logs.json()["logs"]
    assert entry["trigger"] == "manual"


@pytest.mark.asyncio
async def test_manual_unlock_unknown_machine(test_client: AsyncClient) -> None:
    response = await test_client.post("/api/v1/machines/unlock", json={"machine_id": "nowhere"})

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_door_logs_limit(test_client: AsyncClient) -> None:
    for reference in ("pi_a", "pi_b", "pi_c"):
        await test_client.post("/api/v1/checkout/confirm", json=confirm_payload(reference))

    response = await test_client.get("/api/v1/machines/fridge-1/door-logs", params={"limit": 2})
    assert [entry["payment_reference"] for entry in response.json()["logs"]] == ["pi_c", "pi_b"]

    invalid = await test_client.get("/api/v1/machines/fridge-1/door-logs", params={"limit": 0})
    assert invalid.status_code == 422

    unknown = await test_client.get("/api/v1/machines/nowhere/door-logs")
    assert unknown.json() == {"logs": []}


@pytest.mark.asyncio
async def test_catalog_lists_in_stock_items(test_client: AsyncClient) -> None:
    response = await test_client.get("/api/v1/kiosk/fridge-1/catalog")

    assert response.status_code == 200
    data = response.json()
    assert data["machine"]["name"] == "Lobby Fridge"
    assert [item["id"] for item in data["items"]] == ["cold-brew", "water"]

    missing = await test_client.get("/api/v1/kiosk/nowhere/catalog")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_kiosk_trace(test_client: AsyncClient, hub: KioskHub) -> None:
    assert (await test_client.get("/api/v1/kiosk/fridge-1/trace")).status_code == 404

    runtime = await hub.get_or_start("fridge-1")
    await runtime.dispatch(ManualActivate())

    response = await test_client.get("/api/v1/kiosk/fridge-1/trace")

    assert response.status_code == 200
    data = response.json()
    assert data["session"]["step"] == "browse"
    assert data["trace"]["events"][0]["event_type"] == "ManualActivate"
