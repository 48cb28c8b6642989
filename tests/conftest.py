"""Pytest configuration and fixtures."""

import asyncio
import json
from decimal import Decimal
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis
from httpx import ASGITransport, AsyncClient

from openfridge.api.routes import get_providers, get_store
from openfridge.config import Settings
from openfridge.kiosk.hub import KioskHub, get_hub
from openfridge.main import app
from openfridge.models.inventory import InventoryItem
from openfridge.models.machine import Machine
from openfridge.services.lock import SmartLockClient, get_lock_client
from openfridge.services.payments import build_providers
from openfridge.state.manager import StateManager
from openfridge.state.store import FridgeStore


class FakeLockServer:
    """Records lock API calls and answers with a configurable status."""

    def __init__(self) -> None:
        self.requests: list[dict] = []
        self.headers: list[httpx.Headers] = []
        self.status_code = 200
        self.fail_with: Exception | None = None
        self.delay = 0.0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        self.requests.append(json.loads(request.content))
        self.headers.append(request.headers)
        return httpx.Response(self.status_code, json={"ok": self.status_code < 400})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def actions(self) -> list[str]:
        return [body["action"] for body in self.requests]


class FakeStripe:
    """Answers PaymentIntent creation with sequential intent ids."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code >= 400:
            return httpx.Response(
                self.status_code, json={"error": {"message": "Your card was declined."}}
            )
        number = len(self.requests)
        return httpx.Response(
            200,
            json={"id": f"pi_test_{number}", "client_secret": f"pi_test_{number}_secret"},
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def settings() -> Settings:
    """Settings with hardware off and short timers."""
    return Settings(
        _env_file=None,
        stripe_secret_key="sk_test_123",
        coinbase_commerce_api_key=None,
        camera_enabled=False,
        voice_enabled=False,
        inactivity_timeout=90.0,
        receipt_countdown=15.0,
        activation_delay=0.0,
        provider_timeout=1.0,
        settlement_timeout=1.0,
    )


@pytest_asyncio.fixture
async def state_manager() -> AsyncGenerator[StateManager, None]:
    """Create a state manager on an in-process Redis."""
    manager = StateManager(FakeAsyncRedis(decode_responses=True))
    yield manager
    await manager.disconnect()


@pytest_asyncio.fixture
async def store(state_manager: StateManager) -> FridgeStore:
    """Create a store on the test state manager."""
    return FridgeStore(state_manager)


@pytest.fixture
def lock_server() -> FakeLockServer:
    return FakeLockServer()


@pytest_asyncio.fixture
async def lock_client(lock_server: FakeLockServer) -> AsyncGenerator[SmartLockClient, None]:
    """Lock client talking to the fake lock server."""
    client = SmartLockClient(timeout=1.0, default_duration=30, transport=lock_server.transport)
    yield client
    await client.shutdown()


@pytest.fixture
def stripe() -> FakeStripe:
    return FakeStripe()


# Sample data fixtures


@pytest.fixture
def machine() -> Machine:
    """Create a machine with a REST smart lock."""
    return Machine(
        id="fridge-1",
        name="Lobby Fridge",
        location="Building A",
        lock_enabled=True,
        lock_api_url="http://lock.test/api",
        lock_api_key="lock-secret",
        lock_duration_sec=30,
    )


@pytest.fixture
def cold_brew(machine: Machine) -> InventoryItem:
    return InventoryItem(
        id="cold-brew",
        machine_id=machine.id,
        item_name="Cold Brew",
        price=Decimal("4.50"),
        stock_count=5,
    )


@pytest.fixture
def water(machine: Machine) -> InventoryItem:
    return InventoryItem(
        id="water",
        machine_id=machine.id,
        item_name="Sparkling Water",
        price=Decimal("2.00"),
        stock_count=2,
    )


@pytest.fixture
def sold_out(machine: Machine) -> InventoryItem:
    return InventoryItem(
        id="fruit-cup",
        machine_id=machine.id,
        item_name="Fruit Cup",
        price=Decimal("3.75"),
        stock_count=0,
    )


@pytest_asyncio.fixture
async def seeded_store(
    store: FridgeStore,
    machine: Machine,
    cold_brew: InventoryItem,
    water: InventoryItem,
    sold_out: InventoryItem,
) -> FridgeStore:
    """Store holding the sample machine and its inventory."""
    await store.save_machine(machine)
    for item in (cold_brew, water, sold_out):
        await store.save_item(item)
    return store


@pytest_asyncio.fixture
async def hub(
    seeded_store: FridgeStore,
    lock_client: SmartLockClient,
    settings: Settings,
) -> AsyncGenerator[KioskHub, None]:
    """Kiosk hub with hardware disabled."""
    kiosk_hub = KioskHub(seeded_store, lock_client, settings)
    yield kiosk_hub
    await kiosk_hub.shutdown()


@pytest_asyncio.fixture
async def test_client(
    seeded_store: FridgeStore,
    lock_client: SmartLockClient,
    stripe: FakeStripe,
    settings: Settings,
    hub: KioskHub,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client with storage, lock and providers faked."""
    app.dependency_overrides[get_store] = lambda: seeded_store
    app.dependency_overrides[get_lock_client] = lambda: lock_client
    app.dependency_overrides[get_providers] = lambda: build_providers(settings, stripe.transport)
    app.dependency_overrides[get_hub] = lambda: hub

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
