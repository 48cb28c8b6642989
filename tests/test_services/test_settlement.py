"""Tests for the settlement service."""

import asyncio
from decimal import Decimal
from typing import Any

import pytest

from openfridge.models.checkout import ContactInfo, SettlementLine, SettlementRequest
from openfridge.models.inventory import InventoryItem
from openfridge.models.machine import Machine
from openfridge.models.sale import DoorTrigger, PaymentMethod
from openfridge.services.lock import SmartLockClient
from openfridge.services.settlement import SettlementError, SettlementService, manual_unlock
from openfridge.state.store import FridgeStore, MachineNotFoundError


def settlement_request(reference: str = "pi_1", **overrides: Any) -> SettlementRequest:
    data: dict[str, Any] = {
        "payment_reference": reference,
        "machine_id": "fridge-1",
        "lines": [
            SettlementLine(inventory_id="cold-brew", name="Cold Brew", qty=2, total=Decimal("9.00")),
        ],
    }
    data.update(overrides)
    return SettlementRequest(**data)


@pytest.fixture
def service(seeded_store: FridgeStore, lock_client: SmartLockClient) -> SettlementService:
    return SettlementService(seeded_store, lock_client)


@pytest.mark.asyncio
async def test_settle_records_sale_and_opens_door(
    service: SettlementService,
    seeded_store: FridgeStore,
    lock_server: Any,
) -> None:
    """Test a paid cart of two items from a stock of five."""
    await seeded_store.save_item(
        InventoryItem(
            id="cold-brew",
            machine_id="fridge-1",
            item_name="Cold Brew",
            price=Decimal("4.99"),
            stock_count=5,
        )
    )
    contact = ContactInfo(email="pat@example.com")

    result = await service.settle(
        settlement_request(
            lines=[
                SettlementLine(
                    inventory_id="cold-brew", name="Cold Brew", qty=2, total=Decimal("9.98")
                )
            ],
            payment_method=PaymentMethod.WALLET,
            contact=contact,
        )
    )

    assert result.success is True
    assert result.order_id == "pi_1"
    assert result.lock.unlocked is True
    assert result.lock.expires_at is not None
    assert result.contact == contact
    assert result.replayed is False

    [sale] = await seeded_store.list_sales("fridge-1")
    assert sale.quantity == 2
    assert sale.total_price == Decimal("9.98")
    assert sale.payment_method == PaymentMethod.WALLET

    item = await seeded_store.get_item("fridge-1", "cold-brew")
    assert item.stock_count == 3

    [event] = await seeded_store.list_door_events("fridge-1")
    assert event.trigger == DoorTrigger.PURCHASE
    assert event.payment_reference == "pi_1"
    assert lock_server.actions() == ["unlock"]


@pytest.mark.asyncio
async def test_replay_does_not_apply_twice(
    service: SettlementService,
    seeded_store: FridgeStore,
    lock_server: Any,
) -> None:
    """Test that settling the same payment twice changes nothing the second time."""
    first = await service.settle(settlement_request())
    second = await service.settle(settlement_request())

    assert first.success and second.success
    assert second.replayed is True
    assert second.lock == first.lock

    assert len(await seeded_store.list_sales("fridge-1")) == 1
    assert (await seeded_store.get_item("fridge-1", "cold-brew")).stock_count == 3
    assert lock_server.actions() == ["unlock"]


@pytest.mark.asyncio
async def test_lines_are_recorded_in_order(
    service: SettlementService,
    seeded_store: FridgeStore,
) -> None:
    await service.settle(
        settlement_request(
            lines=[
                SettlementLine(inventory_id="water", name="Sparkling Water", qty=1, total=Decimal("2.00")),
                SettlementLine(inventory_id="cold-brew", name="Cold Brew", qty=1, total=Decimal("4.50")),
            ]
        )
    )

    sales = await seeded_store.list_sales("fridge-1")
    assert [sale.item_name for sale in sales] == ["Sparkling Water", "Cold Brew"]
    assert {sale.payment_reference for sale in sales} == {"pi_1"}


@pytest.mark.asyncio
async def test_missing_item_still_records_sale(
    service: SettlementService,
    seeded_store: FridgeStore,
) -> None:
    result = await service.settle(
        settlement_request(
            lines=[SettlementLine(inventory_id="ghost", name="Ghost Item", qty=1, total=Decimal("1.00"))]
        )
    )

    assert result.success is True
    [sale] = await seeded_store.list_sales("fridge-1")
    assert sale.inventory_id == "ghost"
    assert await seeded_store.get_item("fridge-1", "ghost") is None


@pytest.mark.asyncio
async def test_lock_failure_does_not_fail_settlement(
    service: SettlementService,
    seeded_store: FridgeStore,
    lock_server: Any,
) -> None:
    lock_server.status_code = 503

    result = await service.settle(settlement_request())

    assert result.success is True
    assert result.lock.unlocked is False
    assert result.lock.error == "Lock API error: 503"
    assert len(await seeded_store.list_sales("fridge-1")) == 1
    assert await seeded_store.list_door_events("fridge-1") == []

    # A replay reports the stored outcome without retrying the lock
    replay = await service.settle(settlement_request())
    assert replay.lock.error == "Lock API error: 503"
    assert len(lock_server.requests) == 1


@pytest.mark.asyncio
async def test_machine_without_lock_reports_no_unlock(
    service: SettlementService,
    seeded_store: FridgeStore,
    machine: Machine,
    lock_server: Any,
) -> None:
    await seeded_store.save_machine(machine.model_copy(update={"lock_enabled": False}))

    result = await service.settle(settlement_request())

    assert result.lock.unlocked is False
    assert result.lock.error is None
    assert lock_server.requests == []


@pytest.mark.asyncio
async def test_unknown_machine_is_rejected(
    service: SettlementService,
    seeded_store: FridgeStore,
) -> None:
    with pytest.raises(MachineNotFoundError):
        await service.settle(settlement_request(machine_id="nowhere"))

    assert await seeded_store.list_sales("nowhere") == []


@pytest.mark.asyncio
async def test_commit_failure_raises_settlement_error(
    service: SettlementService,
    seeded_store: FridgeStore,
    lock_server: Any,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def broken_commit(request: SettlementRequest) -> None:
        raise ConnectionError("redis went away")

    monkeypatch.setattr(seeded_store, "commit_settlement", broken_commit)

    with pytest.raises(SettlementError, match="redis went away"):
        await service.settle(settlement_request())

    assert lock_server.requests == []


@pytest.mark.asyncio
async def test_manual_unlock_logs_manual_trigger(
    seeded_store: FridgeStore,
    lock_client: SmartLockClient,
    lock_server: Any,
) -> None:
    outcome = await manual_unlock(seeded_store, lock_client, "fridge-1")

    assert outcome.unlocked is True
    [event] = await seeded_store.list_door_events("fridge-1")
    assert event.trigger == DoorTrigger.MANUAL
    assert event.payment_reference is None
    assert await seeded_store.list_sales("fridge-1") == []


@pytest.mark.asyncio
async def test_replay_opens_door_when_lock_outcome_missing(
    service: SettlementService,
    seeded_store: FridgeStore,
    lock_server: Any,
) -> None:
    """Test a replay after the sale was committed but the door never opened."""
    record, created = await seeded_store.commit_settlement(settlement_request())
    assert created is True
    assert record.lock is None

    result = await service.settle(settlement_request())

    assert result.success is True
    assert result.replayed is True
    assert result.lock.unlocked is True
    assert lock_server.actions() == ["unlock"]
    assert len(await seeded_store.list_door_events("fridge-1")) == 1
    assert len(await seeded_store.list_sales("fridge-1")) == 1
    assert (await seeded_store.get_settlement("pi_1")).lock.unlocked is True


@pytest.mark.asyncio
async def test_concurrent_replays_open_door_once(
    seeded_store: FridgeStore,
    lock_client: SmartLockClient,
    lock_server: Any,
) -> None:
    lock_server.delay = 0.05
    first_service = SettlementService(seeded_store, lock_client, unlock_timeout=1.0)
    second_service = SettlementService(seeded_store, lock_client, unlock_timeout=1.0)

    first, second = await asyncio.gather(
        first_service.settle(settlement_request()),
        second_service.settle(settlement_request()),
    )

    assert first.lock == second.lock
    assert first.lock.unlocked is True
    assert [first.replayed, second.replayed].count(True) == 1
    assert lock_server.actions() == ["unlock"]
    assert len(await seeded_store.list_door_events("fridge-1")) == 1
    assert len(await seeded_store.list_sales("fridge-1")) == 1


@pytest.mark.asyncio
async def test_slow_lock_is_recorded_as_timed_out(
    seeded_store: FridgeStore,
    lock_client: SmartLockClient,
    lock_server: Any,
) -> None:
    """Test that an unlock slower than its budget still settles the sale."""
    lock_server.delay = 0.3
    service = SettlementService(seeded_store, lock_client, unlock_timeout=0.05)

    result = await service.settle(settlement_request())

    assert result.success is True
    assert result.lock.unlocked is False
    assert result.lock.error == "Lock timed out"
    assert lock_server.requests == []
    assert await seeded_store.list_door_events("fridge-1") == []
    assert (await seeded_store.get_settlement("pi_1")).lock.error == "Lock timed out"

    # The stored outcome is final, a replay does not try the lock again
    replay = await service.settle(settlement_request())
    assert replay.lock.error == "Lock timed out"
    assert lock_server.requests == []
