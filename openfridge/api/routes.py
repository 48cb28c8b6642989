"""API routes for checkout, machines and kiosk inspection."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from openfridge.config import get_settings
from openfridge.kiosk.hub import KioskHub, get_hub
from openfridge.models.checkout import (
    LockOutcome,
    PaymentHandle,
    PaymentHandleRequest,
    SettlementRequest,
    SettlementResult,
)
from openfridge.models.inventory import InventoryItem
from openfridge.models.machine import Machine
from openfridge.models.sale import DoorAccessEvent, PaymentMethod
from openfridge.services.lock import SmartLockClient, get_lock_client
from openfridge.services.payments import PaymentProvider, PaymentProviderError, build_providers
from openfridge.services.settlement import SettlementError, SettlementService, manual_unlock
from openfridge.state.manager import get_state_manager
from openfridge.state.store import FridgeStore, MachineNotFoundError
from openfridge.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


# Request/Response Models


class UnlockRequest(BaseModel):
    """Request to open a machine's door outside a purchase."""

    machine_id: str = Field(min_length=1)


class DoorLogResponse(BaseModel):
    """Door access events, newest first."""

    logs: list[DoorAccessEvent]


class CatalogResponse(BaseModel):
    """What a kiosk display shows: the machine and its in-stock items."""

    machine: Machine
    items: list[InventoryItem]


# Dependencies


async def get_store() -> FridgeStore:
    """Get the store on the shared state manager."""
    return FridgeStore(await get_state_manager())


def get_providers() -> dict[PaymentMethod, PaymentProvider]:
    """Get the payment provider per method."""
    return build_providers()


def get_settlement_service(
    store: FridgeStore = Depends(get_store),
    lock_client: SmartLockClient = Depends(get_lock_client),
) -> SettlementService:
    """Get a settlement service bound to the store and lock client."""
    return SettlementService(store, lock_client)


def _not_found(error: MachineNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))


async def _create_handle(
    provider: PaymentProvider,
    request: PaymentHandleRequest,
) -> PaymentHandle:
    try:
        return await provider.create_handle(request)
    except PaymentProviderError as e:
        logger.error(
            "payment_handle_failed",
            provider=provider.name,
            machine_id=request.machine_id,
            error=str(e),
        )
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


# Checkout


@router.post("/checkout/stripe", response_model=PaymentHandle)
async def create_stripe_payment(
    request: PaymentHandleRequest,
    providers: dict[PaymentMethod, PaymentProvider] = Depends(get_providers),
) -> PaymentHandle:
    """
    Create a PaymentIntent for a card or wallet payment.

    Returns the client secret the display confirms the payment with.
    """
    if request.method == PaymentMethod.CRYPTO:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Crypto payments use /checkout/coinbase",
        )
    return await _create_handle(providers[request.method], request)


@router.post("/checkout/coinbase", response_model=PaymentHandle)
async def create_coinbase_charge(
    request: PaymentHandleRequest,
    providers: dict[PaymentMethod, PaymentProvider] = Depends(get_providers),
) -> PaymentHandle:
    """Create a hosted crypto charge."""
    request = request.model_copy(update={"method": PaymentMethod.CRYPTO})
    return await _create_handle(providers[PaymentMethod.CRYPTO], request)


@router.post("/checkout/confirm", response_model=SettlementResult)
async def confirm_checkout(
    request: SettlementRequest,
    settlement: SettlementService = Depends(get_settlement_service),
) -> SettlementResult:
    """
    Settle a paid cart: record sales, decrement stock and open the door.

    Replaying the same payment reference returns the stored outcome.
    """
    try:
        return await settlement.settle(request)
    except MachineNotFoundError as e:
        raise _not_found(e)
    except SettlementError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        )


# Machines


@router.post("/machines/unlock", response_model=LockOutcome)
async def unlock_machine(
    request: UnlockRequest,
    store: FridgeStore = Depends(get_store),
    lock_client: SmartLockClient = Depends(get_lock_client),
) -> LockOutcome:
    """Open a machine's door manually; logged with the manual trigger."""
    try:
        outcome = await manual_unlock(store, lock_client, request.machine_id)
    except MachineNotFoundError as e:
        raise _not_found(e)

    logger.info(
        "manual_unlock",
        machine_id=request.machine_id,
        unlocked=outcome.unlocked,
        error=outcome.error,
    )
    return outcome


@router.get("/machines/{machine_id}/door-logs", response_model=DoorLogResponse)
async def get_door_logs(
    machine_id: str,
    limit: int = Query(default=50, ge=1),
    store: FridgeStore = Depends(get_store),
) -> DoorLogResponse:
    """List door access events for a machine, newest first."""
    limit = min(limit, get_settings().max_door_log_limit)
    return DoorLogResponse(logs=await store.list_door_events(machine_id, limit))


# Kiosk


@router.get("/kiosk/{machine_id}/catalog", response_model=CatalogResponse)
async def get_catalog(
    machine_id: str,
    store: FridgeStore = Depends(get_store),
) -> CatalogResponse:
    """Machine details with its in-stock items ordered by name."""
    try:
        machine = await store.get_machine(machine_id)
    except MachineNotFoundError as e:
        raise _not_found(e)

    items = await store.list_inventory(machine_id, in_stock_only=True)
    return CatalogResponse(machine=machine, items=items)


@router.get("/kiosk/{machine_id}/trace")
async def get_kiosk_trace(
    machine_id: str,
    hub: KioskHub = Depends(get_hub),
) -> dict[str, Any]:
    """Transition timeline of the live kiosk session."""
    runtime = hub.get(machine_id)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No live kiosk for machine {machine_id}",
        )

    return {
        "session": runtime.snapshot(),
        "trace": runtime.tracer.get_trace_summary(),
    }
