"""Settlement collaborator: record a paid cart, then open the door."""

import asyncio
import weakref

from openfridge.config import get_settings
from openfridge.models.checkout import (
    LockOutcome,
    SettlementRecord,
    SettlementRequest,
    SettlementResult,
)
from openfridge.models.machine import Machine
from openfridge.models.sale import DoorAccessEvent, DoorTrigger
from openfridge.services.lock import SmartLockClient
from openfridge.state.store import FridgeStore
from openfridge.utils.logging import get_logger

logger = get_logger(__name__)

# Share of a kiosk's settlement budget the unlock may use
KIOSK_UNLOCK_SHARE = 0.6

# One door opening per payment reference at a time, across service instances
_door_guards: weakref.WeakValueDictionary = weakref.WeakValueDictionary()


class SettlementError(Exception):
    """The sale could not be recorded."""


class SettlementService:
    """
    Durably records a sale and decrements stock after a confirmed payment.

    Settlement is idempotent per payment reference: a replay after an
    unknown outcome returns the stored result and never decrements stock
    twice. The lock is triggered strictly after the sale is committed and
    its failure never fails the settlement. The unlock is bounded by
    ``unlock_timeout`` so a slow lock cannot hold up a committed sale.
    """

    def __init__(
        self,
        store: FridgeStore,
        lock_client: SmartLockClient,
        unlock_timeout: float | None = None,
    ):
        self.store = store
        self.lock_client = lock_client
        self.unlock_timeout = (
            unlock_timeout if unlock_timeout is not None else get_settings().lock_timeout
        )

    async def settle(self, request: SettlementRequest) -> SettlementResult:
        """
        Settle a paid cart.

        Args:
            request: Payment reference, machine and cart lines

        Returns:
            Success flag and lock outcome

        Raises:
            MachineNotFoundError: The machine does not exist
            SettlementError: The sale could not be committed
        """
        machine = await self.store.get_machine(request.machine_id)

        try:
            record, created = await self.store.commit_settlement(request)
        except Exception as e:
            logger.error(
                "settlement_commit_failed",
                payment_reference=request.payment_reference,
                machine_id=request.machine_id,
                error=str(e),
            )
            raise SettlementError(f"Could not record sale: {e}") from e

        if created:
            logger.info(
                "settlement_committed",
                payment_reference=request.payment_reference,
                machine_id=request.machine_id,
                lines=len(request.lines),
                amount=str(request.amount),
            )
        else:
            logger.warning(
                "settlement_replayed",
                payment_reference=request.payment_reference,
                machine_id=request.machine_id,
                lock_known=record.lock is not None,
            )

        if record.lock is None:
            record = await self._open_door_once(machine, record)

        return SettlementResult(
            success=True,
            order_id=request.payment_reference,
            lock=record.lock,
            contact=request.contact,
            replayed=not created,
        )

    async def _open_door_once(
        self,
        machine: Machine,
        record: SettlementRecord,
    ) -> SettlementRecord:
        guard = _door_guards.get(record.payment_reference)
        if guard is None:
            guard = asyncio.Lock()
            _door_guards[record.payment_reference] = guard

        async with guard:
            # A concurrent replay may have opened the door while we waited
            current = await self.store.get_settlement(record.payment_reference)
            if current is not None and current.lock is not None:
                return current
            return await self._open_door(machine, record)

    async def _unlock(self, machine: Machine) -> LockOutcome:
        try:
            return await asyncio.wait_for(
                self.lock_client.unlock(machine), timeout=self.unlock_timeout
            )
        except asyncio.TimeoutError:
            logger.error(
                "settlement_lock_timed_out",
                machine_id=machine.id,
                timeout=self.unlock_timeout,
            )
            return LockOutcome(unlocked=False, error="Lock timed out")

    async def _open_door(self, machine: Machine, record: SettlementRecord) -> SettlementRecord:
        lock = await self._unlock(machine)

        if lock.unlocked:
            await self.store.add_door_event(
                DoorAccessEvent(
                    machine_id=machine.id,
                    payment_reference=record.payment_reference,
                    trigger=DoorTrigger.PURCHASE,
                )
            )
        elif lock.error:
            logger.warning(
                "settlement_lock_failed",
                payment_reference=record.payment_reference,
                machine_id=machine.id,
                error=lock.error,
            )

        return await self.store.record_lock_outcome(record, lock)


async def manual_unlock(
    store: FridgeStore,
    lock_client: SmartLockClient,
    machine_id: str,
) -> LockOutcome:
    """Unlock a machine outside a purchase and log it as a manual opening."""
    machine = await store.get_machine(machine_id)
    lock = await lock_client.unlock(machine)

    if lock.unlocked:
        await store.add_door_event(
            DoorAccessEvent(machine_id=machine.id, trigger=DoorTrigger.MANUAL)
        )

    return lock
