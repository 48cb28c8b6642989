"""Registry of live kiosk runtimes, one per machine."""

import asyncio
from typing import Callable

from openfridge.config import Settings, get_settings
from openfridge.kiosk.gateway import CheckoutGateway, HttpCheckoutGateway, LocalCheckoutGateway
from openfridge.kiosk.runtime import KioskRuntime
from openfridge.models.machine import Machine
from openfridge.services.lock import SmartLockClient, get_lock_client
from openfridge.services.payments import build_providers
from openfridge.services.settlement import KIOSK_UNLOCK_SHARE, SettlementService
from openfridge.state.manager import get_state_manager
from openfridge.state.store import FridgeStore
from openfridge.utils.logging import get_logger

logger = get_logger(__name__)

RuntimeFactory = Callable[[Machine], KioskRuntime]


class KioskHub:
    """Creates runtimes on first use and stops them on shutdown."""

    def __init__(
        self,
        store: FridgeStore,
        lock_client: SmartLockClient,
        settings: Settings | None = None,
        runtime_factory: RuntimeFactory | None = None,
    ):
        self.store = store
        self.lock_client = lock_client
        self.settings = settings or get_settings()
        self.runtime_factory = runtime_factory or self._default_runtime
        self.runtimes: dict[str, KioskRuntime] = {}
        self._lock = asyncio.Lock()

    def _default_gateway(self) -> CheckoutGateway:
        if self.settings.checkout_server_url:
            return HttpCheckoutGateway(
                self.settings.checkout_server_url,
                timeout=self.settings.provider_timeout,
                settle_timeout=self.settings.settlement_timeout,
            )

        # The unlock has to fit inside the kiosk's settlement budget
        unlock_timeout = min(
            self.settings.lock_timeout,
            self.settings.settlement_timeout * KIOSK_UNLOCK_SHARE,
        )
        return LocalCheckoutGateway(
            build_providers(self.settings),
            SettlementService(self.store, self.lock_client, unlock_timeout),
        )

    def _default_runtime(self, machine: Machine) -> KioskRuntime:
        return KioskRuntime(machine, self.store, self._default_gateway(), self.settings)

    def get(self, machine_id: str) -> KioskRuntime | None:
        return self.runtimes.get(machine_id)

    async def get_or_start(self, machine_id: str) -> KioskRuntime:
        """
        Return the runtime for a machine, starting it if needed.

        Raises:
            MachineNotFoundError: The machine does not exist
        """
        async with self._lock:
            runtime = self.runtimes.get(machine_id)
            if runtime is not None:
                return runtime

            machine = await self.store.get_machine(machine_id)
            runtime = self.runtime_factory(machine)
            await runtime.start()
            self.runtimes[machine_id] = runtime

            logger.info("kiosk_runtime_started", machine_id=machine_id)
            return runtime

    async def shutdown(self) -> None:
        """Stop every runtime."""
        async with self._lock:
            runtimes = list(self.runtimes.values())
            self.runtimes.clear()

        for runtime in runtimes:
            await runtime.stop()
        logger.info("kiosk_hub_stopped", runtimes=len(runtimes))


# Global hub instance
_hub: KioskHub | None = None


async def get_hub() -> KioskHub:
    """Get the global kiosk hub instance."""
    global _hub
    if _hub is None:
        _hub = KioskHub(FridgeStore(await get_state_manager()), get_lock_client())
    return _hub


async def shutdown_hub() -> None:
    """Stop the global hub, if one was created."""
    global _hub
    if _hub is not None:
        await _hub.shutdown()
        _hub = None
