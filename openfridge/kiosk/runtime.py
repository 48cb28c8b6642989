"""Kiosk runtime: drives a CheckoutMachine and performs its side effects."""

import asyncio
import time
from typing import Any, Awaitable, Callable, Coroutine

from openfridge.config import Settings, get_settings
from openfridge.kiosk.checkout import (
    ActivationElapsed,
    CancelAllTimers,
    CancelTimer,
    CheckoutMachine,
    CheckoutPolicy,
    Command,
    Event,
    Greet,
    InactivityElapsed,
    PaymentHandleFailed,
    PaymentHandleReady,
    PaymentSucceeded,
    PresenceDetected,
    ReceiptElapsed,
    RefreshCatalog,
    RequestPaymentHandle,
    ResetGreeter,
    Settle,
    SettlementFailed,
    SettlementSucceeded,
    StartPresence,
    StartTimer,
    StopPresence,
    TimerName,
    Transition,
)
from openfridge.kiosk.gateway import CheckoutGateway, CheckoutGatewayError
from openfridge.kiosk.greeter import Greeter
from openfridge.kiosk.presence import CameraFrameSource, FrameSource, PresenceDetector
from openfridge.models.inventory import InventoryItem
from openfridge.models.machine import Machine
from openfridge.state.store import FridgeStore
from openfridge.utils.logging import KioskLogger
from openfridge.utils.tracing import SessionTracer

Listener = Callable[[dict[str, Any]], Awaitable[None]]

TIMER_EVENTS: dict[TimerName, Callable[[int], Event]] = {
    TimerName.ACTIVATION: ActivationElapsed,
    TimerName.INACTIVITY: InactivityElapsed,
    TimerName.RECEIPT: ReceiptElapsed,
}


class KioskRuntime:
    """
    Owns one kiosk session and everything with a lifecycle around it.

    Dispatches are serialised; side effects that take time (payment handle,
    settlement, greeting) run as background tasks and report back by
    dispatching their result events.
    """

    def __init__(
        self,
        machine: Machine,
        store: FridgeStore,
        gateway: CheckoutGateway,
        settings: Settings | None = None,
        policy: CheckoutPolicy | None = None,
        greeter: Greeter | None = None,
        detector: PresenceDetector | None = None,
        frame_source: FrameSource | None = None,
    ):
        settings = settings or get_settings()

        self.machine = machine
        self.store = store
        self.gateway = gateway
        self.checkout = CheckoutMachine(machine, policy or CheckoutPolicy.from_settings(settings))
        self.greeter = greeter or Greeter(
            enabled=settings.voice_enabled,
            cooldown=settings.greeting_cooldown,
        )

        if frame_source is None and settings.camera_enabled:
            frame_source = CameraFrameSource(settings.camera_index)
        self.frame_source = frame_source
        if detector is None and frame_source is not None:
            detector = PresenceDetector(
                motion_threshold=settings.motion_threshold,
                face_detection=settings.face_detection_enabled,
            )
        self.detector = detector

        self.payment_timeout = settings.provider_timeout
        self.settlement_timeout = settings.settlement_timeout
        self.presence_interval = settings.presence_interval_ms / 1000

        self.catalog: list[InventoryItem] = []
        self.logger = KioskLogger(machine.id)
        self.tracer = SessionTracer(machine.id)

        self._lock = asyncio.Lock()
        self._timers: dict[TimerName, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()
        self._settlements: set[asyncio.Task] = set()
        self._presence_task: asyncio.Task | None = None
        self._listeners: list[Listener] = []

    # Lifecycle

    async def start(self) -> None:
        """Load the catalog and enter idle."""
        async with self._lock:
            await self._refresh_catalog()
            await self._execute(self.checkout.start())
        await self._publish()
        self.logger.logger.info("kiosk_started", machine_name=self.machine.name)

    async def stop(self) -> None:
        """
        Release the camera, cancel timers and pending requests.

        Settlements already dispatched are awaited rather than cancelled.
        """
        async with self._lock:
            self._cancel_all_timers()
            await self._stop_presence()
            self.greeter.reset()

        if self._settlements:
            await asyncio.gather(*self._settlements, return_exceptions=True)
            self._cancel_all_timers()

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        self._listeners.clear()
        self.logger.logger.info("kiosk_stopped")

    # Listeners

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def snapshot(self) -> dict[str, Any]:
        """Session state plus the catalog for the display."""
        data = self.checkout.snapshot()
        data["catalog"] = [item.model_dump(mode="json") for item in self.catalog]
        return data

    def find_item(self, item_id: str) -> InventoryItem | None:
        for item in self.catalog:
            if item.id == item_id:
                return item
        return None

    # Dispatch

    async def dispatch(self, event: Event) -> Transition:
        """Apply an event and execute the resulting commands."""
        async with self._lock:
            session = self.checkout.session
            from_step, epoch = session.step, session.epoch
            event_name = type(event).__name__

            transition = self.checkout.dispatch(event)

            if not transition.accepted:
                self._log_rejected(event, from_step.value, epoch)
                return transition

            self.logger.log_transition(
                checkout_event=event_name,
                from_step=from_step.value,
                to_step=transition.step.value,
                epoch=epoch,
                commands=[type(command).__name__ for command in transition.commands],
            )
            self.tracer.add_event(
                event_name,
                transition.step.value,
                self.checkout.session.epoch,
                from_step=from_step.value,
            )

            await self._execute(transition.commands)

        await self._publish()
        return transition

    def _log_rejected(self, event: Event, step: str, epoch: int) -> None:
        if isinstance(event, PaymentSucceeded):
            # Money may have moved for a handle the session no longer holds
            self.logger.logger.warning(
                "payment_succeeded_for_discarded_handle",
                payment_reference=event.reference,
                step=step,
                epoch=epoch,
            )
        else:
            self.logger.log_ignored(type(event).__name__, step, epoch)
        self.tracer.add_event("ignored", step, epoch, checkout_event=type(event).__name__)

    # Commands

    async def _execute(self, commands: list[Command]) -> None:
        for command in commands:
            if isinstance(command, StartTimer):
                self._start_timer(command)
            elif isinstance(command, CancelTimer):
                handle = self._timers.pop(command.timer, None)
                if handle is not None:
                    handle.cancel()
            elif isinstance(command, CancelAllTimers):
                self._cancel_all_timers()
            elif isinstance(command, StartPresence):
                self._start_presence()
            elif isinstance(command, StopPresence):
                await self._stop_presence()
            elif isinstance(command, Greet):
                self._spawn(self.greeter.greet(command.machine_name))
            elif isinstance(command, ResetGreeter):
                self.greeter.reset()
            elif isinstance(command, RefreshCatalog):
                await self._refresh_catalog()
            elif isinstance(command, RequestPaymentHandle):
                self._spawn(self._request_payment_handle(command))
            elif isinstance(command, Settle):
                task = self._spawn(self._settle(command))
                self._settlements.add(task)
                task.add_done_callback(self._settlements.discard)

    def _start_timer(self, command: StartTimer) -> None:
        existing = self._timers.pop(command.timer, None)
        if existing is not None:
            existing.cancel()

        loop = asyncio.get_running_loop()
        self._timers[command.timer] = loop.call_later(
            command.seconds, self._on_timer, command.timer, command.epoch
        )

    def _on_timer(self, timer: TimerName, epoch: int) -> None:
        self._timers.pop(timer, None)
        self._spawn(self.dispatch(TIMER_EVENTS[timer](epoch)))

    def _cancel_all_timers(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def _start_presence(self) -> None:
        if self.detector is None or self.frame_source is None:
            return
        if self._presence_task is not None and not self._presence_task.done():
            return

        self.detector.reset()
        self._presence_task = self._spawn(
            self.detector.watch(self.frame_source, self._on_presence, self.presence_interval)
        )

    async def _stop_presence(self) -> None:
        task, self._presence_task = self._presence_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    async def _on_presence(self) -> None:
        # The watch task ends right after this returns; dispatching from it
        # would make StopPresence wait on itself
        self._spawn(self.dispatch(PresenceDetected()))

    async def _refresh_catalog(self) -> None:
        try:
            self.catalog = await self.store.list_inventory(self.machine.id, in_stock_only=True)
        except Exception as e:
            self.logger.log_error(f"Catalog refresh failed: {e}")

    async def _request_payment_handle(self, command: RequestPaymentHandle) -> None:
        start = time.time()
        event: Event
        try:
            with self.tracer.trace_operation(
                "payment_handle_call",
                self.checkout.step.value,
                self.checkout.session.epoch,
                request_id=command.request_id,
            ):
                handle = await asyncio.wait_for(
                    self.gateway.create_payment_handle(command.request),
                    timeout=self.payment_timeout,
                )
        except asyncio.TimeoutError:
            event = PaymentHandleFailed(command.request_id, "Payment provider timed out")
        except CheckoutGatewayError as e:
            event = PaymentHandleFailed(command.request_id, str(e))
        else:
            event = PaymentHandleReady(command.request_id, handle)

        success = isinstance(event, PaymentHandleReady)
        self.logger.log_command(
            "request_payment_handle",
            duration_ms=(time.time() - start) * 1000,
            success=success,
            request_id=command.request_id,
            method=command.request.method.value,
            error=None if success else event.error,
        )
        await self.dispatch(event)

    async def _settle(self, command: Settle) -> None:
        start = time.time()
        event: Event
        try:
            with self.tracer.trace_operation(
                "settlement_call",
                self.checkout.step.value,
                self.checkout.session.epoch,
                attempt_id=command.attempt_id,
            ):
                result = await asyncio.wait_for(
                    self.gateway.settle(command.request),
                    timeout=self.settlement_timeout,
                )
        except asyncio.TimeoutError:
            event = SettlementFailed(command.attempt_id, "Settlement timed out")
        except CheckoutGatewayError as e:
            event = SettlementFailed(command.attempt_id, str(e))
        else:
            event = SettlementSucceeded(command.attempt_id, result)

        success = isinstance(event, SettlementSucceeded)
        self.logger.log_command(
            "settle",
            duration_ms=(time.time() - start) * 1000,
            success=success,
            attempt_id=command.attempt_id,
            payment_reference=command.request.payment_reference,
            error=None if success else event.error,
        )
        await self.dispatch(event)

    # Background tasks

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.log_error(str(error), error_type=type(error).__name__)

    async def _publish(self) -> None:
        if not self._listeners:
            return

        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                await listener(snapshot)
            except Exception as e:
                self.logger.logger.warning("kiosk_listener_failed", error=str(e))
                self.unsubscribe(listener)
