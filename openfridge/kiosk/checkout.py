"""Kiosk checkout state machine.

The machine is pure: ``dispatch(event)`` updates the in-memory session and
returns the new step together with the side effects to perform (timers,
network calls, camera and greeter lifecycle) as command objects. The kiosk
runtime executes those commands and feeds their results back as events.

Results of asynchronous work carry the identifier of the request that
produced them (session epoch, payment request id, payment reference or
settlement attempt id). A result whose identifier no longer matches the
session is ignored, so late callbacks never act on a session they do not
belong to.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Union
from uuid import uuid4

from pydantic import BaseModel, Field

from openfridge.config import Settings, get_settings
from openfridge.kiosk.cart import Cart
from openfridge.models.checkout import (
    ContactInfo,
    LockOutcome,
    PaymentHandle,
    PaymentHandleRequest,
    SettlementRequest,
    SettlementResult,
)
from openfridge.models.inventory import InventoryItem
from openfridge.models.machine import Machine
from openfridge.models.sale import PaymentMethod
from openfridge.state.workflow import CheckoutStep, StepTransitions


class PaymentOutcome(str, Enum):
    """Terminal non-success outcomes reported by the payment provider."""

    DECLINED = "declined"
    CANCELED = "canceled"
    ERROR = "error"
    TIMEOUT = "timeout"


PAYMENT_ERROR_MESSAGES = {
    PaymentOutcome.DECLINED: "Your payment was declined. Please try again.",
    PaymentOutcome.CANCELED: "Payment was canceled.",
    PaymentOutcome.ERROR: "Payment was not completed. Please try again.",
    PaymentOutcome.TIMEOUT: "Payment timed out. Please try again.",
}


# Events


@dataclass(frozen=True)
class PresenceDetected:
    """The presence detector saw a customer."""


@dataclass(frozen=True)
class ManualActivate:
    """Tap-anywhere on the idle screen."""


@dataclass(frozen=True)
class ActivationElapsed:
    epoch: int


@dataclass(frozen=True)
class Touch:
    """Any interaction on the browse screen."""


@dataclass(frozen=True)
class AddItem:
    item: InventoryItem


@dataclass(frozen=True)
class ChangeQuantity:
    item_id: str
    delta: int


@dataclass(frozen=True)
class RemoveItem:
    item_id: str


@dataclass(frozen=True)
class InactivityElapsed:
    epoch: int


@dataclass(frozen=True)
class BeginCheckout:
    method: PaymentMethod = PaymentMethod.CARD


@dataclass(frozen=True)
class PaymentHandleReady:
    request_id: str
    handle: PaymentHandle


@dataclass(frozen=True)
class PaymentHandleFailed:
    request_id: str
    error: str


@dataclass(frozen=True)
class PaymentSucceeded:
    reference: str
    method: PaymentMethod | None = None


@dataclass(frozen=True)
class PaymentFailed:
    reference: str
    outcome: PaymentOutcome = PaymentOutcome.ERROR
    message: str | None = None


@dataclass(frozen=True)
class RetryPayment:
    """Ask for a fresh payment handle after a failed attempt."""


@dataclass(frozen=True)
class Back:
    """Explicit back navigation."""


@dataclass(frozen=True)
class UpdateContact:
    name: str | None = None
    email: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class SubmitContact:
    """Settle and attach the contact details to the receipt."""


@dataclass(frozen=True)
class SkipContact:
    """Settle without collecting contact details."""


@dataclass(frozen=True)
class SettlementSucceeded:
    attempt_id: str
    result: SettlementResult


@dataclass(frozen=True)
class SettlementFailed:
    attempt_id: str
    error: str


@dataclass(frozen=True)
class RetrySettlement:
    """Re-send the same settlement payload after a failure."""


@dataclass(frozen=True)
class NewOrder:
    """Leave the receipt screen immediately."""


@dataclass(frozen=True)
class ReceiptElapsed:
    epoch: int


Event = Union[
    PresenceDetected,
    ManualActivate,
    ActivationElapsed,
    Touch,
    AddItem,
    ChangeQuantity,
    RemoveItem,
    InactivityElapsed,
    BeginCheckout,
    PaymentHandleReady,
    PaymentHandleFailed,
    PaymentSucceeded,
    PaymentFailed,
    RetryPayment,
    Back,
    UpdateContact,
    SubmitContact,
    SkipContact,
    SettlementSucceeded,
    SettlementFailed,
    RetrySettlement,
    NewOrder,
    ReceiptElapsed,
]


# Commands


class TimerName(str, Enum):
    """Timers owned by the kiosk runtime."""

    ACTIVATION = "activation"
    INACTIVITY = "inactivity"
    RECEIPT = "receipt"


@dataclass(frozen=True)
class StartTimer:
    """Start or restart a timer; a running timer of the same name is replaced."""

    timer: TimerName
    seconds: float
    epoch: int


@dataclass(frozen=True)
class CancelTimer:
    timer: TimerName


@dataclass(frozen=True)
class CancelAllTimers:
    pass


@dataclass(frozen=True)
class StartPresence:
    """Acquire the camera and watch for a customer."""


@dataclass(frozen=True)
class StopPresence:
    """Stop watching and release the camera."""


@dataclass(frozen=True)
class Greet:
    machine_name: str


@dataclass(frozen=True)
class ResetGreeter:
    pass


@dataclass(frozen=True)
class RefreshCatalog:
    pass


@dataclass(frozen=True)
class RequestPaymentHandle:
    request_id: str
    request: PaymentHandleRequest


@dataclass(frozen=True)
class Settle:
    attempt_id: str
    request: SettlementRequest


Command = Union[
    StartTimer,
    CancelTimer,
    CancelAllTimers,
    StartPresence,
    StopPresence,
    Greet,
    ResetGreeter,
    RefreshCatalog,
    RequestPaymentHandle,
    Settle,
]


@dataclass
class Transition:
    """Outcome of one dispatch."""

    step: CheckoutStep
    commands: list[Command] = field(default_factory=list)
    accepted: bool = True


@dataclass(frozen=True)
class CheckoutPolicy:
    """Timer durations of the checkout flow, in seconds."""

    inactivity_timeout: float = 90.0
    receipt_countdown: float = 15.0
    activation_delay: float = 1.8

    @classmethod
    def from_settings(cls, settings: Settings) -> "CheckoutPolicy":
        return cls(
            inactivity_timeout=settings.inactivity_timeout,
            receipt_countdown=settings.receipt_countdown,
            activation_delay=settings.activation_delay,
        )


class PaidPayment(BaseModel):
    """A payment the provider reported as succeeded."""

    reference: str
    amount: Decimal
    method: PaymentMethod


class CheckoutSession(BaseModel):
    """Working state of one kiosk visit."""

    machine_id: str
    epoch: int = 0
    step: CheckoutStep = CheckoutStep.IDLE
    cart: Cart = Field(default_factory=Cart)
    activating: bool = False
    payment_method: PaymentMethod = PaymentMethod.CARD
    handle_request_id: str | None = None
    payment_handle: PaymentHandle | None = None
    paid: PaidPayment | None = None
    contact: ContactInfo = Field(default_factory=ContactInfo)
    settlement: SettlementRequest | None = None
    settlement_attempt_id: str | None = None
    error: str | None = None
    lock: LockOutcome | None = None
    inactivity_armed: bool = False

    @property
    def handle_pending(self) -> bool:
        return self.handle_request_id is not None

    @property
    def settling(self) -> bool:
        return self.settlement_attempt_id is not None


Handler = Callable[[Any], "list[Command] | None"]


def _new_id() -> str:
    return uuid4().hex


class CheckoutMachine:
    """Checkout state machine for one kiosk display."""

    def __init__(
        self,
        machine: Machine,
        policy: CheckoutPolicy | None = None,
        id_factory: Callable[[], str] = _new_id,
    ):
        self.machine = machine
        self.policy = policy or CheckoutPolicy.from_settings(get_settings())
        self.new_id = id_factory
        self.session = CheckoutSession(machine_id=machine.id)

        S = CheckoutStep
        self._handlers: dict[tuple[CheckoutStep, type], Handler] = {
            (S.IDLE, PresenceDetected): self._on_presence,
            (S.IDLE, ManualActivate): self._on_manual_activate,
            (S.IDLE, ActivationElapsed): self._on_activation_elapsed,
            (S.BROWSE, Touch): self._on_touch,
            (S.BROWSE, AddItem): self._on_add_item,
            (S.BROWSE, ChangeQuantity): self._on_change_quantity,
            (S.BROWSE, RemoveItem): self._on_remove_item,
            (S.BROWSE, InactivityElapsed): self._on_inactivity_elapsed,
            (S.BROWSE, BeginCheckout): self._on_begin_checkout,
            (S.BROWSE, PaymentHandleReady): self._on_handle_ready,
            (S.BROWSE, PaymentHandleFailed): self._on_handle_failed,
            (S.PAYMENT, PaymentHandleReady): self._on_handle_ready,
            (S.PAYMENT, PaymentHandleFailed): self._on_handle_failed,
            (S.PAYMENT, PaymentSucceeded): self._on_payment_succeeded,
            (S.PAYMENT, PaymentFailed): self._on_payment_failed,
            (S.PAYMENT, RetryPayment): self._on_retry_payment,
            (S.PAYMENT, Back): self._on_back_from_payment,
            (S.CONTACT, UpdateContact): self._on_update_contact,
            (S.CONTACT, SubmitContact): self._on_submit_contact,
            (S.CONTACT, SkipContact): self._on_skip_contact,
            (S.CONTACT, SettlementSucceeded): self._on_settlement_succeeded,
            (S.CONTACT, SettlementFailed): self._on_settlement_failed,
            (S.CONTACT, RetrySettlement): self._on_retry_settlement,
            (S.RECEIPT, NewOrder): self._on_new_order,
            (S.RECEIPT, ReceiptElapsed): self._on_receipt_elapsed,
        }

    @property
    def step(self) -> CheckoutStep:
        return self.session.step

    def start(self) -> list[Command]:
        """Commands that put a freshly loaded kiosk into idle."""
        return [CancelAllTimers(), ResetGreeter(), StartPresence()]

    def dispatch(self, event: Event) -> Transition:
        """Apply one event and return the side effects it requires."""
        handler = self._handlers.get((self.session.step, type(event)))
        if handler is None:
            return Transition(step=self.session.step, accepted=False)

        commands = handler(event)
        if commands is None:
            return Transition(step=self.session.step, accepted=False)

        commands.extend(self._reconcile_inactivity())
        return Transition(step=self.session.step, commands=commands)

    # Helpers

    def _go(self, step: CheckoutStep) -> None:
        if not StepTransitions.can_transition(self.session.step, step):
            raise RuntimeError(f"Invalid checkout transition {self.session.step} -> {step}")
        self.session.step = step

    def _reset(self) -> list[Command]:
        """Discard the session and return to idle with a fresh one."""
        self._go(CheckoutStep.IDLE)
        self.session = CheckoutSession(
            machine_id=self.machine.id,
            epoch=self.session.epoch + 1,
        )
        return [CancelAllTimers(), ResetGreeter(), RefreshCatalog(), StartPresence()]

    def _reconcile_inactivity(self) -> list[Command]:
        """
        Keep the inactivity timer armed exactly while browsing an empty cart.

        Any accepted event in that condition counts as activity and restarts
        the countdown.
        """
        session = self.session
        wanted = session.step == CheckoutStep.BROWSE and session.cart.is_empty

        if wanted:
            session.inactivity_armed = True
            return [
                StartTimer(
                    TimerName.INACTIVITY,
                    self.policy.inactivity_timeout,
                    session.epoch,
                )
            ]

        if session.inactivity_armed:
            session.inactivity_armed = False
            return [CancelTimer(TimerName.INACTIVITY)]

        return []

    def _request_handle(self) -> list[Command]:
        session = self.session
        request_id = self.new_id()
        session.handle_request_id = request_id
        session.error = None
        return [
            RequestPaymentHandle(
                request_id=request_id,
                request=PaymentHandleRequest(
                    amount=session.cart.total(),
                    machine_id=self.machine.id,
                    items=session.cart.line_summary(),
                    method=session.payment_method,
                ),
            )
        ]

    def _dispatch_settlement(self, contact: ContactInfo | None) -> list[Command]:
        session = self.session
        session.settlement = SettlementRequest(
            payment_reference=session.paid.reference,
            machine_id=self.machine.id,
            lines=session.cart.settlement_lines(),
            payment_method=session.paid.method,
            contact=contact,
        )
        return self._send_settlement()

    def _send_settlement(self) -> list[Command]:
        session = self.session
        attempt_id = self.new_id()
        session.settlement_attempt_id = attempt_id
        session.error = None
        return [Settle(attempt_id=attempt_id, request=session.settlement)]

    # Idle

    def _enter_browse(self) -> list[Command]:
        self.session.activating = False
        self._go(CheckoutStep.BROWSE)
        return []

    def _on_presence(self, event: PresenceDetected) -> list[Command] | None:
        if self.session.activating:
            return None

        self.session.activating = True
        commands: list[Command] = [StopPresence(), Greet(self.machine.name)]

        if self.policy.activation_delay <= 0:
            return commands + self._enter_browse()

        commands.append(
            StartTimer(TimerName.ACTIVATION, self.policy.activation_delay, self.session.epoch)
        )
        return commands

    def _on_manual_activate(self, event: ManualActivate) -> list[Command]:
        if self.session.activating:
            commands: list[Command] = [CancelTimer(TimerName.ACTIVATION)]
        else:
            commands = [StopPresence()]
        return commands + self._enter_browse()

    def _on_activation_elapsed(self, event: ActivationElapsed) -> list[Command] | None:
        if event.epoch != self.session.epoch or not self.session.activating:
            return None
        return self._enter_browse()

    # Browse

    def _cart_locked(self) -> bool:
        return self.session.handle_pending

    def _on_touch(self, event: Touch) -> list[Command]:
        return []

    def _on_add_item(self, event: AddItem) -> list[Command] | None:
        if self._cart_locked() or event.item.machine_id != self.machine.id:
            return None
        self.session.cart.add(event.item)
        return []

    def _on_change_quantity(self, event: ChangeQuantity) -> list[Command] | None:
        if self._cart_locked():
            return None
        self.session.cart.update_quantity(event.item_id, event.delta)
        return []

    def _on_remove_item(self, event: RemoveItem) -> list[Command] | None:
        if self._cart_locked():
            return None
        self.session.cart.remove(event.item_id)
        return []

    def _on_inactivity_elapsed(self, event: InactivityElapsed) -> list[Command] | None:
        session = self.session
        if event.epoch != session.epoch or not session.cart.is_empty or session.handle_pending:
            return None
        return self._reset()

    def _on_begin_checkout(self, event: BeginCheckout) -> list[Command] | None:
        session = self.session
        if session.handle_pending or session.cart.is_empty or session.cart.total() <= 0:
            return None
        session.payment_method = event.method
        return self._request_handle()

    # Payment

    def _on_handle_ready(self, event: PaymentHandleReady) -> list[Command] | None:
        session = self.session
        if event.request_id != session.handle_request_id:
            return None

        session.handle_request_id = None
        session.payment_handle = event.handle
        session.error = None

        if session.step == CheckoutStep.BROWSE:
            self._go(CheckoutStep.PAYMENT)
        return []

    def _on_handle_failed(self, event: PaymentHandleFailed) -> list[Command] | None:
        session = self.session
        if event.request_id != session.handle_request_id:
            return None

        session.handle_request_id = None
        session.error = event.error or "Could not start payment. Please try again."
        return []

    def _matches_handle(self, reference: str) -> bool:
        handle = self.session.payment_handle
        return handle is not None and handle.reference == reference

    def _on_payment_succeeded(self, event: PaymentSucceeded) -> list[Command] | None:
        session = self.session
        if not self._matches_handle(event.reference):
            return None

        handle = session.payment_handle
        session.paid = PaidPayment(
            reference=handle.reference,
            amount=handle.amount,
            method=event.method or handle.method,
        )
        # The handle is consumed; payment cannot be re-entered from here on
        session.payment_handle = None
        session.error = None
        self._go(CheckoutStep.CONTACT)
        return []

    def _on_payment_failed(self, event: PaymentFailed) -> list[Command] | None:
        session = self.session
        if not self._matches_handle(event.reference):
            return None

        session.payment_handle = None
        session.error = event.message or PAYMENT_ERROR_MESSAGES[event.outcome]
        return []

    def _on_retry_payment(self, event: RetryPayment) -> list[Command] | None:
        session = self.session
        if session.payment_handle is not None or session.handle_pending:
            return None
        return self._request_handle()

    def _on_back_from_payment(self, event: Back) -> list[Command]:
        session = self.session
        session.payment_handle = None
        session.handle_request_id = None
        session.error = None
        self._go(CheckoutStep.BROWSE)
        return []

    # Contact

    def _on_update_contact(self, event: UpdateContact) -> list[Command] | None:
        session = self.session
        if session.settlement is not None:
            return None
        session.contact = ContactInfo(name=event.name, email=event.email, phone=event.phone)
        return []

    def _on_submit_contact(self, event: SubmitContact) -> list[Command] | None:
        if self.session.settlement is not None:
            return None
        contact = self.session.contact
        return self._dispatch_settlement(None if contact.is_blank else contact)

    def _on_skip_contact(self, event: SkipContact) -> list[Command] | None:
        if self.session.settlement is not None:
            return None
        self.session.contact = ContactInfo()
        return self._dispatch_settlement(None)

    def _on_settlement_succeeded(self, event: SettlementSucceeded) -> list[Command] | None:
        session = self.session
        if event.attempt_id != session.settlement_attempt_id:
            return None

        if not event.result.success:
            return self._on_settlement_failed(
                SettlementFailed(event.attempt_id, "Sale was not confirmed")
            )

        session.settlement_attempt_id = None
        session.error = None
        session.lock = event.result.lock
        self._go(CheckoutStep.RECEIPT)
        return [StartTimer(TimerName.RECEIPT, self.policy.receipt_countdown, session.epoch)]

    def _on_settlement_failed(self, event: SettlementFailed) -> list[Command] | None:
        session = self.session
        if event.attempt_id != session.settlement_attempt_id:
            return None

        session.settlement_attempt_id = None
        session.error = (
            "Your payment went through but we could not record the purchase. "
            f"Please try again. ({event.error})"
        )
        return []

    def _on_retry_settlement(self, event: RetrySettlement) -> list[Command] | None:
        session = self.session
        if session.settlement is None or session.settling or session.error is None:
            return None
        return self._send_settlement()

    # Receipt

    def _on_new_order(self, event: NewOrder) -> list[Command]:
        return self._reset()

    def _on_receipt_elapsed(self, event: ReceiptElapsed) -> list[Command] | None:
        if event.epoch != self.session.epoch:
            return None
        return self._reset()

    # Presentation

    def snapshot(self) -> dict[str, Any]:
        """Session state for the display."""
        session = self.session
        data = session.model_dump(mode="json", exclude={"settlement", "inactivity_armed"})
        data.update(
            {
                "machine_name": self.machine.name,
                "total": str(session.cart.total()),
                "count": session.cart.count(),
                "handle_pending": session.handle_pending,
                "settling": session.settling,
                "can_checkout": (
                    session.step == CheckoutStep.BROWSE
                    and not session.cart.is_empty
                    and not session.handle_pending
                ),
                # No cancel affordance once the customer has paid
                "can_go_back": session.step == CheckoutStep.PAYMENT,
                "unlocked": bool(session.lock and session.lock.unlocked),
            }
        )
        return data
