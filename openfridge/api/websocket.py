"""WebSocket handlers for kiosk displays."""

import json
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from openfridge.kiosk.checkout import (
    AddItem,
    Back,
    BeginCheckout,
    ChangeQuantity,
    Event,
    ManualActivate,
    NewOrder,
    PaymentFailed,
    PaymentOutcome,
    PaymentSucceeded,
    PresenceDetected,
    RemoveItem,
    RetryPayment,
    RetrySettlement,
    SkipContact,
    SubmitContact,
    Touch,
    UpdateContact,
)
from openfridge.kiosk.hub import KioskHub
from openfridge.kiosk.runtime import KioskRuntime
from openfridge.models.sale import PaymentMethod
from openfridge.state.store import MachineNotFoundError
from openfridge.utils.logging import get_logger

logger = get_logger(__name__)


class KioskMessage(BaseModel):
    """Message sent by a kiosk display."""

    type: str
    item_id: str | None = None
    delta: int | None = None
    method: PaymentMethod | None = None
    reference: str | None = None
    outcome: PaymentOutcome | None = None
    message: str | None = None
    name: str | None = None
    email: str | None = None
    phone: str | None = None


class InvalidKioskMessage(ValueError):
    """A well-formed message that cannot become a checkout event."""


SIMPLE_EVENTS: dict[str, type] = {
    "presence": PresenceDetected,
    "activate": ManualActivate,
    "touch": Touch,
    "retry_payment": RetryPayment,
    "back": Back,
    "submit_contact": SubmitContact,
    "skip_contact": SkipContact,
    "retry_settlement": RetrySettlement,
    "new_order": NewOrder,
}


def _require(value: Any, field: str, message_type: str) -> Any:
    if value is None:
        raise InvalidKioskMessage(f"'{field}' is required for {message_type}")
    return value


def build_event(runtime: KioskRuntime, message: KioskMessage) -> Event:
    """
    Translate a display message into a checkout event.

    Raises:
        InvalidKioskMessage: Unknown type, missing field or unknown item
    """
    kind = message.type

    if kind in SIMPLE_EVENTS:
        return SIMPLE_EVENTS[kind]()

    if kind == "add_item":
        item_id = _require(message.item_id, "item_id", kind)
        item = runtime.find_item(item_id)
        if item is None:
            raise InvalidKioskMessage(f"Item {item_id} is not available")
        return AddItem(item)

    if kind == "change_quantity":
        return ChangeQuantity(
            _require(message.item_id, "item_id", kind),
            _require(message.delta, "delta", kind),
        )

    if kind == "remove_item":
        return RemoveItem(_require(message.item_id, "item_id", kind))

    if kind == "begin_checkout":
        return BeginCheckout(message.method or PaymentMethod.CARD)

    if kind == "payment_succeeded":
        return PaymentSucceeded(_require(message.reference, "reference", kind), message.method)

    if kind == "payment_failed":
        return PaymentFailed(
            _require(message.reference, "reference", kind),
            message.outcome or PaymentOutcome.ERROR,
            message.message,
        )

    if kind == "update_contact":
        return UpdateContact(name=message.name, email=message.email, phone=message.phone)

    raise InvalidKioskMessage(f"Unknown message type: {kind}")


class ConnectionManager:
    """Manages display connections per machine."""

    def __init__(self) -> None:
        self.active_connections: dict[str, set[WebSocket]] = {}

    async def connect(self, machine_id: str, websocket: WebSocket) -> None:
        """Accept and register a WebSocket connection."""
        await websocket.accept()
        self.active_connections.setdefault(machine_id, set()).add(websocket)
        logger.info(
            "websocket_connected",
            machine_id=machine_id,
            displays=self.connection_count(machine_id),
        )

    def disconnect(self, machine_id: str, websocket: WebSocket) -> None:
        """Remove a WebSocket connection."""
        connections = self.active_connections.get(machine_id)
        if connections and websocket in connections:
            connections.discard(websocket)
            if not connections:
                del self.active_connections[machine_id]
            logger.info("websocket_disconnected", machine_id=machine_id)

    def connection_count(self, machine_id: str) -> int:
        """Number of displays attached to a machine."""
        return len(self.active_connections.get(machine_id, ()))


# Global connection manager
manager = ConnectionManager()


async def handle_kiosk_socket(
    websocket: WebSocket,
    machine_id: str,
    hub: KioskHub,
) -> None:
    """
    Drive a kiosk session over a WebSocket connection.

    Args:
        websocket: WebSocket connection
        machine_id: Machine the display belongs to
        hub: Registry of live kiosk runtimes
    """
    try:
        runtime = await hub.get_or_start(machine_id)
    except MachineNotFoundError:
        await websocket.close(code=1008, reason="Unknown machine")
        return

    async def publish(snapshot: dict[str, Any]) -> None:
        await websocket.send_json({"type": "session", "session": snapshot})

    await manager.connect(machine_id, websocket)
    await websocket.send_json({"type": "session", "session": runtime.snapshot()})
    runtime.subscribe(publish)

    try:
        while True:
            data = await websocket.receive_text()

            try:
                message = KioskMessage(**json.loads(data))

                if message.type == "ping":
                    await websocket.send_json({"type": "pong"})
                    continue

                transition = await runtime.dispatch(build_event(runtime, message))

                if not transition.accepted:
                    await websocket.send_json(
                        {
                            "type": "ignored",
                            "event": message.type,
                            "step": transition.step.value,
                        }
                    )

            except (json.JSONDecodeError, TypeError, ValidationError) as e:
                await websocket.send_json(
                    {
                        "type": "error",
                        "message": "Invalid message format",
                        "details": str(e),
                    }
                )

            except InvalidKioskMessage as e:
                await websocket.send_json({"type": "error", "message": str(e)})

    except WebSocketDisconnect:
        logger.info("websocket_client_disconnected", machine_id=machine_id)

    except Exception as e:
        logger.error("websocket_error", machine_id=machine_id, error=str(e))

    finally:
        runtime.unsubscribe(publish)
        manager.disconnect(machine_id, websocket)
