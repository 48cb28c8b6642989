"""Kiosk display: cart, checkout state machine and its runtime."""

from openfridge.kiosk.cart import Cart, CartLine
from openfridge.kiosk.checkout import CheckoutMachine, CheckoutPolicy, CheckoutSession, Transition
from openfridge.kiosk.gateway import (
    CheckoutGatewayError,
    HttpCheckoutGateway,
    LocalCheckoutGateway,
)
from openfridge.kiosk.greeter import Greeter
from openfridge.kiosk.hub import KioskHub
from openfridge.kiosk.presence import CameraFrameSource, PresenceDetector
from openfridge.kiosk.runtime import KioskRuntime

__all__ = [
    "Cart",
    "CartLine",
    "CheckoutMachine",
    "CheckoutPolicy",
    "CheckoutSession",
    "Transition",
    "CheckoutGatewayError",
    "LocalCheckoutGateway",
    "HttpCheckoutGateway",
    "Greeter",
    "KioskHub",
    "PresenceDetector",
    "CameraFrameSource",
    "KioskRuntime",
]
