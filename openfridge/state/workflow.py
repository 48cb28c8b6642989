"""Checkout step machine: steps and allowed transitions."""

from enum import Enum


class CheckoutStep(str, Enum):
    """Steps of one kiosk visit."""

    IDLE = "idle"
    BROWSE = "browse"
    PAYMENT = "payment"
    CONTACT = "contact"
    RECEIPT = "receipt"


class StepTransitions:
    """Valid checkout step transitions."""

    TRANSITIONS = {
        CheckoutStep.IDLE: [CheckoutStep.BROWSE],
        CheckoutStep.BROWSE: [
            CheckoutStep.PAYMENT,
            CheckoutStep.IDLE,  # Inactivity with an empty cart
        ],
        CheckoutStep.PAYMENT: [
            CheckoutStep.CONTACT,
            CheckoutStep.BROWSE,  # Customer backs out before paying
        ],
        CheckoutStep.CONTACT: [CheckoutStep.RECEIPT],
        CheckoutStep.RECEIPT: [CheckoutStep.IDLE],
    }

    @classmethod
    def can_transition(cls, from_step: CheckoutStep, to_step: CheckoutStep) -> bool:
        """Check if a step transition is valid."""
        return to_step in cls.TRANSITIONS.get(from_step, [])
