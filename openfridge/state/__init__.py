"""State management modules."""

from openfridge.state.manager import StateManager
from openfridge.state.store import FridgeStore, MachineNotFoundError
from openfridge.state.workflow import CheckoutStep, StepTransitions

__all__ = [
    "StateManager",
    "FridgeStore",
    "MachineNotFoundError",
    "CheckoutStep",
    "StepTransitions",
]
