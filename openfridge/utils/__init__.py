"""Utility modules."""

from openfridge.utils.logging import KioskLogger, get_logger, setup_logging
from openfridge.utils.tracing import SessionTracer

__all__ = ["setup_logging", "get_logger", "KioskLogger", "SessionTracer"]
