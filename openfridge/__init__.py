"""Self-service smart fridge kiosk."""

__version__ = "0.1.0"
