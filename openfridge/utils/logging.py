"""Structured logging configuration."""

import logging
import sys
from typing import Any

import structlog
from pythonjsonlogger import jsonlogger

from openfridge.config import get_settings

# Per-request client logs drown out checkout events at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def _build_handler(log_format: str) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    if log_format == "json":
        handler.setFormatter(
            jsonlogger.JsonFormatter(
                fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
                rename_fields={"levelname": "level", "asctime": "timestamp"},
            )
        )
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    return handler


def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure stdlib and structlog output for the kiosk service.

    Args:
        level: Overrides ``Settings.log_level``
        log_format: ``"json"`` or ``"text"``; overrides ``Settings.log_format``
    """
    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    log_format = log_format or settings.log_format
    log_level = getattr(logging, level_name)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(_build_handler(log_format))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class KioskLogger:
    """Specialized logger for one kiosk's checkout session."""

    def __init__(self, machine_id: str):
        self.machine_id = machine_id
        self.logger = get_logger("openfridge.kiosk").bind(machine_id=machine_id)

    def log_transition(
        self,
        checkout_event: str,
        from_step: str,
        to_step: str,
        epoch: int,
        **kwargs: Any,
    ) -> None:
        """Log an accepted state transition."""
        self.logger.info(
            "checkout_transition",
            checkout_event=checkout_event,
            from_step=from_step,
            to_step=to_step,
            epoch=epoch,
            **kwargs,
        )

    def log_ignored(self, checkout_event: str, step: str, epoch: int, **kwargs: Any) -> None:
        """Log an event the session no longer cares about."""
        self.logger.debug(
            "checkout_event_ignored",
            checkout_event=checkout_event,
            step=step,
            epoch=epoch,
            **kwargs,
        )

    def log_command(
        self,
        command: str,
        duration_ms: float | None = None,
        success: bool = True,
        **kwargs: Any,
    ) -> None:
        """Log the execution of a side-effect command."""
        log_data: dict[str, Any] = {"command": command, "success": success}

        if duration_ms is not None:
            log_data["duration_ms"] = duration_ms

        log_data.update(kwargs)
        self.logger.info("checkout_command", **log_data)

    def log_error(self, error: str, **kwargs: Any) -> None:
        """Log an error."""
        self.logger.error("checkout_error", error=error, **kwargs)
