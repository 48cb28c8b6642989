"""Tests for the kiosk logging helpers."""

import pytest
from structlog.testing import capture_logs

from openfridge.utils.logging import KioskLogger, setup_logging
from openfridge.utils.tracing import SessionTracer


@pytest.fixture(autouse=True)
def debug_logging():
    setup_logging(level="DEBUG", log_format="json")
    yield
    setup_logging()


def test_transition_and_ignored_events_are_logged() -> None:
    with capture_logs() as logs:
        kiosk_logger = KioskLogger("fridge-1")
        kiosk_logger.log_transition("ManualActivate", "idle", "browse", 0, commands=["StartTimer"])
        kiosk_logger.log_ignored("NewOrder", "browse", 0)

    transition, ignored = logs
    assert transition["event"] == "checkout_transition"
    assert transition["checkout_event"] == "ManualActivate"
    assert transition["to_step"] == "browse"
    assert transition["commands"] == ["StartTimer"]
    assert transition["machine_id"] == "fridge-1"

    assert ignored["event"] == "checkout_event_ignored"
    assert ignored["checkout_event"] == "NewOrder"
    assert ignored["log_level"] == "debug"


def test_tracer_metadata_is_kept_and_logged() -> None:
    tracer = SessionTracer("fridge-1")

    tracer.add_event("ignored", "idle", 3, checkout_event="PaymentSucceeded")

    [entry] = tracer.events
    assert entry.event_type == "ignored"
    assert entry.metadata == {"checkout_event": "PaymentSucceeded"}
