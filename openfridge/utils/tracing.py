"""Checkout session tracing."""

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generator

from openfridge.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class TraceEvent:
    """Individual trace event in a kiosk session."""

    timestamp: datetime
    event_type: str
    step: str
    epoch: int
    duration_ms: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class SessionTracer:
    """Traces transitions and side effects for one kiosk."""

    def __init__(self, machine_id: str, max_events: int = 500):
        self.machine_id = machine_id
        self.max_events = max_events
        self.events: list[TraceEvent] = []
        self.start_time = time.time()

    def add_event(
        self,
        event_type: str,
        step: str,
        epoch: int,
        duration_ms: float | None = None,
        **metadata: Any,
    ) -> None:
        """Add a trace event."""
        event = TraceEvent(
            timestamp=datetime.now(timezone.utc),
            event_type=event_type,
            step=step,
            epoch=epoch,
            duration_ms=duration_ms,
            metadata=metadata,
        )
        self.events.append(event)

        # Long-running kiosks keep only the recent tail
        if len(self.events) > self.max_events:
            del self.events[: len(self.events) - self.max_events]

        logger.debug(
            "trace_event",
            machine_id=self.machine_id,
            event_type=event_type,
            step=step,
            epoch=epoch,
            duration_ms=duration_ms,
            **metadata,
        )

    @contextmanager
    def trace_operation(
        self, operation: str, step: str, epoch: int, **metadata: Any
    ) -> Generator[None, None, None]:
        """Context manager to trace an operation with timing."""
        start = time.time()
        try:
            yield
        finally:
            duration_ms = (time.time() - start) * 1000
            self.add_event(operation, step, epoch, duration_ms=duration_ms, **metadata)

    def get_trace_summary(self) -> dict[str, Any]:
        """Get a summary of the trace."""
        total_duration = (time.time() - self.start_time) * 1000

        step_stats: dict[str, dict[str, Any]] = {}
        for event in self.events:
            if event.step not in step_stats:
                step_stats[event.step] = {
                    "event_count": 0,
                    "total_duration_ms": 0.0,
                }

            step_stats[event.step]["event_count"] += 1
            if event.duration_ms:
                step_stats[event.step]["total_duration_ms"] += event.duration_ms

        return {
            "machine_id": self.machine_id,
            "total_duration_ms": total_duration,
            "total_events": len(self.events),
            "step_stats": step_stats,
            "events": [
                {
                    "timestamp": event.timestamp.isoformat(),
                    "event_type": event.event_type,
                    "step": event.step,
                    "epoch": event.epoch,
                    "duration_ms": event.duration_ms,
                    "metadata": event.metadata,
                }
                for event in self.events
            ],
        }
