"""REST smart lock collaborator.

Works with any lock that accepts a JSON ``POST`` of
``{"action": "unlock" | "lock", "machineId": ..., "duration": ...}``
(August/Yale bridges, Switchbot, a custom ESP32 relay, ...).
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from openfridge.config import get_settings
from openfridge.models.checkout import LockOutcome
from openfridge.models.machine import Machine
from openfridge.utils.logging import get_logger

logger = get_logger(__name__)


class SmartLockClient:
    """Unlocks a machine's door and schedules the re-lock."""

    def __init__(
        self,
        timeout: float | None = None,
        default_duration: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.timeout = timeout if timeout is not None else settings.lock_timeout
        self.default_duration = (
            default_duration
            if default_duration is not None
            else settings.default_lock_duration_sec
        )
        self.transport = transport
        self._relocks: dict[str, tuple[asyncio.Task, Machine]] = {}

    def _headers(self, api_key: str | None) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    async def _post(self, machine: Machine, payload: dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            return await client.post(
                machine.lock_api_url,
                json=payload,
                headers=self._headers(machine.lock_api_key),
            )

    async def unlock(self, machine: Machine) -> LockOutcome:
        """
        Unlock a machine's door for its configured duration.

        Never raises: every failure is reported in ``LockOutcome.error``.
        A disabled lock is not an error and reports ``unlocked=False`` with
        no error.
        """
        if not machine.lock_enabled:
            return LockOutcome(unlocked=False)

        if not machine.lock_api_url:
            return LockOutcome(unlocked=False, error="No lock API URL configured")

        duration = machine.lock_duration_sec or self.default_duration
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=duration)

        try:
            response = await self._post(
                machine,
                {"action": "unlock", "machineId": machine.id, "duration": duration},
            )
        except httpx.HTTPError as e:
            message = str(e) or type(e).__name__
            logger.error("lock_unlock_failed", machine_id=machine.id, error=message)
            return LockOutcome(unlocked=False, error=message)

        if not response.is_success:
            logger.error(
                "lock_api_error",
                machine_id=machine.id,
                status_code=response.status_code,
            )
            return LockOutcome(
                unlocked=False,
                error=f"Lock API error: {response.status_code}",
            )

        logger.info("machine_unlocked", machine_id=machine.id, duration=duration)

        self._schedule_relock(machine, duration)

        return LockOutcome(unlocked=True, expires_at=expires_at)

    def _schedule_relock(self, machine: Machine, delay: float) -> None:
        """Re-lock after ``delay`` seconds; a newer unlock replaces the pending one."""
        pending = self._relocks.pop(machine.id, None)
        if pending:
            pending[0].cancel()

        task = asyncio.create_task(self._relock_after(machine, delay))
        self._relocks[machine.id] = (task, machine)

    async def _relock_after(self, machine: Machine, delay: float) -> None:
        await asyncio.sleep(delay)
        self._relocks.pop(machine.id, None)
        await self.lock(machine)

    async def lock(self, machine: Machine) -> bool:
        """Send a lock command. Failures are logged, never raised."""
        try:
            response = await self._post(machine, {"action": "lock", "machineId": machine.id})
        except httpx.HTTPError as e:
            logger.error("lock_relock_failed", machine_id=machine.id, error=str(e))
            return False

        if not response.is_success:
            logger.error(
                "lock_relock_failed",
                machine_id=machine.id,
                status_code=response.status_code,
            )
            return False

        logger.info("machine_relocked", machine_id=machine.id)
        return True

    def pending_relocks(self) -> list[str]:
        """Machine ids with a re-lock still scheduled."""
        return list(self._relocks)

    async def shutdown(self) -> None:
        """Fire every pending re-lock now so no door stays open."""
        pending = list(self._relocks.values())
        self._relocks.clear()

        for task, machine in pending:
            task.cancel()
            await self.lock(machine)


# Global lock client instance
_lock_client: SmartLockClient | None = None


def get_lock_client() -> SmartLockClient:
    """Get the global lock client instance."""
    global _lock_client
    if _lock_client is None:
        _lock_client = SmartLockClient()
    return _lock_client
