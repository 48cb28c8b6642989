"""Spoken greeting when a customer walks up."""

import asyncio
import random
from datetime import datetime
from typing import Any, Callable

import pyttsx3

from openfridge.utils.logging import get_logger

logger = get_logger(__name__)

GREETINGS = {
    "morning": ["Good morning!", "Morning! Grab something fresh.", "Rise and shine!"],
    "afternoon": ["Good afternoon!", "Hi there! Take a look inside.", "Time for a break?"],
    "evening": ["Good evening!", "Evening! Need a snack?", "Hello, night owl!"],
}


def time_of_day(hour: int) -> str:
    if hour < 12:
        return "morning"
    if hour < 17:
        return "afternoon"
    return "evening"


def compose_greeting(machine_name: str, hour: int, rng: random.Random | None = None) -> str:
    """Pick a time-of-day greeting, sometimes naming the machine."""
    rng = rng or random.Random()
    phrase = rng.choice(GREETINGS[time_of_day(hour)])
    if machine_name and rng.random() < 0.5:
        return f"{phrase} Welcome to {machine_name}."
    return phrase


def _default_engine() -> Any:
    return pyttsx3.init()


class Greeter:
    """
    Speaks at most once per session and never twice within the cooldown.

    The speech engine is acquired on first use and released by ``reset``.
    Failures are logged and otherwise ignored.
    """

    def __init__(
        self,
        enabled: bool = True,
        cooldown: float = 10.0,
        engine_factory: Callable[[], Any] = _default_engine,
        clock: Callable[[], float] | None = None,
    ):
        self.enabled = enabled
        self.cooldown = cooldown
        self.engine_factory = engine_factory
        self.clock = clock or (lambda: asyncio.get_running_loop().time())
        self.spoken = False
        self._last_spoken: float | None = None
        self._engine: Any = None

    def should_speak(self) -> bool:
        if not self.enabled or self.spoken:
            return False
        if self._last_spoken is not None and self.clock() - self._last_spoken < self.cooldown:
            return False
        return True

    async def greet(self, machine_name: str) -> str | None:
        """
        Speak a greeting if allowed.

        Returns:
            The text spoken, or None when suppressed
        """
        if not self.should_speak():
            return None

        self.spoken = True
        self._last_spoken = self.clock()
        text = compose_greeting(machine_name, datetime.now().hour)

        try:
            await asyncio.to_thread(self._speak, text)
        except Exception as e:
            logger.warning("greeting_failed", error=str(e))
            return None

        logger.info("greeting_spoken", text=text)
        return text

    def _speak(self, text: str) -> None:
        if self._engine is None:
            self._engine = self.engine_factory()
        self._engine.say(text)
        self._engine.runAndWait()

    def reset(self) -> None:
        """Re-arm for the next session; the cooldown still applies."""
        self.spoken = False
        engine, self._engine = self._engine, None
        if engine is not None:
            try:
                engine.stop()
            except Exception as e:
                logger.debug("speech_engine_stop_failed", error=str(e))
