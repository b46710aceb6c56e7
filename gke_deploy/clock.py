"""Clock used when polling for readiness and retrying copies."""

from abc import ABC, abstractmethod
import asyncio
import time

__all__ = [
    "Clock",
    "SystemClock",
]


class Clock(ABC):
    """Source of time and suspension between polling passes."""

    @abstractmethod
    def now(self) -> float:
        """Return the current time in seconds."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend for the given number of seconds."""


class SystemClock(Clock):
    """A clock backed by the monotonic system timer and asyncio."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
