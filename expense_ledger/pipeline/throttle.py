"""Spacing between consecutive calls to rate-limited services."""

import asyncio


class Throttle:
    """Sleeps between consecutive calls, not before the first."""

    def __init__(self, delay_seconds: float):
        self._delay = delay_seconds
        self._called = False

    async def wait(self) -> None:
        if self._called and self._delay > 0:
            await asyncio.sleep(self._delay)
        self._called = True
