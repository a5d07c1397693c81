"""Tests for the call throttle shared by the AI-calling stages."""

import asyncio

from expense_ledger.pipeline import throttle as throttle_module
from expense_ledger.pipeline.throttle import Throttle


class TestThrottle:
    """Tests for Throttle."""

    def test_sleeps_between_calls_only(self, monkeypatch):
        """Test the first call goes straight through and later ones wait."""
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr(throttle_module.asyncio, "sleep", fake_sleep)
        throttle = Throttle(1.5)

        async def three_calls():
            for _ in range(3):
                await throttle.wait()

        asyncio.run(three_calls())
        assert delays == [1.5, 1.5]

    def test_zero_delay_never_sleeps(self, monkeypatch):
        """Test a zero delay disables throttling."""
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr(throttle_module.asyncio, "sleep", fake_sleep)
        throttle = Throttle(0)

        asyncio.run(throttle.wait())
        asyncio.run(throttle.wait())
        assert delays == []
