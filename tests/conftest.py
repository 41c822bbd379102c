"""
Pytest configuration and shared fixtures.
"""

import asyncio
import copy
from datetime import datetime
from typing import Any, Dict, List

import pytest
from unittest.mock import AsyncMock

from notifications.discord import Notifier
from pipeline.models import CanonicalSnapshot, StockItem


class StubFetcher:
    """
    Upstream stand-in returning queued payloads.

    Each read yields to the event loop like a real network call. The last
    payload keeps being returned once the queue is drained.
    """

    def __init__(self, *payloads: Any):
        self.payloads: List[Any] = list(payloads)
        self.calls = 0

    async def fetch_all(self) -> Dict[str, Any]:
        self.calls += 1
        await asyncio.sleep(0.01)
        payload = self.payloads[0] if len(self.payloads) == 1 else self.payloads.pop(0)
        if isinstance(payload, BaseException):
            raise payload
        return copy.deepcopy(payload)


def make_payload(
    gear: Dict[str, Any] = None,
    seeds: Dict[str, Any] = None,
    eggs: Dict[str, Any] = None,
    weather: str = "Sunny",
    temp: Any = "22"
) -> Dict[str, Any]:
    """Build a raw payload shaped like the three upstream responses."""
    return {
        "stock": {
            "gear": gear if gear is not None else {"Watering Can": "3", "Trowel": "1"},
            "seeds": seeds if seeds is not None else {"Carrot": "5", "Strawberry": "0"},
        },
        "egg": {"egg": eggs if eggs is not None else {"Common Egg": "2"}},
        "weather": {"weather": weather, "temp": temp},
    }


def make_snapshot(observed_at: datetime = None, weather: str = None, temperature: str = None, **categories) -> CanonicalSnapshot:
    """Build a snapshot from keyword categories of (name, quantity) pairs."""
    return CanonicalSnapshot(
        observed_at=observed_at or datetime(2026, 10, 18, 12, 0, 0),
        categories={
            name: [StockItem(name=item, quantity=quantity) for item, quantity in items]
            for name, items in categories.items()
        },
        weather=weather,
        temperature=temperature,
    )


@pytest.fixture
def sample_payload():
    """Raw payload with one absent-sentinel seed."""
    return make_payload()


@pytest.fixture
def mock_notifier():
    """Notifier whose send is an AsyncMock."""
    notifier = AsyncMock(spec=Notifier)
    notifier.send.return_value = None
    return notifier
