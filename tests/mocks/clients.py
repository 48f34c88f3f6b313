"""
Mock objects for testing coalesce and CoalescingSession.
"""

import asyncio


class MockClient:
    """Mock client for testing."""

    def __init__(self):
        self.value = 42

    async def async_method(self, x):
        await asyncio.sleep(0.01)
        return x * 3


def sync_function(x):
    """Test synchronous function."""
    return x * 2


async def async_function(x):
    """Test asynchronous function."""
    await asyncio.sleep(0.01)
    return x * 3
