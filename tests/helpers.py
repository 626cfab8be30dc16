"""Shared constants and fakes for the test suite."""
import asyncio
from typing import Any, Dict, List, Optional

# 2024-06-15T12:00:00Z
NOW_MS = 1718452800000
DAY_MS = 86_400_000
HOUR_MS = 3_600_000


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = NOW_MS / 1000):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def iso(normalizer, instant_ms: int) -> str:
    return normalizer.to_iso_string(instant_ms)


def envelope(field: str, records: List[Dict[str, Any]], timestamp: Optional[str] = None) -> Dict[str, Any]:
    payload = {field: records, "count": len(records)}
    if timestamp is not None:
        payload["timestamp"] = timestamp
    return payload


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until true; store reads hop through worker threads."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)
