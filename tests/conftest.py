"""
Pytest configuration and fixtures for metrics-dispatcher.

Provides cross-platform event loop configuration and point factories.
"""

import asyncio
import sys
from itertools import count

import pytest
from loguru import logger

from metrics_dispatcher import Point

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


@pytest.fixture
def make_point():
    """Factory for numbered points: make_point(i) -> Point(measurement="m", fields={"v": i})."""

    def _make(i: int, **kwargs) -> Point:
        kwargs.setdefault("measurement", "m")
        kwargs.setdefault("fields", {"v": i})
        return Point(**kwargs)

    return _make


@pytest.fixture
def dispatcher_id(request):
    """Unique dispatcher id per test so Prometheus series don't collide."""
    return f"{request.node.name}-{next(_ids)}"


_ids = count(1)


@pytest.fixture
def reset_logger():
    """Restore the default loguru sink after tests that reconfigure it."""
    yield
    logger.remove()
    logger.add(sys.stderr)
