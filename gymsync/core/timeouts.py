"""Bounded access to the session, membership and cache stores."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError

from gymsync.core.errors import TemporaryUnavailable

log = structlog.get_logger()

T = TypeVar("T")

UNAVAILABLE_ERRORS = (
    asyncio.TimeoutError,
    OperationalError,
    PoolTimeoutError,
    RedisConnectionError,
    RedisTimeoutError,
)


async def bounded(awaitable: Awaitable[T], *, timeout: float, operation: str) -> T:
    """Await a store call, surfacing timeouts and outages as ``TemporaryUnavailable``.

    A slow or unreachable store is never reported as "not found".
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except UNAVAILABLE_ERRORS as exc:
        log.warning("store.unavailable", operation=operation, error=type(exc).__name__)
        raise TemporaryUnavailable() from exc
