from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class CachedValue(Generic[T]):
    """
    Read-mostly cache for one value: return the stored value if present,
    otherwise fetch once and store it.

    With `ttl_seconds` the stored value expires and the next `get` refetches.
    A failed fetch stores nothing and propagates.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T]],
        *,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self._fetch = fetch
        self._ttl_seconds = ttl_seconds
        self._clock: Callable[[], float] = clock or time.monotonic
        self._value: T | None = None
        self._stored_at: float | None = None

    def _fresh(self) -> bool:
        if self._stored_at is None:
            return False
        if self._ttl_seconds is None:
            return True
        return self._clock() - self._stored_at < self._ttl_seconds

    async def get(self) -> T:
        if self._fresh():
            return self._value  # type: ignore[return-value]
        value = await self._fetch()
        self._value = value
        self._stored_at = self._clock()
        return value
