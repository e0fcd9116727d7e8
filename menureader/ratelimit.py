"""Fixed-interval gate for outbound requests."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

from .cancellation import CancellationToken


class IntervalGate:
    """Spaces successive callers at least ``interval`` seconds apart.

    Callers are admitted one at a time in arrival order; each waits until
    ``interval`` seconds have passed since the previous admission.
    """

    def __init__(
        self,
        interval: float = 0.3,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        if interval < 0:
            raise ValueError("interval must be >= 0")
        self._interval = interval
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last: float | None = None

    @property
    def interval(self) -> float:
        return self._interval

    async def wait(self, cancel_token: CancellationToken | None = None) -> None:
        """Block until this caller may proceed.

        Raises:
            AnalysisCancelledError: If ``cancel_token`` is cancelled while
                waiting.
        """
        async with self._lock:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            if self._last is not None:
                remaining = self._interval - (self._clock() - self._last)
                if remaining > 0:
                    if self._sleep is not None:
                        await self._sleep(remaining)
                    elif cancel_token is not None:
                        await cancel_token.sleep(remaining)
                    else:
                        await asyncio.sleep(remaining)
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            self._last = self._clock()
