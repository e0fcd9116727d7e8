"""Cooperative cancellation shared by the pipeline and the request client."""

from __future__ import annotations

import asyncio

from .exceptions import AnalysisCancelledError


class CancellationToken:
    """A flag that long-running work checks at its suspension points."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AnalysisCancelledError()

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first.

        Raises:
            AnalysisCancelledError: If the token is (or becomes) cancelled.
        """
        self.raise_if_cancelled()
        if seconds > 0:
            try:
                await asyncio.wait_for(self._event.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                return
        self.raise_if_cancelled()
