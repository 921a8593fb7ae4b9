"""Cooperative cancellation for agent turns.

The loop checks the token before each model call and between tool
dispatches. A tool that has started always runs to completion.
"""

from __future__ import annotations

import asyncio
import logging

__all__ = ["CancellationToken", "TurnCancelledError"]

LOGGER = logging.getLogger(__name__)


class TurnCancelledError(Exception):
    """Raised at a suspension point once the user has stopped the turn."""


class CancellationToken:
    """Shared stop flag for one turn."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "stopped by user") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        LOGGER.debug("Turn cancellation requested: %s", reason)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelledError(self._reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()
