"""
Cancellation - Cooperative cancellation token with an abort registry.

The flag is polled by the orchestrator at group boundaries. Every network
call is run through the token so cancel() can abort it immediately instead
of waiting for the response.
"""

import asyncio
import logging
from typing import Awaitable, Set, TypeVar

from .errors import ImportCancelled


logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Shared cancellation flag plus the set of in-flight calls it can abort."""

    def __init__(self):
        self._cancelled = False
        self._inflight: Set[asyncio.Task] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise ImportCancelled("Import cancelled")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Await a network call registered against this token.

        Raises ImportCancelled if the token is (or becomes) cancelled.
        """
        if self._cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise ImportCancelled("Import cancelled")

        task = asyncio.ensure_future(awaitable)
        self._inflight.add(task)
        try:
            return await task
        except asyncio.CancelledError:
            # Aborted by cancel(); anything else is an outer cancellation.
            if self._cancelled and task.cancelled():
                raise ImportCancelled("Import cancelled") from None
            raise
        finally:
            self._inflight.discard(task)

    def cancel(self) -> None:
        """Set the flag and abort every registered call."""
        self._cancelled = True
        inflight = list(self._inflight)
        self._inflight.clear()
        for task in inflight:
            task.cancel()
        if inflight:
            logger.debug(f"Aborted {len(inflight)} in-flight requests")
