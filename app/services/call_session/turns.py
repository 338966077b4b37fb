"""Turn ordering for outbound audio."""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class TurnSequencer:
    """
    Hands out turn tickets and lets each turn transmit only when it is next.

    Tickets are reserved in the order caller utterances arrive. ``turn(n)``
    waits until the counter equals ``n`` and advances it on exit, whether the
    turn transmitted or gave up, so a slow reply can never be overtaken by a
    later one. After ``close()`` every waiter is released without the turn.
    """

    def __init__(self):
        self._next_ticket = 0
        self._current = 0
        self._closed = False
        self._condition = asyncio.Condition()

    @property
    def current(self) -> int:
        return self._current

    @property
    def closed(self) -> bool:
        return self._closed

    def reserve(self) -> int:
        """Reserve the next turn index."""
        ticket = self._next_ticket
        self._next_ticket += 1
        return ticket

    @asynccontextmanager
    async def turn(self, ticket: int) -> AsyncIterator[bool]:
        """Wait for ``ticket`` to be current. Yields False if the sequencer closed first."""
        async with self._condition:
            await self._condition.wait_for(
                lambda: self._closed or self._current == ticket
            )
            granted = not self._closed
        try:
            yield granted
        finally:
            async with self._condition:
                if self._current == ticket:
                    self._current += 1
                self._condition.notify_all()

    async def close(self) -> None:
        """Release all waiting turns."""
        async with self._condition:
            self._closed = True
            self._condition.notify_all()
