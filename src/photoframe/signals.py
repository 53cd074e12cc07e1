"""Coalescing change notification between producers and the slideshow router."""

import asyncio
import logging

logger = logging.getLogger(__name__)


class ChangeSignal:
    """Non-blocking "something changed" signal with room for one pending event.

    Producers call ``notify`` and never wait. When an event is already pending,
    further notifications are dropped: the pending restart will read the latest
    catalog state anyway.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=1)

    def notify(self, source: str) -> bool:
        """Signal a change.

        Args:
            source: Name of the producer, used for logging

        Returns:
            True if the signal was queued, False if one was already pending
        """
        try:
            self._queue.put_nowait(source)
        except asyncio.QueueFull:
            logger.debug(f"Change signal from {source} dropped, one is already pending")
            return False
        logger.debug(f"Change signal queued from {source}")
        return True

    @property
    def pending(self) -> bool:
        return not self._queue.empty()

    async def wait(self) -> str:
        """Wait for the next signal and return the name of its producer."""
        return await self._queue.get()
