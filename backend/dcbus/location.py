"""Live location feed: consumes an async stream of coordinates in a background task."""

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

from dcbus.models import Coordinate

logger = logging.getLogger("dcbus.location")


class LocationTracker:
    """Delivers each coordinate from `source` to `on_update`, one at a time.

    `stop()` is synchronous and no callback fires after it returns, even if the
    source has already produced the next coordinate.
    """

    def __init__(self, on_update: Callable[[Coordinate], None]):
        self._on_update = on_update
        self._task: Optional[asyncio.Task] = None
        self._token: Optional[object] = None
        self.location: Optional[Coordinate] = None
        self.error: Optional[str] = None

    @property
    def is_tracking(self) -> bool:
        return self._token is not None

    def start(self, source: AsyncIterator[Coordinate]) -> asyncio.Task:
        """Start consuming `source`. Must be called with a running event loop."""
        self.stop()
        token = object()
        self._token = token
        self.error = None
        self._task = asyncio.create_task(self._consume(source, token))
        logger.info("Location tracking started")
        return self._task

    def stop(self) -> None:
        if self._token is None and (self._task is None or self._task.done()):
            self._task = None
            return
        self._token = None
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        logger.info("Location tracking stopped")

    async def wait(self) -> None:
        """Wait until the current feed ends or is cancelled."""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _consume(self, source: AsyncIterator[Coordinate], token: object) -> None:
        try:
            async for coord in source:
                if self._token is not token:
                    break
                self.location = coord
                self._on_update(coord)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.error = str(e)
            logger.error(f"Location feed error: {e}")
        finally:
            if self._token is token:
                self._token = None
