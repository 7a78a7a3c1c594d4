"""
Async utility helpers for the local backend orchestrator.

Provides:
- EventChannel: Bounded async channel fed by the host or a watcher thread
- collect_burst: Trailing-edge debounce as a channel-draining policy
- async_retry: Retry decorator with exponential backoff
- backoff_delays: Exponential delay schedule capped by a deadline
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    Iterator,
    List,
    Optional,
    TypeVar,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class ChannelClosed(Exception):
    """Raised by EventChannel.get() once the channel is closed and drained."""


class EventChannel(Generic[T]):
    """
    Bounded async producer/consumer channel.

    Producers never block: when the channel is full new items are dropped,
    which is safe for file-change events because consumers coalesce them.

    Example:
        channel = EventChannel(maxsize=256)

        # Producer (event loop thread)
        channel.put_nowait(item)

        # Producer (foreign thread, e.g. a watchdog observer)
        channel.put_threadsafe(loop, item)

        # Consumer
        async for item in channel:
            process(item)
    """

    def __init__(self, maxsize: int = 256):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize)
        self._closed = False
        self._put_count = 0
        self._get_count = 0
        self._dropped_count = 0

    def put_nowait(self, item: T) -> bool:
        """Put item without blocking. Returns False if it was dropped."""
        if self._closed:
            return False
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self._dropped_count += 1
            logger.debug("Event channel full, dropping event")
            return False
        self._put_count += 1
        return True

    def put_threadsafe(self, loop: asyncio.AbstractEventLoop, item: T) -> None:
        """Hand an item to the channel from a thread other than the loop's."""
        loop.call_soon_threadsafe(self.put_nowait, item)

    async def get(self) -> T:
        """Get item from channel, blocking if empty."""
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for any other consumer
            self._queue.put_nowait(_CLOSED)
            raise ChannelClosed()
        self._get_count += 1
        return item

    def close(self) -> None:
        """Close channel. No more items can be added."""
        if self._closed:
            return
        self._closed = True
        # Make room for the marker so consumers always wake up
        while self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "EventChannel[T]":
        return self

    async def __anext__(self) -> T:
        try:
            return await self.get()
        except ChannelClosed:
            raise StopAsyncIteration

    @property
    def qsize(self) -> int:
        return self._queue.qsize()

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "current_size": self.qsize,
            "put_count": self._put_count,
            "get_count": self._get_count,
            "dropped_count": self._dropped_count,
            "closed": self._closed,
        }


async def collect_burst(channel: EventChannel[T], quiet_period: float) -> List[T]:
    """
    Wait for a burst of events and return it once the channel has been quiet
    for ``quiet_period`` seconds after the last event.

    Raises ChannelClosed if the channel closes before the first event. A close
    in the middle of a burst ends the burst early.
    """
    items = [await channel.get()]

    while True:
        try:
            item = await asyncio.wait_for(channel.get(), timeout=quiet_period)
        except asyncio.TimeoutError:
            return items
        except ChannelClosed:
            return items
        items.append(item)


def backoff_delays(
    deadline: float,
    base: float = 0.2,
    factor: float = 1.5,
) -> Iterator[float]:
    """
    Yield exponentially growing sleep intervals, each capped by the time left
    until ``deadline`` (a ``time.monotonic()`` value). Stops once the deadline
    has passed.
    """
    attempt = 0
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return
        yield min(base * (factor ** attempt), remaining)
        attempt += 1


def async_retry(
    attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: tuple = (Exception,),
) -> Callable:
    """
    Decorator for async retry with exponential backoff.

    Example:
        @async_retry(attempts=3, delay=1.0, exceptions=(aiohttp.ClientError,))
        async def fetch_index():
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            last_exception: Optional[BaseException] = None

            for attempt in range(attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e
                    if attempt < attempts - 1:
                        wait_time = delay * (backoff ** attempt)
                        logger.warning(
                            f"Retry {attempt + 1}/{attempts} for {func.__name__} "
                            f"after {wait_time:.1f}s: {e}"
                        )
                        await asyncio.sleep(wait_time)

            raise last_exception

        return wrapper

    return decorator
