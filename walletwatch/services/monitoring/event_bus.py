"""
Event Bus

Fans significant activity out to downstream consumers, either as callbacks
or as per-consumer bounded channels. Publication order is the order the
monitor's worker classified events in, so per-wallet order is preserved.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from ...config import settings
from .models import ActivityCallback, SignificantActivity

logger = logging.getLogger(__name__)

_CLOSED = object()


class EventChannel:
    """Bounded queue of significant activity for a single consumer.

    Usage:
        channel = bus.open_channel()
        async for activity in channel:
            ...
    """

    def __init__(self, bus: "EventBus", maxsize: int) -> None:
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped = 0

    def offer(self, activity: SignificantActivity) -> bool:
        if self._closed:
            return False
        try:
            self._queue.put_nowait(activity)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    async def get(self) -> Optional[SignificantActivity]:
        """Next activity, or None once the channel is closed and drained."""
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        return None if item is _CLOSED else item

    def get_nowait(self) -> Optional[SignificantActivity]:
        try:
            item = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        return None if item is _CLOSED else item

    def qsize(self) -> int:
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus._detach(self)
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass

    def __aiter__(self) -> "EventChannel":
        return self

    async def __anext__(self) -> SignificantActivity:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class EventBus:
    """Publish/subscribe for SignificantActivity."""

    def __init__(self, channel_size: Optional[int] = None) -> None:
        self.channel_size = settings.event_channel_size if channel_size is None else channel_size
        self._callbacks: List[ActivityCallback] = []
        self._channels: List[EventChannel] = []
        self.published = 0

    def on_activity(self, callback: ActivityCallback) -> None:
        """Register a callback for significant activity."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def off_activity(self, callback: ActivityCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def open_channel(self, maxsize: Optional[int] = None) -> EventChannel:
        channel = EventChannel(self, self.channel_size if maxsize is None else maxsize)
        self._channels.append(channel)
        return channel

    def _detach(self, channel: EventChannel) -> None:
        if channel in self._channels:
            self._channels.remove(channel)

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks) + len(self._channels)

    async def publish(self, activity: SignificantActivity) -> None:
        self.published += 1

        for channel in list(self._channels):
            if not channel.offer(activity):
                logger.warning(
                    "Dropped activity for %s: consumer channel full (%d dropped)",
                    activity.address,
                    channel.dropped,
                )

        for callback in list(self._callbacks):
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(activity)
                else:
                    callback(activity)
            except Exception as e:
                logger.error("Activity callback error for %s: %s", activity.address, e)

    def close(self) -> None:
        for channel in list(self._channels):
            channel.close()
        self._callbacks.clear()
