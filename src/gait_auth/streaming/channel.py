"""Bounded async channel connecting a sensor source to a session consumer."""

from __future__ import annotations

import asyncio

import structlog

from gait_auth.errors import SensorError
from gait_auth.models import SensorSample

logger = structlog.get_logger(__name__)

_CLOSED = object()


class ChannelClosed(Exception):
    """Raised by :meth:`SampleChannel.get` once the producer closed the channel."""


class SampleChannel:
    """In-process queue that decouples a push-based sensor source from the
    single task consuming a session's samples.

    The channel is bounded: a producer awaiting :meth:`publish` is suspended
    while the consumer lags behind.  The producer may also forward a
    :class:`SensorError`, which the consumer receives from :meth:`get`.
    """

    def __init__(self, maxsize: int = 2000) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._published = 0

    # ── Producer side ─────────────────────────────────────────

    async def publish(self, sample: SensorSample) -> None:
        """Enqueue a sample for the consumer."""
        if self._closed:
            return
        await self._queue.put(sample)
        self._published += 1

    async def publish_batch(self, samples: list[SensorSample]) -> None:
        for s in samples:
            await self.publish(s)

    async def publish_error(self, error: SensorError) -> None:
        """Forward a sensor failure to the consumer."""
        if self._closed:
            return
        await self._queue.put(error)
        logger.warning("sample_channel.error_forwarded", error=str(error))

    async def close(self) -> None:
        """Signal end-of-stream.  Further publishes are ignored."""
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_CLOSED)

    # ── Consumer side ─────────────────────────────────────────

    async def get(self, timeout: float | None = None) -> SensorSample | None:
        """Return the next sample, or ``None`` if *timeout* elapsed first.

        Raises :class:`SensorError` forwarded by the producer and
        :class:`ChannelClosed` at end-of-stream.
        """
        try:
            if timeout is None:
                item = await self._queue.get()
            else:
                item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

        self._queue.task_done()
        if item is _CLOSED:
            raise ChannelClosed()
        if isinstance(item, SensorError):
            raise item
        return item  # type: ignore[return-value]

    def drain(self) -> int:
        """Discard everything still queued.  Returns the number discarded."""
        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
            dropped += 1
        return dropped

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def published(self) -> int:
        return self._published
