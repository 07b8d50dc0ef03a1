"""
Progress telemetry channel.

Carries progress records from a background producer task to the HTTP
response that is still open towards the client. The channel is returned
before the producer does any work, so the client sees the response start
immediately and renders progress as lines arrive.

Guarantees:
- Progress values on the wire strictly increase
- Exactly one terminal record (success or error), always last
- The channel is closed exactly once, however the producer exits
"""
import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional, Set

from r2relay.schemas.upload import (
    ProgressRecord,
    ProgressUpdate,
    UploadFailed,
    is_terminal,
    to_ndjson_line,
)

logger = logging.getLogger(__name__)

NDJSON_MEDIA_TYPE = "application/x-ndjson"

_CLOSED = object()

# Strong references to running producers; asyncio only keeps weak ones
_background_tasks: Set[asyncio.Task] = set()


class ProgressChannel:
    """Single-producer, single-consumer queue of progress records."""

    def __init__(self):
        # Unbounded: a job produces at most 101 progress records
        self._queue: asyncio.Queue = asyncio.Queue()
        self._last_progress = -1
        self._terminal: Optional[ProgressRecord] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def terminal_record(self) -> Optional[ProgressRecord]:
        return self._terminal

    def send(self, record: ProgressRecord) -> bool:
        """
        Queue a record for the consumer.

        Returns:
            True if the record was queued, False if it was dropped because
            the channel already ended or the progress did not advance
        """
        if self._closed or self._terminal is not None:
            logger.warning(f"Dropping record sent after the stream ended: {record!r}")
            return False

        if isinstance(record, ProgressUpdate):
            if record.progress <= self._last_progress:
                return False
            self._last_progress = record.progress
        else:
            self._terminal = record

        self._queue.put_nowait(record)
        return True

    def progress(self, percent: int) -> bool:
        return self.send(ProgressUpdate(progress=percent))

    def fail(self, message: str) -> bool:
        return self.send(UploadFailed(error=message))

    def close(self) -> None:
        """End the stream. A stream without a terminal record gets an error record first."""
        if self._closed:
            return
        if self._terminal is None:
            self.fail("Upload ended unexpectedly")
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def records(self) -> AsyncIterator[ProgressRecord]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
            if is_terminal(item):
                return

    async def lines(self) -> AsyncIterator[str]:
        """Serialized records, one JSON document per line."""
        async for record in self.records():
            yield to_ndjson_line(record)


Producer = Callable[[ProgressChannel], Awaitable[None]]


def open_progress_stream(producer: Producer) -> ProgressChannel:
    """
    Start `producer` as a detached task writing into a new channel.

    The task is not tied to the request: it keeps running to completion
    even if the client goes away.

    Args:
        producer: Coroutine function receiving the channel to write into

    Returns:
        The channel, before the producer has run
    """
    channel = ProgressChannel()

    async def _drive():
        try:
            await producer(channel)
        except Exception as e:
            logger.exception(f"Progress producer crashed: {e}")
            channel.fail("Internal error during upload")
        finally:
            channel.close()

    task = asyncio.create_task(_drive())
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return channel


async def wait_for_background_tasks() -> None:
    """Wait for every running producer; used at shutdown and in tests."""
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)
