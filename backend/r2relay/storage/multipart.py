"""
Streaming multi-part put.

Feeds an async byte stream into an S3 multi-part upload without holding
the whole body in memory:

1. Incoming chunks are collected into fixed-size parts (20 MiB by default)
2. Up to `queue_size` parts are uploaded concurrently in the threadpool
3. Every acknowledged part advances a cumulative byte counter that is
   reported to the caller
4. Parts are assembled in part-number order once the stream ends

Memory use is bounded by (queue_size + 1) * part_size whatever the size
of the body. A body that fits in one part is stored with a single PUT.

On any failure the multi-part upload is aborted, so a failed transfer
never becomes a readable object under the target key.
"""
import asyncio
import logging
from typing import AsyncIterator, Callable, Dict, Optional, Set

from starlette.concurrency import run_in_threadpool

from r2relay.exceptions import StorageError
from r2relay.storage.objects import ObjectMetadata, UploadResult

logger = logging.getLogger(__name__)

DEFAULT_PART_SIZE = 20 * 1024 * 1024
DEFAULT_QUEUE_SIZE = 4

# Called with the cumulative number of bytes the store has acknowledged
ProgressCallback = Callable[[int], None]

_END_OF_BODY = object()


async def _read_next(chunks: AsyncIterator[bytes]):
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return _END_OF_BODY


class _MultipartSession:
    """State of one multi-part upload: its ID, acknowledged parts and parts in flight."""

    def __init__(self, store, object_key: str, upload_id: str, queue_size: int,
                 on_progress: Optional[ProgressCallback]):
        self.store = store
        self.object_key = object_key
        self.upload_id = upload_id
        self.on_progress = on_progress
        self.etags: Dict[int, str] = {}
        self.acknowledged = 0
        self.failure: Optional[BaseException] = None
        self.failed = asyncio.Event()
        self._slots = asyncio.Semaphore(queue_size)
        self._tasks: Set[asyncio.Task] = set()
        self._next_part = 1

    def raise_if_failed(self) -> None:
        if self.failure is not None:
            raise self.failure

    async def submit(self, data: bytes) -> None:
        """Queue one part, waiting while `queue_size` parts are already in flight."""
        await self._slots.acquire()
        try:
            self.raise_if_failed()
        except BaseException:
            self._slots.release()
            raise

        part_number = self._next_part
        self._next_part += 1
        task = asyncio.create_task(self._send(part_number, data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, part_number: int, data: bytes) -> None:
        try:
            etag = await run_in_threadpool(
                self.store.upload_part, self.object_key, self.upload_id, part_number, data
            )
            self.etags[part_number] = etag
            # Parts finish out of order; only the running total is reported
            self.acknowledged += len(data)
            if self.on_progress is not None:
                self.on_progress(self.acknowledged)
        except Exception as e:
            if self.failure is None:
                self.failure = e
                self.failed.set()
        finally:
            self._slots.release()

    async def drain(self) -> None:
        """Wait for every part in flight, successful or not."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def completed_parts(self):
        return [
            {"PartNumber": number, "ETag": self.etags[number]}
            for number in sorted(self.etags)
        ]


class MultipartUploader:
    """
    Uploads an async byte stream to the object store in concurrent parts.

    The store is an R2Client (or anything exposing the same blocking
    multi-part primitives).
    """

    def __init__(self, store, part_size: int = DEFAULT_PART_SIZE,
                 queue_size: int = DEFAULT_QUEUE_SIZE):
        if part_size <= 0:
            raise ValueError("part_size must be positive")
        if queue_size < 1:
            raise ValueError("queue_size must be at least 1")
        self.store = store
        self.part_size = part_size
        self.queue_size = queue_size

    async def upload(
        self,
        object_key: str,
        body: AsyncIterator[bytes],
        metadata: ObjectMetadata,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        """
        Stream `body` into the object `object_key`.

        Args:
            object_key: Destination key
            body: Async iterator of byte chunks of any size
            metadata: Headers stored with the object
            on_progress: Called with cumulative acknowledged bytes after each part

        Returns:
            UploadResult describing the stored object

        Raises:
            StorageError: If the store fails; the multi-part upload is aborted first
            Any exception raised while reading `body`, after the same abort
        """
        buffer = bytearray()
        session: Optional[_MultipartSession] = None

        try:
            chunks = body.__aiter__()
            while True:
                chunk = await self._next_chunk(chunks, session)
                if chunk is _END_OF_BODY:
                    break
                if not chunk:
                    continue
                buffer.extend(chunk)

                # Strictly greater: a body of exactly one part stays a single PUT
                while len(buffer) > self.part_size:
                    if session is None:
                        session = await self._start(object_key, metadata, on_progress)
                    part = bytes(buffer[:self.part_size])
                    del buffer[:self.part_size]
                    await session.submit(part)

            if session is None:
                return await self._put_single(object_key, bytes(buffer), metadata, on_progress)

            if buffer:
                await session.submit(bytes(buffer))
                buffer.clear()

            await session.drain()
            session.raise_if_failed()

            etag = await run_in_threadpool(
                self.store.complete_multipart_upload,
                object_key,
                session.upload_id,
                session.completed_parts(),
            )
        except BaseException:
            # Cancellation included: never leave parts behind
            if session is not None:
                await session.drain()
                await self._abort(session)
            raise

        logger.info(
            f"Completed multipart upload of {object_key}: "
            f"{session.acknowledged} bytes in {len(session.etags)} parts"
        )
        return UploadResult(
            key=object_key,
            size=session.acknowledged,
            parts=len(session.etags),
            etag=etag,
        )

    async def _next_chunk(self, chunks: AsyncIterator[bytes],
                          session: Optional[_MultipartSession]):
        """
        Read the next chunk of the body, or _END_OF_BODY.

        Once parts are in flight the read races their failure: a rejected
        part ends the upload without waiting on a stalled source.
        """
        if session is None:
            return await _read_next(chunks)

        session.raise_if_failed()
        read = asyncio.ensure_future(_read_next(chunks))
        failed = asyncio.ensure_future(session.failed.wait())
        try:
            await asyncio.wait({read, failed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            failed.cancel()
            if not read.done():
                read.cancel()
                await asyncio.wait({read})

        if session.failure is not None:
            if not read.cancelled():
                read.exception()  # superseded by the part failure
            raise session.failure
        return read.result()

    async def _start(self, object_key: str, metadata: ObjectMetadata,
                     on_progress: Optional[ProgressCallback]) -> _MultipartSession:
        upload_id = await run_in_threadpool(
            self.store.create_multipart_upload, object_key, metadata
        )
        return _MultipartSession(self.store, object_key, upload_id, self.queue_size, on_progress)

    async def _put_single(self, object_key: str, data: bytes, metadata: ObjectMetadata,
                          on_progress: Optional[ProgressCallback]) -> UploadResult:
        etag = await run_in_threadpool(self.store.put_object, object_key, data, metadata)
        if on_progress is not None:
            on_progress(len(data))
        logger.info(f"Stored {object_key} with a single put ({len(data)} bytes)")
        return UploadResult(key=object_key, size=len(data), parts=1, etag=etag)

    async def _abort(self, session: _MultipartSession) -> None:
        try:
            await run_in_threadpool(
                self.store.abort_multipart_upload, session.object_key, session.upload_id
            )
        except StorageError as e:
            # The original failure is what the caller needs to see
            logger.error(
                f"Could not abort multipart upload {session.upload_id} "
                f"for {session.object_key}: {e}"
            )
