"""
Upload coordinator: relays a remote file into the bucket.

Flow:
1. Validate remoteUrl / customName and the key policy
2. Take the per-key lease (concurrent uploads to one key are rejected)
3. Open a streaming GET on the remote URL
4. Pump the body into a multi-part put (20 MiB parts, 4 in flight)
5. Report progress on every acknowledged part while the size is known
6. Emit exactly one terminal record: success with a link, or error

Every failure is converted into a single error record here; nothing is
retried. A client that wants to retry re-sends the same request, which
overwrites the key.
"""
import asyncio
import enum
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import quote, urlparse

from r2relay.config import settings
from r2relay.exceptions import UploadError, UploadValidationError
from r2relay.schemas.upload import UploadRequest, UploadSucceeded
from r2relay.services.key_policy import KeyLeases, upload_leases, validate_object_key
from r2relay.services.remote_source import RemoteSource
from r2relay.services.telemetry import ProgressChannel
from r2relay.storage.multipart import MultipartUploader
from r2relay.storage.objects import ObjectMetadata
from r2relay.utils.headers import content_disposition
from r2relay.utils.logging import log_upload_completed, log_upload_failed, log_upload_started
from r2relay.utils.metrics import (
    upload_bytes_total,
    upload_duration_seconds,
    uploads_completed_total,
    uploads_in_progress,
    uploads_started_total,
)

logger = logging.getLogger(__name__)


class JobState(str, enum.Enum):
    """Lifecycle of an upload job."""
    PENDING = "pending"
    FETCHING = "fetching"
    UPLOADING = "uploading"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class UploadJob:
    """Request-scoped state of one relay; never persisted."""
    remote_url: str
    key: str
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    total_size: Optional[int] = None
    bytes_transferred: int = 0
    state: JobState = JobState.PENDING

    def record_transferred(self, acknowledged: int) -> None:
        self.bytes_transferred = max(self.bytes_transferred, acknowledged)

    def percent_complete(self) -> Optional[int]:
        """
        Whole percent of the declared size acknowledged so far.

        None when the size is unknown (or zero), and once the count
        reaches 100: that value is reported only after the store has
        assembled the object.
        """
        if not self.total_size:
            return None
        percent = self.bytes_transferred * 100 // self.total_size
        return percent if percent < 100 else None


class UploadCoordinator:
    """Drives remote-to-bucket relays and reports them on a progress channel."""

    def __init__(
        self,
        store,
        source: RemoteSource,
        *,
        leases: Optional[KeyLeases] = None,
        public_base_url: Optional[str] = None,
        part_size: Optional[int] = None,
        queue_size: Optional[int] = None,
        default_content_type: Optional[str] = None,
        disposition_type: Optional[str] = None,
        cache_control: Optional[str] = None,
        max_key_length: Optional[int] = None,
    ):
        self.store = store
        self.source = source
        self.leases = leases if leases is not None else upload_leases
        self.public_base_url = public_base_url or settings.public_base_url
        self.uploader = MultipartUploader(
            store,
            part_size=part_size or settings.upload_part_size,
            queue_size=queue_size or settings.upload_queue_size,
        )
        self.default_content_type = default_content_type or settings.default_content_type
        self.disposition_type = disposition_type or settings.content_disposition_type
        self.cache_control = cache_control or settings.cache_control
        self.max_key_length = max_key_length or settings.max_key_length

    def link_for(self, key: str, request_base_url: str) -> str:
        """Public address of a stored key."""
        base = (self.public_base_url or request_base_url).rstrip("/")
        return f"{base}/{quote(key, safe='/')}"

    def object_metadata(self, key: str, remote_content_type: Optional[str]) -> ObjectMetadata:
        return ObjectMetadata(
            content_type=remote_content_type or self.default_content_type,
            content_disposition=content_disposition(key, self.disposition_type),
            cache_control=self.cache_control,
        )

    async def run(self, request: UploadRequest, channel: ProgressChannel, request_base_url: str) -> None:
        """
        Relay one remote file, writing progress and the outcome to `channel`.

        Never raises for upload failures: they become the terminal error
        record. Cancellation is recorded as a failed job and re-raised.
        The channel itself is closed by whoever opened it.

        Args:
            request: remoteUrl / customName as sent by the client
            channel: Progress channel of the open response
            request_base_url: Origin of the request, used for links when
                no public base URL is configured
        """
        job = UploadJob(
            remote_url=request.remote_url or "",
            key=request.custom_name or "",
        )
        started = time.time()
        uploads_started_total.inc()
        uploads_in_progress.inc()

        try:
            result = await self._execute(job, channel)
        except asyncio.CancelledError:
            job.state = JobState.FAILED
            self._record_failure(job, started, "cancelled", "CancelledError", include_traceback=False)
            channel.fail("Upload cancelled")
            raise
        except UploadError as e:
            job.state = JobState.FAILED
            self._record_failure(job, started, str(e), type(e).__name__, include_traceback=False)
            channel.fail(str(e))
            return
        except Exception as e:
            job.state = JobState.FAILED
            self._record_failure(job, started, str(e), type(e).__name__, include_traceback=True)
            channel.fail("Upload failed: internal error")
            return
        finally:
            uploads_in_progress.dec()

        job.state = JobState.SUCCEEDED
        duration = time.time() - started
        uploads_completed_total.labels(status="success").inc()
        upload_duration_seconds.labels(status="success").observe(duration)
        upload_bytes_total.inc(result.size)
        log_upload_completed(
            logger,
            job_id=job.job_id,
            object_key=job.key,
            size_bytes=result.size,
            duration_ms=duration * 1000,
            parts=result.parts,
        )

        if job.total_size is not None:
            channel.progress(100)
        channel.send(UploadSucceeded(link=self.link_for(job.key, request_base_url)))

    async def _execute(self, job: UploadJob, channel: ProgressChannel):
        if not job.remote_url.strip() or not job.key.strip():
            raise UploadValidationError("Missing Data: remoteUrl and customName are required")
        if urlparse(job.remote_url.strip()).scheme.lower() not in ("http", "https"):
            raise UploadValidationError("remoteUrl must be an http(s) URL")
        validate_object_key(job.key, self.max_key_length)

        async with self.leases.hold(job.key):
            job.state = JobState.FETCHING
            log_upload_started(logger, job_id=job.job_id, object_key=job.key, remote_url=job.remote_url)

            async with self.source.open(job.remote_url.strip()) as remote:
                job.total_size = remote.total_size
                job.state = JobState.UPLOADING
                logger.debug(f"Job {job.job_id}: remote size {remote.total_size}, type {remote.content_type}")

                def on_progress(acknowledged: int) -> None:
                    job.record_transferred(acknowledged)
                    percent = job.percent_complete()
                    if percent is not None:
                        channel.progress(percent)

                return await self.uploader.upload(
                    job.key,
                    remote.stream,
                    self.object_metadata(job.key, remote.content_type),
                    on_progress=on_progress,
                )

    def _record_failure(self, job: UploadJob, started: float, error: str, error_type: str,
                        include_traceback: bool) -> None:
        duration = time.time() - started
        uploads_completed_total.labels(status="failed").inc()
        upload_duration_seconds.labels(status="failed").observe(duration)
        log_upload_failed(
            logger,
            job_id=job.job_id,
            object_key=job.key or None,
            error=error,
            duration_ms=duration * 1000,
            error_type=error_type,
            include_traceback=include_traceback,
        )
