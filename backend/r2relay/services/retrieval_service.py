"""
Retrieval resolver: answers object-read requests.

Two strategies over the same R2 client:
- STREAM: the service relays every byte, adding its own headers
  (CORS, caching, download disposition)
- REDIRECT: a 302 to a presigned URL valid for an hour, with the
  Content-Type and Content-Disposition baked into the signature

A missing key is ObjectNotFoundError in both modes; the route layer
maps it to 404.
"""
import enum
import logging
import time
from typing import Optional

from fastapi.responses import RedirectResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool
from starlette.responses import Response

from r2relay.config import settings
from r2relay.exceptions import ObjectNotFoundError
from r2relay.storage.r2_client import iter_body
from r2relay.utils.headers import content_disposition
from r2relay.utils.logging import log_object_retrieved
from r2relay.utils.metrics import retrievals_total

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class RetrievalMode(str, enum.Enum):
    """How an object is handed to the client."""
    STREAM = "stream"
    REDIRECT = "redirect"


class RetrievalResolver:
    """Resolves a key to a streamed body or a signed redirect."""

    def __init__(
        self,
        store,
        *,
        default_mode: Optional[RetrievalMode] = None,
        disposition_type: Optional[str] = None,
        cache_control: Optional[str] = None,
        signed_url_expiration: Optional[int] = None,
    ):
        self.store = store
        self.default_mode = default_mode or RetrievalMode(settings.retrieval_mode)
        self.disposition_type = disposition_type or settings.content_disposition_type
        self.cache_control = cache_control or settings.cache_control
        self.signed_url_expiration = signed_url_expiration or settings.signed_url_expiration

    async def resolve(self, key: str, mode: Optional[RetrievalMode] = None) -> Response:
        """
        Build the response for `key`.

        Args:
            key: Object key
            mode: Strategy to use; the configured default when omitted

        Raises:
            ObjectNotFoundError: If the key is empty or does not exist
            StorageError: If the store fails
        """
        mode = mode or self.default_mode
        started = time.time()
        try:
            if not key:
                raise ObjectNotFoundError(key)
            if mode == RetrievalMode.REDIRECT:
                response = await self.redirect(key)
            else:
                response = await self.stream(key)
        except ObjectNotFoundError:
            retrievals_total.labels(mode=mode.value, status="not_found").inc()
            log_object_retrieved(logger, object_key=key, mode=mode.value, status_code=404,
                                 duration_ms=(time.time() - started) * 1000)
            raise

        retrievals_total.labels(mode=mode.value, status="ok").inc()
        log_object_retrieved(logger, object_key=key, mode=mode.value,
                             status_code=response.status_code,
                             duration_ms=(time.time() - started) * 1000)
        return response

    async def stream(self, key: str) -> StreamingResponse:
        """Relay the object body through the service, unmodified."""
        stored, body = await run_in_threadpool(self.store.get_object, key)

        headers = {
            "Access-Control-Allow-Origin": "*",
            "Cache-Control": self.cache_control,
            "Content-Disposition": content_disposition(key, self.disposition_type),
        }
        if stored.size is not None:
            headers["Content-Length"] = str(stored.size)
        if stored.etag:
            headers["ETag"] = stored.etag

        # A sync iterator: Starlette drains it in the threadpool
        return StreamingResponse(
            iter_body(body),
            status_code=200,
            media_type=stored.content_type or DEFAULT_CONTENT_TYPE,
            headers=headers,
        )

    async def redirect(self, key: str) -> RedirectResponse:
        """Redirect to a presigned URL that serves the stored metadata."""
        stored = await run_in_threadpool(self.store.head_object, key)

        url = await run_in_threadpool(
            self.store.get_presigned_read_url,
            key,
            self.signed_url_expiration,
            stored.content_type or DEFAULT_CONTENT_TYPE,
            stored.content_disposition or content_disposition(key, self.disposition_type),
        )

        response = RedirectResponse(url, status_code=302)
        # The signature expires; do not let caches outlive it
        response.headers["Cache-Control"] = "private, max-age=300"
        return response
