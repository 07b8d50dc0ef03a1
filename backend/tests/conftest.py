"""
Test configuration and fixtures.
Uses an in-memory object store and httpx.MockTransport for remote files,
so no R2 bucket or network access is needed.
"""
import asyncio
import io
import os
import threading
import time
import uuid as uuid_module

# Set test environment before any imports
os.environ["ADMIN_PASSWORD"] = "test-secret"
os.environ["ENVIRONMENT"] = "test"
os.environ.pop("PUBLIC_BASE_URL", None)
os.environ.pop("RETRIEVAL_MODE", None)

import httpx
import pytest
from typing import AsyncGenerator, Dict, Optional
from urllib.parse import urlencode

from botocore.response import StreamingBody
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport

from r2relay.exceptions import ObjectNotFoundError, StorageError
from r2relay.services.key_policy import KeyLeases
from r2relay.services.remote_source import RemoteSource
from r2relay.services.retrieval_service import RetrievalMode, RetrievalResolver
from r2relay.services.telemetry import wait_for_background_tasks
from r2relay.services.upload_service import UploadCoordinator
from r2relay.storage.objects import ObjectMetadata, StoredObject

ADMIN_SECRET = "test-secret"
TEST_PART_SIZE = 1024
# Smaller than a part, so parts are cut while the remote is still sending
TEST_CHUNK_SIZE = 256
REMOTE_HOST = "https://remote.test"


class InMemoryObjectStore:
    """
    Stand-in for R2Client keeping objects in a dict.

    Multi-part uploads only become objects on completion, like S3.
    Set `fail_on_part` to make that part number raise StorageError.
    """

    def __init__(self, part_delay: float = 0.0):
        self.objects: Dict[str, bytes] = {}
        self.metadata: Dict[str, ObjectMetadata] = {}
        self.uploads: Dict[str, Dict] = {}
        self.aborted: list = []
        self.completed_part_counts: list = []
        self.fail_on_part: Optional[int] = None
        self.part_delay = part_delay
        self.is_configured = True
        self.bucket = "test-bucket"
        self._lock = threading.Lock()
        self._in_flight = 0
        self.max_in_flight = 0

    def ping(self):
        return None

    def create_multipart_upload(self, object_key, metadata):
        upload_id = uuid_module.uuid4().hex
        self.uploads[upload_id] = {"key": object_key, "metadata": metadata, "parts": {}}
        return upload_id

    def upload_part(self, object_key, upload_id, part_number, data):
        with self._lock:
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if self.part_delay:
                time.sleep(self.part_delay)
            if self.fail_on_part == part_number:
                raise StorageError(f"Failed to upload part {part_number}: simulated")
            upload = self.uploads[upload_id]
            upload["parts"][part_number] = bytes(data)
            return f'"etag-{part_number}"'
        finally:
            with self._lock:
                self._in_flight -= 1

    def complete_multipart_upload(self, object_key, upload_id, parts):
        upload = self.uploads.pop(upload_id)
        numbers = [part["PartNumber"] for part in parts]
        assert numbers == sorted(numbers)
        self.objects[object_key] = b"".join(upload["parts"][n] for n in numbers)
        self.metadata[object_key] = upload["metadata"]
        self.completed_part_counts.append(len(numbers))
        return '"etag-complete"'

    def abort_multipart_upload(self, object_key, upload_id):
        self.uploads.pop(upload_id, None)
        self.aborted.append((object_key, upload_id))

    def put_object(self, object_key, data, metadata):
        self.objects[object_key] = bytes(data)
        self.metadata[object_key] = metadata
        return '"etag-single"'

    def _stored(self, object_key) -> StoredObject:
        if object_key not in self.objects:
            raise ObjectNotFoundError(object_key)
        metadata = self.metadata[object_key]
        return StoredObject(
            key=object_key,
            content_type=metadata.content_type,
            size=len(self.objects[object_key]),
            cache_control=metadata.cache_control,
            content_disposition=metadata.content_disposition,
            etag='"etag"',
        )

    def head_object(self, object_key):
        return self._stored(object_key)

    def get_object(self, object_key):
        stored = self._stored(object_key)
        data = self.objects[object_key]
        return stored, StreamingBody(io.BytesIO(data), len(data))

    def get_presigned_read_url(self, object_key, expiration=3600,
                               response_content_type=None, response_content_disposition=None):
        params = {"X-Amz-Expires": expiration}
        if response_content_type:
            params["response-content-type"] = response_content_type
        if response_content_disposition:
            params["response-content-disposition"] = response_content_disposition
        return f"https://signed.test/{self.bucket}/{object_key}?{urlencode(params)}"


class RemoteFiles:
    """Routes for the mocked remote server, keyed by path."""

    def __init__(self):
        self.routes: Dict[str, tuple] = {}
        self.requests: list = []

    def add(self, path: str, content, status_code: int = 200, headers: Optional[dict] = None):
        self.routes[path] = (status_code, content, headers or {})
        return f"{REMOTE_HOST}{path}"

    def add_stream(self, path: str, chunks, status_code: int = 200, headers: Optional[dict] = None):
        """
        Serve `chunks` without a Content-Length (chunked transfer).

        An exception in `chunks` is raised at that point of the body; an
        asyncio.Event stalls the body until it is set.
        """
        async def body():
            for chunk in chunks:
                if isinstance(chunk, Exception):
                    raise chunk
                if isinstance(chunk, asyncio.Event):
                    await chunk.wait()
                    continue
                yield chunk
        self.routes[path] = (status_code, body, headers or {})
        return f"{REMOTE_HOST}{path}"

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "unreachable.test":
            raise httpx.ConnectError("Name or service not known", request=request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, content=b"not found")
        status_code, content, headers = route
        if callable(content):
            return httpx.Response(status_code, content=content(), headers=headers)
        return httpx.Response(status_code, content=content, headers=headers)


@pytest.fixture
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def remote() -> RemoteFiles:
    return RemoteFiles()


@pytest.fixture
async def http_client(remote: RemoteFiles) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(remote.handler)) as client:
        yield client


@pytest.fixture
def leases() -> KeyLeases:
    return KeyLeases()


@pytest.fixture
def coordinator(store, http_client, leases) -> UploadCoordinator:
    return UploadCoordinator(
        store,
        RemoteSource(http_client, chunk_size=TEST_CHUNK_SIZE),
        leases=leases,
        part_size=TEST_PART_SIZE,
        queue_size=4,
    )


@pytest.fixture
def resolver(store) -> RetrievalResolver:
    return RetrievalResolver(store, default_mode=RetrievalMode.STREAM)


def get_test_app(store, coordinator, resolver) -> FastAPI:
    """Create a test FastAPI app with overridden dependencies."""
    from r2relay.main import app
    from r2relay.api.deps import (
        get_object_store,
        get_retrieval_resolver,
        get_upload_coordinator,
    )

    app.dependency_overrides[get_object_store] = lambda: store
    app.dependency_overrides[get_upload_coordinator] = lambda: coordinator
    app.dependency_overrides[get_retrieval_resolver] = lambda: resolver

    return app


@pytest.fixture
async def client(store, coordinator, resolver) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    app = get_test_app(store, coordinator, resolver)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await wait_for_background_tasks()
    app.dependency_overrides.clear()
