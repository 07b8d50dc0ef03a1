"""
Tests for the storage layer: the streaming multi-part uploader and the
boto3-backed R2 client.
"""
import asyncio
import pytest
import boto3
from botocore.config import Config
from botocore.stub import Stubber
from urllib.parse import parse_qs, urlparse

from r2relay.exceptions import ObjectNotFoundError, StorageError
from r2relay.storage.multipart import MultipartUploader
from r2relay.storage.objects import ObjectMetadata
from r2relay.storage.r2_client import R2Client, iter_body

PART = 1024
METADATA = ObjectMetadata(
    content_type="video/mp4",
    content_disposition='attachment; filename="clip.mp4"',
    cache_control="public, max-age=31536000, immutable",
)


async def chunks(*pieces):
    for piece in pieces:
        if isinstance(piece, Exception):
            raise piece
        yield piece


class TestMultipartUploader:
    """Tests for MultipartUploader."""

    @pytest.mark.asyncio
    async def test_small_body_single_put(self, store):
        """Test a body smaller than a part skips the multi-part API."""
        uploader = MultipartUploader(store, part_size=PART)

        result = await uploader.upload("clip.mp4", chunks(b"abc", b"def"), METADATA)

        assert result.size == 6
        assert result.parts == 1
        assert store.objects["clip.mp4"] == b"abcdef"
        assert store.completed_part_counts == []

    @pytest.mark.asyncio
    async def test_exactly_one_part_single_put(self, store):
        uploader = MultipartUploader(store, part_size=PART)

        await uploader.upload("clip.mp4", chunks(b"x" * PART), METADATA)

        assert store.completed_part_counts == []
        assert len(store.objects["clip.mp4"]) == PART

    @pytest.mark.asyncio
    async def test_empty_body(self, store):
        uploader = MultipartUploader(store, part_size=PART)

        result = await uploader.upload("empty.bin", chunks(), METADATA)

        assert result.size == 0
        assert store.objects["empty.bin"] == b""

    @pytest.mark.asyncio
    async def test_one_byte_over_uses_two_parts(self, store):
        uploader = MultipartUploader(store, part_size=PART)

        result = await uploader.upload("clip.mp4", chunks(b"y" * (PART + 1)), METADATA)

        assert result.parts == 2
        assert store.completed_part_counts == [2]

    @pytest.mark.asyncio
    async def test_uneven_chunks_reassembled_in_order(self, store):
        """Test parts are cut across chunk boundaries and stored in order."""
        pieces = [bytes([i]) * 300 for i in range(10)]
        uploader = MultipartUploader(store, part_size=PART)

        result = await uploader.upload("clip.mp4", chunks(*pieces), METADATA)

        assert result.size == 3000
        assert result.parts == 3
        assert store.objects["clip.mp4"] == b"".join(pieces)
        assert store.metadata["clip.mp4"] == METADATA

    @pytest.mark.asyncio
    async def test_parts_in_flight_bounded(self, store):
        """Test no more than queue_size parts are uploaded at once."""
        store.part_delay = 0.02
        uploader = MultipartUploader(store, part_size=PART, queue_size=3)

        await uploader.upload("clip.mp4", chunks(*[b"q" * PART] * 12), METADATA)

        assert 1 <= store.max_in_flight <= 3
        assert store.completed_part_counts == [12]

    @pytest.mark.asyncio
    async def test_progress_cumulative_and_increasing(self, store):
        acknowledged = []
        uploader = MultipartUploader(store, part_size=PART, queue_size=4)

        await uploader.upload("clip.mp4", chunks(b"p" * 5000), METADATA, on_progress=acknowledged.append)

        assert acknowledged == sorted(acknowledged)
        assert len(set(acknowledged)) == len(acknowledged)
        assert acknowledged[-1] == 5000

    @pytest.mark.asyncio
    async def test_part_failure_aborts(self, store):
        """Test a failed part aborts the upload and leaves no object."""
        store.fail_on_part = 2
        uploader = MultipartUploader(store, part_size=PART)

        with pytest.raises(StorageError):
            await uploader.upload("clip.mp4", chunks(b"f" * 4000), METADATA)

        assert "clip.mp4" not in store.objects
        assert len(store.aborted) == 1
        assert store.uploads == {}

    @pytest.mark.asyncio
    async def test_body_error_aborts(self, store):
        """Test an error from the source is re-raised after the abort."""
        uploader = MultipartUploader(store, part_size=PART)

        with pytest.raises(ValueError):
            await uploader.upload("clip.mp4", chunks(b"a" * 2500, ValueError("source broke")), METADATA)

        assert "clip.mp4" not in store.objects
        assert [key for key, _ in store.aborted] == ["clip.mp4"]

    @pytest.mark.asyncio
    async def test_cancellation_aborts(self, store):
        """Test a cancelled upload still aborts its multi-part upload."""
        never = asyncio.Event()

        async def stalled():
            yield b"s" * 2500
            await never.wait()

        uploader = MultipartUploader(store, part_size=PART)
        task = asyncio.create_task(uploader.upload("clip.mp4", stalled(), METADATA))
        while not store.uploads:
            await asyncio.sleep(0.01)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(store.aborted) == 1
        assert "clip.mp4" not in store.objects

    @pytest.mark.asyncio
    async def test_part_failure_ends_stalled_body(self, store):
        """Test a failed part is reported without waiting for the next chunk."""
        never = asyncio.Event()

        async def stalled():
            yield b"s" * 2500
            await never.wait()

        store.fail_on_part = 1
        uploader = MultipartUploader(store, part_size=PART)

        with pytest.raises(StorageError, match="part 1"):
            await asyncio.wait_for(uploader.upload("clip.mp4", stalled(), METADATA), timeout=5)

        assert len(store.aborted) == 1
        assert "clip.mp4" not in store.objects

    def test_invalid_tuning(self, store):
        with pytest.raises(ValueError):
            MultipartUploader(store, part_size=0)
        with pytest.raises(ValueError):
            MultipartUploader(store, queue_size=0)


@pytest.fixture
def s3():
    return boto3.client(
        "s3",
        endpoint_url="https://account.r2.cloudflarestorage.com",
        aws_access_key_id="test-key",
        aws_secret_access_key="test-secret",
        region_name="auto",
        config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


@pytest.fixture
def r2(s3) -> R2Client:
    return R2Client(s3_client=s3, bucket="media")


class TestR2Client:
    """Tests for R2Client against a stubbed boto3 client."""

    def test_not_configured(self, monkeypatch):
        from r2relay.config import settings
        monkeypatch.setattr(settings, "r2_account_id", None)
        monkeypatch.setattr(settings, "r2_endpoint", None)
        monkeypatch.setattr(settings, "r2_access_key_id", None)

        client = R2Client()

        assert not client.is_configured
        with pytest.raises(StorageError, match="not configured"):
            client.head_object("a.mp4")

    def test_multipart_calls(self, s3, r2):
        with Stubber(s3) as stubber:
            stubber.add_response(
                "create_multipart_upload",
                {"UploadId": "upload-1"},
                {
                    "Bucket": "media",
                    "Key": "clip.mp4",
                    "ContentType": "video/mp4",
                    "ContentDisposition": 'attachment; filename="clip.mp4"',
                    "CacheControl": "public, max-age=31536000, immutable",
                },
            )
            stubber.add_response("upload_part", {"ETag": '"e1"'})
            stubber.add_response(
                "complete_multipart_upload",
                {"ETag": '"final"'},
                {
                    "Bucket": "media",
                    "Key": "clip.mp4",
                    "UploadId": "upload-1",
                    "MultipartUpload": {"Parts": [{"PartNumber": 1, "ETag": '"e1"'}]},
                },
            )

            upload_id = r2.create_multipart_upload("clip.mp4", METADATA)
            etag = r2.upload_part("clip.mp4", upload_id, 1, b"data")
            final = r2.complete_multipart_upload("clip.mp4", upload_id, [{"PartNumber": 1, "ETag": etag}])

            stubber.assert_no_pending_responses()

        assert upload_id == "upload-1"
        assert final == '"final"'

    def test_upload_part_error(self, s3, r2):
        with Stubber(s3) as stubber:
            stubber.add_client_error("upload_part", service_error_code="InternalError", http_status_code=500)

            with pytest.raises(StorageError, match="part 3"):
                r2.upload_part("clip.mp4", "upload-1", 3, b"data")

    def test_abort_missing_upload_ignored(self, s3, r2):
        with Stubber(s3) as stubber:
            stubber.add_client_error("abort_multipart_upload", service_error_code="NoSuchUpload", http_status_code=404)

            r2.abort_multipart_upload("clip.mp4", "gone")

    def test_head_object(self, s3, r2):
        with Stubber(s3) as stubber:
            stubber.add_response(
                "head_object",
                {
                    "ContentType": "video/mp4",
                    "ContentLength": 42,
                    "CacheControl": "public",
                    "ContentDisposition": "attachment",
                    "ETag": '"abc"',
                },
                {"Bucket": "media", "Key": "clip.mp4"},
            )

            stored = r2.head_object("clip.mp4")

        assert stored.size == 42
        assert stored.content_type == "video/mp4"
        assert stored.etag == '"abc"'

    def test_head_object_not_found(self, s3, r2):
        with Stubber(s3) as stubber:
            stubber.add_client_error("head_object", service_error_code="404", http_status_code=404)

            with pytest.raises(ObjectNotFoundError):
                r2.head_object("missing.mp4")

    def test_get_object_not_found(self, s3, r2):
        with Stubber(s3) as stubber:
            stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)

            with pytest.raises(ObjectNotFoundError):
                r2.get_object("missing.mp4")

    def test_get_object_other_error(self, s3, r2):
        with Stubber(s3) as stubber:
            stubber.add_client_error("get_object", service_error_code="AccessDenied", http_status_code=403)

            with pytest.raises(StorageError):
                r2.get_object("secret.mp4")

    def test_presigned_read_url_overrides(self, r2):
        url = r2.get_presigned_read_url(
            "clip.mp4",
            expiration=3600,
            response_content_type="video/mp4",
            response_content_disposition='attachment; filename="clip.mp4"',
        )

        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert parsed.path == "/media/clip.mp4"
        assert query["X-Amz-Expires"] == ["3600"]
        assert query["response-content-type"] == ["video/mp4"]
        assert query["response-content-disposition"] == ['attachment; filename="clip.mp4"']


class TestIterBody:
    """Tests for iter_body."""

    def test_yields_chunks_and_closes(self):
        class Body:
            closed = False

            def iter_chunks(self, chunk_size):
                yield b"ab"
                yield b"cd"

            def close(self):
                self.closed = True

        body = Body()

        assert list(iter_body(body)) == [b"ab", b"cd"]
        assert body.closed

    def test_closes_when_abandoned(self):
        class Body:
            closed = False

            def iter_chunks(self, chunk_size):
                while True:
                    yield b"x"

            def close(self):
                self.closed = True

        body = Body()
        iterator = iter_body(body)
        next(iterator)
        iterator.close()

        assert body.closed
