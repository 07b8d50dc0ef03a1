"""
Cloudflare R2 / S3-compatible storage client.

Uses boto3 with S3-compatible API to interact with Cloudflare R2.
This is storage-provider agnostic - works with any S3-compatible storage.

The methods here are thin, blocking wrappers around single S3 calls.
The streaming multi-part put that drives them from async code lives in
app-level code (see r2relay.storage.multipart).
"""
import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple
import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from r2relay.config import settings
from r2relay.exceptions import ObjectNotFoundError, StorageError
from r2relay.storage.objects import ObjectMetadata, StoredObject

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")

# Chunk size used when streaming an object body back to a client
READ_CHUNK_SIZE = 64 * 1024


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class R2Client:
    """
    S3-compatible client for Cloudflare R2.

    Provides the multi-part upload primitives, reads and presigned
    read URLs used by the relay.
    """

    def __init__(self, s3_client: Any = None, bucket: Optional[str] = None):
        """
        Initialize R2 client with boto3.

        Uses environment variables for configuration unless a ready-made
        boto3 client is passed in. Fails gracefully if not configured;
        every operation then raises StorageError.
        """
        self._client = s3_client
        self._bucket = bucket or settings.r2_bucket_name
        self._configured = s3_client is not None

        if self._configured:
            return

        # Check if R2 is configured
        if not all([
            settings.r2_endpoint_url,
            settings.r2_access_key_id,
            settings.r2_secret_access_key
        ]):
            logger.warning(
                "R2 storage not configured. "
                "Set R2_ACCOUNT_ID (or R2_ENDPOINT), R2_ACCESS_KEY_ID and R2_SECRET_ACCESS_KEY."
            )
            return

        try:
            # Use signature_version='s3v4' for R2 compatibility
            self._client = boto3.client(
                's3',
                endpoint_url=settings.r2_endpoint_url,
                aws_access_key_id=settings.r2_access_key_id,
                aws_secret_access_key=settings.r2_secret_access_key,
                region_name=settings.r2_region,
                config=Config(
                    signature_version='s3v4',
                    s3={'addressing_style': 'path'}  # R2 uses path-style
                )
            )
            self._configured = True
            logger.info(f"R2 client initialized for bucket: {self._bucket}")

        except NoCredentialsError:
            logger.error("R2 credentials not found or invalid")
        except Exception as e:
            logger.error(f"Failed to initialize R2 client: {e}")

    @property
    def is_configured(self) -> bool:
        """Check if R2 client is properly configured."""
        return self._configured and self._client is not None

    @property
    def bucket(self) -> str:
        """Get configured bucket name."""
        return self._bucket

    def _require_client(self):
        if not self.is_configured:
            raise StorageError("Storage service not configured")
        return self._client

    def ping(self) -> None:
        """
        Check that the bucket is reachable with the configured credentials.

        Raises:
            StorageError: If the bucket cannot be reached
        """
        client = self._require_client()
        try:
            client.head_bucket(Bucket=self.bucket)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Bucket {self.bucket} unreachable: {e}") from e

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_multipart_upload(self, object_key: str, metadata: ObjectMetadata) -> str:
        """
        Start a multi-part upload.

        Args:
            object_key: The S3 object key (path in bucket)
            metadata: Headers stored with the object once completed

        Returns:
            The upload ID that identifies the multi-part upload
        """
        client = self._require_client()
        try:
            response = client.create_multipart_upload(
                Bucket=self.bucket,
                Key=object_key,
                ContentType=metadata.content_type,
                ContentDisposition=metadata.content_disposition,
                CacheControl=metadata.cache_control,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to start multipart upload for {object_key}: {e}")
            raise StorageError(f"Failed to start upload: {e}") from e

        upload_id = response["UploadId"]
        logger.debug(f"Started multipart upload {upload_id} for {object_key}")
        return upload_id

    def upload_part(self, object_key: str, upload_id: str, part_number: int, data: bytes) -> str:
        """
        Upload one part of a multi-part upload.

        Returns:
            The part's ETag, needed to complete the upload
        """
        client = self._require_client()
        try:
            response = client.upload_part(
                Bucket=self.bucket,
                Key=object_key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=data,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload part {part_number} of {object_key}: {e}")
            raise StorageError(f"Failed to upload part {part_number}: {e}") from e

        return response["ETag"]

    def complete_multipart_upload(
        self,
        object_key: str,
        upload_id: str,
        parts: List[Dict[str, Any]]
    ) -> Optional[str]:
        """
        Assemble the uploaded parts into the final object.

        Args:
            object_key: The S3 object key
            upload_id: Upload ID from create_multipart_upload
            parts: [{"PartNumber": n, "ETag": etag}, ...] in ascending order

        Returns:
            ETag of the assembled object, if reported
        """
        client = self._require_client()
        try:
            response = client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=object_key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to complete multipart upload for {object_key}: {e}")
            raise StorageError(f"Failed to complete upload: {e}") from e

        return response.get("ETag")

    def abort_multipart_upload(self, object_key: str, upload_id: str) -> None:
        """
        Abort a multi-part upload, discarding every part already stored.

        An upload the store no longer knows about counts as aborted.
        """
        client = self._require_client()
        try:
            client.abort_multipart_upload(
                Bucket=self.bucket,
                Key=object_key,
                UploadId=upload_id,
            )
            logger.info(f"Aborted multipart upload {upload_id} for {object_key}")
        except ClientError as e:
            if _error_code(e) in ("404", "NoSuchUpload"):
                logger.debug(f"Multipart upload {upload_id} already gone")
                return
            raise StorageError(f"Failed to abort upload: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to abort upload: {e}") from e

    def put_object(self, object_key: str, data: bytes, metadata: ObjectMetadata) -> Optional[str]:
        """
        Store a small object with a single PUT.

        Returns:
            ETag of the stored object, if reported
        """
        client = self._require_client()
        try:
            response = client.put_object(
                Bucket=self.bucket,
                Key=object_key,
                Body=data,
                ContentType=metadata.content_type,
                ContentDisposition=metadata.content_disposition,
                CacheControl=metadata.cache_control,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to put object {object_key}: {e}")
            raise StorageError(f"Failed to store object: {e}") from e

        return response.get("ETag")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def _stored_object(object_key: str, response: Dict[str, Any]) -> StoredObject:
        return StoredObject(
            key=object_key,
            content_type=response.get("ContentType"),
            size=response.get("ContentLength"),
            cache_control=response.get("CacheControl"),
            content_disposition=response.get("ContentDisposition"),
            etag=response.get("ETag"),
        )

    def head_object(self, object_key: str) -> StoredObject:
        """
        Get an object's attributes without its body.

        Raises:
            ObjectNotFoundError: If the key does not exist
            StorageError: On any other failure
        """
        client = self._require_client()
        try:
            response = client.head_object(Bucket=self.bucket, Key=object_key)
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                raise ObjectNotFoundError(object_key) from e
            logger.error(f"Error reading metadata of {object_key}: {e}")
            raise StorageError(f"Failed to read object metadata: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read object metadata: {e}") from e

        return self._stored_object(object_key, response)

    def get_object(self, object_key: str) -> Tuple[StoredObject, Any]:
        """
        Open an object for reading.

        Returns:
            Tuple of (attributes, botocore StreamingBody). The caller must
            close the body.

        Raises:
            ObjectNotFoundError: If the key does not exist
            StorageError: On any other failure
        """
        client = self._require_client()
        try:
            response = client.get_object(Bucket=self.bucket, Key=object_key)
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                raise ObjectNotFoundError(object_key) from e
            logger.error(f"Error reading object {object_key}: {e}")
            raise StorageError(f"Failed to read object: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read object: {e}") from e

        return self._stored_object(object_key, response), response["Body"]

    def get_presigned_read_url(
        self,
        object_key: str,
        expiration: int = 3600,
        response_content_type: Optional[str] = None,
        response_content_disposition: Optional[str] = None,
    ) -> str:
        """
        Generate a presigned GET URL for reading an object.

        The response-header overrides are part of the signature, so the
        store serves them regardless of the object's own metadata.

        Args:
            object_key: The S3 object key (path in bucket)
            expiration: URL expiration in seconds (default: 1 hour)
            response_content_type: Content-Type the store must answer with
            response_content_disposition: Content-Disposition the store must answer with

        Returns:
            Presigned URL string
        """
        client = self._require_client()
        params = {
            'Bucket': self.bucket,
            'Key': object_key,
        }
        if response_content_type:
            params['ResponseContentType'] = response_content_type
        if response_content_disposition:
            params['ResponseContentDisposition'] = response_content_disposition

        try:
            url = client.generate_presigned_url(
                ClientMethod='get_object',
                Params=params,
                ExpiresIn=expiration
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to generate presigned read URL: {e}")
            raise StorageError(f"Failed to sign URL: {e}") from e

        logger.debug(f"Generated presigned read URL for {object_key} (expires in {expiration}s)")
        return url


def iter_body(body: Any, chunk_size: int = READ_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield a StreamingBody in chunks, closing it when exhausted or abandoned."""
    try:
        for chunk in body.iter_chunks(chunk_size):
            yield chunk
    finally:
        body.close()


# Singleton instance
_r2_client: Optional[R2Client] = None


def get_r2_client() -> R2Client:
    """
    Get the singleton R2 client instance.

    Returns:
        R2Client instance (may or may not be configured)
    """
    global _r2_client
    if _r2_client is None:
        _r2_client = R2Client()
    return _r2_client
