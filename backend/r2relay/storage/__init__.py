"""
Storage module for S3-compatible object storage (Cloudflare R2).

Relayed files are streamed into the bucket with multi-part uploads
and read back either through the service or via presigned URLs.
"""
from r2relay.storage.r2_client import get_r2_client, R2Client
from r2relay.storage.multipart import MultipartUploader
from r2relay.storage.objects import ObjectMetadata, StoredObject, UploadResult

__all__ = [
    "get_r2_client",
    "R2Client",
    "MultipartUploader",
    "ObjectMetadata",
    "StoredObject",
    "UploadResult",
]
