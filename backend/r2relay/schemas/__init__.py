"""
Pydantic schemas for API request/response validation.
"""
from r2relay.schemas.upload import (
    UploadRequest,
    ProgressUpdate,
    UploadSucceeded,
    UploadFailed,
    ProgressRecord,
)

__all__ = [
    "UploadRequest",
    "ProgressUpdate",
    "UploadSucceeded",
    "UploadFailed",
    "ProgressRecord",
]
