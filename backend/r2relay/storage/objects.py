"""
Value types exchanged with the object store.
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ObjectMetadata:
    """HTTP metadata written once, when the object is uploaded."""
    content_type: str
    content_disposition: str
    cache_control: str


@dataclass(frozen=True)
class StoredObject:
    """Object attributes as reported by the store on read."""
    key: str
    content_type: Optional[str] = None
    size: Optional[int] = None
    cache_control: Optional[str] = None
    content_disposition: Optional[str] = None
    etag: Optional[str] = None


@dataclass(frozen=True)
class UploadResult:
    """Outcome of a completed put."""
    key: str
    size: int
    parts: int
    etag: Optional[str] = None
