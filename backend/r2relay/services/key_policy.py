"""
Object key policy and per-key upload leases.

Keys come straight from the client, so they are checked before any
work starts. A key must:
- be non-empty and at most `max_length` UTF-8 bytes
- contain no control characters
- not start with "/" nor contain empty, "." or ".." path segments
- not start with a reserved route prefix, so GET /<key> can reach it
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Set

from r2relay.exceptions import KeyInUseError, UploadValidationError

RESERVED_PREFIXES = frozenset({"api", "download", "metrics"})


def validate_object_key(key: str, max_length: int = 1024) -> str:
    """
    Check a client-supplied key against the key policy.

    Returns:
        The key, unchanged

    Raises:
        UploadValidationError: Describing the first violated rule
    """
    if not key:
        raise UploadValidationError("Missing Data: customName is required")
    if len(key.encode("utf-8")) > max_length:
        raise UploadValidationError(f"customName is longer than {max_length} bytes")
    if any(ord(ch) < 0x20 or ord(ch) == 0x7f for ch in key):
        raise UploadValidationError("customName must not contain control characters")
    if key.startswith("/"):
        raise UploadValidationError("customName must not start with '/'")

    segments = key.split("/")
    if any(segment in ("", ".", "..") for segment in segments):
        raise UploadValidationError("customName must not contain empty, '.' or '..' path segments")
    if segments[0].lower() in RESERVED_PREFIXES:
        raise UploadValidationError(f"customName must not start with '{segments[0]}/'")

    return key


class KeyLeases:
    """
    In-process registry of keys with an upload in flight.

    Policy: a second upload to a key that is still being written is
    rejected. Uploads from other processes are not coordinated; there the
    last completed upload wins.
    """

    def __init__(self):
        self._held: Set[str] = set()

    def is_held(self, key: str) -> bool:
        return key in self._held

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        # Check-and-add without an await in between is atomic on the event loop
        if key in self._held:
            raise KeyInUseError(key)
        self._held.add(key)
        try:
            yield
        finally:
            self._held.discard(key)


# Shared by every request handled by this process
upload_leases = KeyLeases()
