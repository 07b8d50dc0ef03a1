"""Custom exceptions for the relay service."""


class UploadError(Exception):
    """
    Base class for failures in the upload flow.

    The message is reported to the client verbatim in the terminal
    error record, so it must not leak credentials or internals.
    """


class UploadValidationError(UploadError):
    """Raised when the upload request is missing data or names an unusable key."""


class KeyInUseError(UploadError):
    """Raised when another upload to the same key is still running."""

    def __init__(self, object_key: str):
        self.object_key = object_key
        super().__init__(f"An upload to '{object_key}' is already in progress")


class RemoteFetchError(UploadError):
    """Raised when the remote source is unreachable or answers with a non-2xx status."""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class StorageError(UploadError):
    """Raised when the object store rejects or fails an operation."""


class ObjectNotFoundError(Exception):
    """Raised when a requested object does not exist in the bucket."""

    def __init__(self, object_key: str):
        self.object_key = object_key
        super().__init__(f"Object {object_key} not found")
