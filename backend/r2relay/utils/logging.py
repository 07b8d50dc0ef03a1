"""
Structured JSON logging for the relay.

Provides event-specific logging functions with mandatory fields:
- timestamp (ISO8601)
- level
- service
- event

Optional fields (included when applicable):
- job_id
- object_key
- duration_ms

Usage:
    from r2relay.utils.logging import configure_logging, log_upload_started

    configure_logging('r2relay', 'INFO')
    log_upload_started(logger, job_id='a1b2', object_key='movie.mp4', remote_url='https://...')
"""
import logging
import sys
from typing import Optional, Dict, Any
from pythonjsonlogger import jsonlogger


class StructuredLogger:
    """Structured JSON logger with mandatory fields."""

    _service_name = None
    _configured = False

    @classmethod
    def configure(cls, service_name: str, log_level: str = "INFO"):
        """
        Configure structured JSON logging for the application.

        Args:
            service_name: Service identifier added to every record
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        """
        if cls._configured:
            return

        cls._service_name = service_name

        root_logger = logging.getLogger()
        root_logger.handlers = []

        formatter = jsonlogger.JsonFormatter(
            '%(timestamp)s %(levelname)s %(name)s %(message)s',
            timestamp=True,
            json_ensure_ascii=False
        )

        # Console handler (container logs)
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)

        root_logger.addHandler(handler)
        root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

        class ServiceFilter(logging.Filter):
            def filter(self, record):
                record.service = cls._service_name
                return True

        handler.addFilter(ServiceFilter())
        cls._configured = True


def _build_log_extra(
    event: str,
    job_id: Optional[str] = None,
    object_key: Optional[str] = None,
    duration_ms: Optional[float] = None,
    **kwargs
) -> Dict[str, Any]:
    """
    Build extra fields for structured logging.

    Args:
        event: Event name (mandatory)
        job_id: Optional upload job ID
        object_key: Optional object key
        duration_ms: Optional duration in milliseconds
        **kwargs: Additional fields

    Returns:
        Dictionary of extra fields
    """
    extra = {
        "event": event,
        **kwargs
    }

    if job_id:
        extra["job_id"] = job_id
    if object_key:
        extra["object_key"] = object_key
    if duration_ms is not None:
        extra["duration_ms"] = round(duration_ms, 2)

    return extra


# Upload event functions

def log_upload_started(
    logger: logging.Logger,
    job_id: str,
    object_key: str,
    remote_url: str,
    **kwargs
):
    """Log the start of a remote upload job."""
    extra = _build_log_extra(
        event="upload_started",
        job_id=job_id,
        object_key=object_key,
        remote_url=remote_url,
        **kwargs
    )
    logger.info(f"Upload started: {object_key}", extra=extra)


def log_upload_completed(
    logger: logging.Logger,
    job_id: str,
    object_key: str,
    size_bytes: int,
    duration_ms: float,
    parts: Optional[int] = None,
    **kwargs
):
    """
    Log a successful upload job.

    Args:
        logger: Logger instance
        job_id: Job ID (required)
        object_key: Stored key (required)
        size_bytes: Bytes written to the store (required)
        duration_ms: Duration in milliseconds (required)
        parts: Number of parts the object was uploaded in
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="upload_completed",
        job_id=job_id,
        object_key=object_key,
        duration_ms=duration_ms,
        size_bytes=size_bytes,
        **kwargs
    )
    if parts is not None:
        extra["parts"] = parts

    logger.info(f"Upload completed: {object_key} ({size_bytes} bytes)", extra=extra)


def log_upload_failed(
    logger: logging.Logger,
    job_id: str,
    object_key: Optional[str],
    error: str,
    duration_ms: Optional[float] = None,
    error_type: Optional[str] = None,
    include_traceback: bool = False,
    **kwargs
):
    """
    Log a failed upload job.

    Args:
        logger: Logger instance
        job_id: Job ID (required)
        object_key: Target key, when known
        error: Error message (required)
        duration_ms: Optional duration in milliseconds
        error_type: Exception class name
        include_traceback: Whether to include the active stack trace
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="upload_failed",
        job_id=job_id,
        object_key=object_key,
        duration_ms=duration_ms,
        error=str(error),
        **kwargs
    )
    if error_type:
        extra["error_type"] = error_type

    message = f"Upload failed: {object_key or job_id} - {error}"

    # Expected failures (bad input, unreachable source) are warnings
    if include_traceback and sys.exc_info()[0] is not None:
        logger.error(message, extra=extra, exc_info=sys.exc_info())
    elif include_traceback:
        logger.error(message, extra=extra)
    else:
        logger.warning(message, extra=extra)


# Retrieval event functions

def log_object_retrieved(
    logger: logging.Logger,
    object_key: str,
    mode: str,
    status_code: int,
    duration_ms: Optional[float] = None,
    **kwargs
):
    """Log how a retrieval request was answered."""
    extra = _build_log_extra(
        event="object_retrieved",
        object_key=object_key,
        duration_ms=duration_ms,
        mode=mode,
        status_code=status_code,
        **kwargs
    )
    logger.info(f"Object retrieval: {object_key} via {mode} -> {status_code}", extra=extra)


def configure_logging(service_name: str, log_level: str = "INFO"):
    """Configure logging (alias for StructuredLogger.configure)."""
    StructuredLogger.configure(service_name, log_level)
