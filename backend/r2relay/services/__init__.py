"""
Business logic services.
"""
from r2relay.services.upload_service import UploadCoordinator, UploadJob, JobState
from r2relay.services.retrieval_service import RetrievalResolver, RetrievalMode
from r2relay.services.remote_source import RemoteSource
from r2relay.services.telemetry import ProgressChannel, open_progress_stream

__all__ = [
    "UploadCoordinator",
    "UploadJob",
    "JobState",
    "RetrievalResolver",
    "RetrievalMode",
    "RemoteSource",
    "ProgressChannel",
    "open_progress_stream",
]
