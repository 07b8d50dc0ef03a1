"""
Pydantic schemas for the remote upload endpoint.

The response body is newline-delimited JSON: zero or more progress
records followed by exactly one terminal record (success or error).
"""
from pydantic import BaseModel, Field
from typing import Literal, Optional, Union


class UploadRequest(BaseModel):
    """Request schema for relaying a remote file into the bucket."""
    remote_url: Optional[str] = Field(None, alias="remoteUrl", description="URL of the file to fetch")
    custom_name: Optional[str] = Field(None, alias="customName", description="Object key to store it under")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "remoteUrl": "https://example.com/videos/movie.mp4",
                "customName": "movie.mp4"
            }
        }


class ProgressUpdate(BaseModel):
    """Percentage of the remote file acknowledged by the store."""
    progress: int = Field(..., ge=0, le=100)


class UploadSucceeded(BaseModel):
    """Terminal record: the object is stored and reachable at `link`."""
    success: Literal[True] = True
    link: str


class UploadFailed(BaseModel):
    """Terminal record: the upload did not produce an object."""
    error: str


ProgressRecord = Union[ProgressUpdate, UploadSucceeded, UploadFailed]


def is_terminal(record: ProgressRecord) -> bool:
    """Check if a record ends the stream."""
    return not isinstance(record, ProgressUpdate)


def to_ndjson_line(record: ProgressRecord) -> str:
    """Serialize a record as one newline-terminated JSON line."""
    return record.model_dump_json() + "\n"
