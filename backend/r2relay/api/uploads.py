"""
Remote upload endpoint.

POST /api/upload?pass=<secret> with {"remoteUrl": ..., "customName": ...}

The response starts immediately and streams newline-delimited JSON while
the file is relayed into the bucket:

    {"progress": 20}
    {"progress": 40}
    ...
    {"success": true, "link": "https://files.example.com/movie.mp4"}

or, on failure, a single {"error": "..."} line. The upload runs in a
background task and finishes even if the client disconnects.
"""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from r2relay.api.deps import get_upload_coordinator
from r2relay.auth.dependencies import require_admin_secret
from r2relay.schemas.upload import UploadRequest
from r2relay.services.telemetry import NDJSON_MEDIA_TYPE, open_progress_stream
from r2relay.services.upload_service import UploadCoordinator

router = APIRouter()


async def _read_upload_request(request: Request) -> UploadRequest:
    # Parsed by hand so the secret check always runs first
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Request body must be JSON"
        )
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Request body must be a JSON object"
        )
    try:
        return UploadRequest.model_validate(payload)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid upload request: {e.errors()[0]['msg']}"
        )


@router.post("/upload", dependencies=[Depends(require_admin_secret)])
async def upload_remote_file(
    request: Request,
    coordinator: UploadCoordinator = Depends(get_upload_coordinator),
):
    """
    Relay a remote file into the bucket, streaming progress records.

    Missing fields, unusable keys, unreachable sources and storage
    failures all end the stream with one {"error"} record; the HTTP
    status stays 200 once streaming has started.

    Requires the admin secret in the `pass` query parameter.
    """
    upload_request = await _read_upload_request(request)
    base_url = str(request.base_url)

    channel = open_progress_stream(
        lambda ch: coordinator.run(upload_request, ch, base_url)
    )

    return StreamingResponse(
        channel.lines(),
        media_type=NDJSON_MEDIA_TYPE,
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",  # Disable proxy buffering (nginx)
        },
    )
