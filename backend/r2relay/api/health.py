"""
Health check endpoint.
Verifies object storage connectivity.
"""
from fastapi import APIRouter, Depends, HTTPException
from starlette.concurrency import run_in_threadpool

from r2relay.api.deps import get_object_store
from r2relay.config import settings
from r2relay.exceptions import StorageError
from r2relay.storage.r2_client import R2Client

router = APIRouter()


@router.get("")
async def health_check(store: R2Client = Depends(get_object_store)):
    """
    Health check endpoint.
    Returns status of the storage bucket.
    """
    health_status = {
        "status": "healthy",
        "storage": "unknown",
        "environment": settings.environment,
    }

    try:
        await run_in_threadpool(store.ping)
        health_status["storage"] = "connected"
    except StorageError as e:
        health_status["storage"] = f"error: {str(e)}"
        health_status["status"] = "unhealthy"

    if health_status["status"] == "unhealthy":
        raise HTTPException(status_code=503, detail=health_status)

    return health_status
