"""
Object retrieval endpoints.

GET /download/<key>  - 302 to a presigned URL (valid 1 hour)
GET /<key>           - resolved with the configured retrieval mode
                       (stream through the service by default)

Both answer 404 for a key that does not exist. The catch-all route must
be registered after every other route.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from starlette.responses import Response

from r2relay.api.deps import get_retrieval_resolver
from r2relay.exceptions import ObjectNotFoundError, StorageError
from r2relay.services.retrieval_service import RetrievalMode, RetrievalResolver

logger = logging.getLogger(__name__)

download_router = APIRouter()
object_router = APIRouter()


async def _resolve(resolver: RetrievalResolver, key: str, mode: RetrievalMode = None) -> Response:
    try:
        return await resolver.resolve(key, mode)
    except ObjectNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File Not Found")
    except StorageError as e:
        logger.error(f"Storage error while retrieving {key}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Storage unavailable")


@download_router.get("/download/{key:path}")
async def download_redirect(
    key: str,
    resolver: RetrievalResolver = Depends(get_retrieval_resolver)
):
    """Redirect to a short-lived signed URL for the object."""
    return await _resolve(resolver, key, RetrievalMode.REDIRECT)


@object_router.get("/{key:path}")
async def get_object(
    key: str,
    resolver: RetrievalResolver = Depends(get_retrieval_resolver)
):
    """Serve the object with the configured retrieval mode."""
    return await _resolve(resolver, key)
