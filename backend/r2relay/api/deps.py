"""
FastAPI dependencies wiring the services to the shared clients.
Tests override these to swap in an in-memory store and a mocked remote.
"""
import httpx
from fastapi import Depends, Request

from r2relay.services.remote_source import RemoteSource
from r2relay.services.retrieval_service import RetrievalResolver
from r2relay.services.upload_service import UploadCoordinator
from r2relay.storage.r2_client import R2Client, get_r2_client


def get_object_store() -> R2Client:
    return get_r2_client()


def get_http_client(request: Request) -> httpx.AsyncClient:
    """The httpx client opened in the app lifespan."""
    return request.app.state.http_client


def get_upload_coordinator(
    store: R2Client = Depends(get_object_store),
    http_client: httpx.AsyncClient = Depends(get_http_client),
) -> UploadCoordinator:
    return UploadCoordinator(store, RemoteSource(http_client))


def get_retrieval_resolver(
    store: R2Client = Depends(get_object_store),
) -> RetrievalResolver:
    return RetrievalResolver(store)
