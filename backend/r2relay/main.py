"""
FastAPI application entry point.
Sets up the relay API with lifespan events for the shared HTTP client.
"""
from contextlib import asynccontextmanager
import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from r2relay.config import settings
from r2relay.api import admin, files
from r2relay.api.router import api_router
from r2relay.middleware.metrics_middleware import MetricsMiddleware
from r2relay.services.telemetry import wait_for_background_tasks
from r2relay.storage.r2_client import get_r2_client
from r2relay.utils.logging import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events.
    - Startup: Configure logging, open the remote-fetch HTTP client
    - Shutdown: Let running uploads finish, then close the client
    """
    configure_logging('r2relay', settings.log_level)

    # Create the storage client early so misconfiguration shows up in startup logs
    get_r2_client()

    app.state.http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(
            settings.remote_read_timeout,
            connect=settings.remote_connect_timeout
        )
    )

    yield

    await wait_for_background_tasks()
    await app.state.http_client.aclose()


# Create FastAPI app
app = FastAPI(
    title="R2 Remote Upload Relay",
    description="Relays remote files into R2 with live progress and serves them back",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Metrics middleware (must be after CORS to track all requests)
app.add_middleware(MetricsMiddleware)


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


app.include_router(api_router, prefix="/api")
app.include_router(admin.router, tags=["admin"])
app.include_router(files.download_router, tags=["files"])
# Catch-all object route goes last
app.include_router(files.object_router, tags=["files"])
