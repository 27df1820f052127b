import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from recdocs.config import settings
from recdocs.database import init_db
from recdocs.errors import RecDocsError
from recdocs.routers import applications, proxy
from recdocs.services.storage_service import LocalBlobStore
from recdocs.utils.filesystem import ensure_data_dirs

VERSION = "0.1.0"

logger = logging.getLogger("recdocs")
logger.setLevel(settings.log_level.upper())


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_data_dirs()
    init_db()
    app.state.blob_store = LocalBlobStore(
        settings.blobs_dir, settings.storage_bucket, settings.storage_host
    )
    # No retries: the only second attempt is the gateway's storage fallback.
    app.state.http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.upstream_timeout_seconds, connect=10.0),
        follow_redirects=True,
    )
    logger.info("Serving documents from %s", settings.data_path)
    yield
    await app.state.http_client.aclose()


app = FastAPI(
    title="REC Protocol Documents",
    description="Protocol submission archives, document cache metadata and storage proxy",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(RecDocsError)
async def recdocs_error_handler(request: Request, exc: RecDocsError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %r", request.method, request.url.path, exc.__cause__ or exc)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


app.include_router(proxy.router, prefix=settings.api_prefix)
app.include_router(applications.router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "ok", "version": VERSION}
