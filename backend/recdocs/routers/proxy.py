import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import Response, StreamingResponse
from starlette.background import BackgroundTask

from recdocs.dependencies import get_blob_store, get_http_client
from recdocs.services.gateway_service import (
    ProxiedObject,
    auto_extract_pdf,
    open_document,
    proxy_storage_path,
    proxy_storage_url,
)
from recdocs.services.storage_service import BlobStore

router = APIRouter(tags=["proxy"])

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Range",
}


def _flag(value: str | None) -> bool:
    return (value or "").lower() == "true"


def _to_response(obj: ProxiedObject) -> Response:
    return Response(content=obj.content, media_type=obj.media_type, headers=obj.headers)


def _preflight() -> Response:
    return Response(status_code=204, headers=PREFLIGHT_HEADERS)


@router.get("/proxy-storage/path")
async def proxy_storage_by_path(
    path: str | None = None,
    inline: str | None = None,
    store: BlobStore = Depends(get_blob_store),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    return _to_response(await proxy_storage_path(store, client, path, _flag(inline)))


@router.get("/proxy-storage")
async def proxy_storage_by_url(
    url: str | None = None,
    store: BlobStore = Depends(get_blob_store),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    return _to_response(await proxy_storage_url(store, client, url))


@router.get("/proxy-document")
async def proxy_document(
    url: str | None = None,
    inline: str | None = None,
    client: httpx.AsyncClient = Depends(get_http_client),
):
    document = await open_document(client, url, _flag(inline))
    # The background close covers clients that disconnect before the body starts.
    return StreamingResponse(
        document.body(),
        media_type=document.media_type,
        headers=document.headers,
        background=BackgroundTask(document.close),
    )


@router.get("/auto-extract-zip")
async def auto_extract_zip(
    path: str | None = None,
    store: BlobStore = Depends(get_blob_store),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    return _to_response(await auto_extract_pdf(store, client, path))


@router.options("/proxy-storage/path")
@router.options("/proxy-storage")
@router.options("/proxy-document")
@router.options("/auto-extract-zip")
async def preflight():
    return _preflight()
