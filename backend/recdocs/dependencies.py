import httpx
from fastapi import Request

from recdocs.services.storage_service import BlobStore


def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client
