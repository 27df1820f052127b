"""Server-side bridge between browsers and the blob store.

Every operation is stateless. Blob reads go through the store first; when the
store itself fails (not when the object is simply absent) exactly one plain
HTTP fetch of the object's public URL is attempted before giving up.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import AsyncIterator
from urllib.parse import urlparse

import httpx

from recdocs.config import settings
from recdocs.errors import (
    BadRequestError,
    BlobStoreError,
    ForbiddenError,
    NotFoundError,
    UpstreamFetchError,
)
from recdocs.services.archive_service import extract_first, is_pdf_entry
from recdocs.services.storage_service import BlobMetadata, BlobStore, parse_storage_url
from recdocs.utils.filesystem import normalize_object_path
from recdocs.utils.mime import DEFAULT_MIME_TYPE, resolve

logger = logging.getLogger("recdocs.gateway")

PASSTHROUGH_HEADERS = ("etag", "last-modified", "cache-control")
_DISPOSITION_FILENAME = re.compile(r"filename[^;=\n]*=((['\"]).*?\2|[^;\n]*)")


@dataclass
class ProxiedObject:
    content: bytes
    media_type: str
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class FetchedBlob:
    content: bytes
    content_type: str | None
    via_fallback: bool = False


def _disposition(inline: bool, filename: str | None = None) -> str:
    kind = "inline" if inline else "attachment"
    if not filename:
        return kind
    # Header values must stay printable ASCII.
    safe = "".join(c if 32 <= ord(c) < 127 and c not in '"\\' else "_" for c in filename)
    return f'{kind}; filename="{safe}"'


def _cache_control() -> str:
    if settings.is_development:
        return "no-store, max-age=0"
    return f"public, max-age={settings.proxy_cache_max_age}"


async def _fetch_public(client: httpx.AsyncClient, url: str) -> FetchedBlob:
    logger.info("Falling back to direct fetch of %s", url)
    try:
        response = await client.get(url, headers={"Accept": "application/octet-stream"})
    except httpx.HTTPError as exc:
        logger.error("Fallback fetch failed for %s: %s", url, exc)
        raise UpstreamFetchError() from exc
    if response.status_code == 404:
        raise NotFoundError("File not found")
    if response.is_error:
        logger.error("Fallback fetch for %s returned %s", url, response.status_code)
        raise UpstreamFetchError()
    return FetchedBlob(
        content=response.content,
        content_type=response.headers.get("content-type"),
        via_fallback=True,
    )


def _read_blob(store: BlobStore, path: str) -> tuple[BlobMetadata, bytes]:
    if not store.exists(path):
        logger.error("File does not exist: %s", path)
        raise NotFoundError("File not found")
    return store.get_metadata(path), store.download(path)


async def fetch_blob(
    store: BlobStore,
    client: httpx.AsyncClient,
    path: str,
    fallback_url: str | None = None,
) -> FetchedBlob:
    """Read an object via the store, falling back once to plain HTTP."""
    try:
        metadata, content = await asyncio.to_thread(_read_blob, store, path)
    except BlobStoreError as exc:
        logger.error("Storage error for %s: %s", path, exc.__cause__ or exc)
        return await _fetch_public(client, fallback_url or store.public_url(path))
    return FetchedBlob(content=content, content_type=metadata.content_type)


async def proxy_storage_path(
    store: BlobStore, client: httpx.AsyncClient, path: str | None, inline: bool = False
) -> ProxiedObject:
    if not path:
        raise BadRequestError("No path specified")
    path = normalize_object_path(path)
    logger.info("Proxy storage request for path: %s", path)

    blob = await fetch_blob(store, client, path)
    filename = path.rsplit("/", 1)[-1] or "document"
    media_type = blob.content_type or resolve(path)
    logger.info("Retrieved %s (%d bytes)", path, len(blob.content))
    return ProxiedObject(
        content=blob.content,
        media_type=media_type,
        headers={
            "Content-Disposition": _disposition(inline, filename),
            "Cache-Control": _cache_control(),
            "X-Content-Type-Options": "nosniff",
        },
    )


async def proxy_storage_url(
    store: BlobStore, client: httpx.AsyncClient, url: str | None
) -> ProxiedObject:
    if not url:
        raise BadRequestError("No URL provided")
    if store.host not in url:
        raise ForbiddenError("Invalid URL: Only storage URLs are allowed")
    path = parse_storage_url(url, store.host)
    if urlparse(url).hostname != store.host:
        raise ForbiddenError("Invalid URL: Only storage URLs are allowed")
    logger.info("Proxying storage URL for path: %s", path)

    blob = await fetch_blob(store, client, path, fallback_url=url)
    content_type = blob.content_type or resolve(path)
    is_pdf = path.lower().endswith(".pdf") or "pdf" in content_type.lower()
    if blob.via_fallback:
        is_pdf = is_pdf or ".pdf" in url.lower()
    return ProxiedObject(
        content=blob.content,
        media_type="application/pdf" if is_pdf else content_type,
        headers={
            "Content-Disposition": _disposition(True, "document.pdf" if is_pdf else None),
            "Cache-Control": f"public, max-age={settings.proxy_cache_max_age}",
            "Accept-Ranges": "bytes",
            "X-Content-Type-Options": "nosniff",
            "Access-Control-Allow-Origin": "*",
        },
    )


def _document_filename(url: str, response: httpx.Response) -> str:
    disposition = response.headers.get("content-disposition")
    if disposition:
        match = _DISPOSITION_FILENAME.search(disposition)
        if match and match.group(1):
            return match.group(1).replace('"', "").replace("'", "")
        return "document"
    last_segment = urlparse(url).path.rsplit("/", 1)[-1]
    return last_segment if "." in last_segment else "document"


@dataclass
class StreamedDocument:
    response: httpx.Response
    media_type: str
    headers: dict[str, str]

    async def body(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self.response.aiter_bytes():
                yield chunk
        finally:
            await self.response.aclose()

    async def close(self) -> None:
        await self.response.aclose()


async def open_document(client: httpx.AsyncClient, url: str | None, inline: bool = False) -> StreamedDocument:
    """Start streaming an arbitrary document URL.

    The caller must either consume ``body()`` or call ``close()``.
    """
    if not url:
        raise BadRequestError("No URL specified")
    if urlparse(url).scheme not in ("http", "https"):
        raise BadRequestError("Invalid URL")
    logger.info("Proxy document request for URL: %s", url)

    request = client.build_request("GET", url, headers={"User-Agent": settings.upstream_user_agent})
    try:
        response = await client.send(request, stream=True)
    except httpx.HTTPError as exc:
        logger.error("Failed to fetch document from %s: %s", url, exc)
        raise UpstreamFetchError("Failed to proxy document") from exc

    if response.is_error:
        await response.aclose()
        logger.error("Failed to fetch document from %s, status: %s", url, response.status_code)
        raise UpstreamFetchError(
            f"Failed to fetch document: {response.reason_phrase}",
            status_code=response.status_code,
        )

    headers = {
        "Content-Disposition": _disposition(inline, _document_filename(url, response)),
        "X-Content-Type-Options": "nosniff",
    }
    for name in PASSTHROUGH_HEADERS:
        value = response.headers.get(name)
        if value:
            headers[name] = value
    return StreamedDocument(
        response=response,
        media_type=response.headers.get("content-type") or DEFAULT_MIME_TYPE,
        headers=headers,
    )


async def auto_extract_pdf(
    store: BlobStore, client: httpx.AsyncClient, path: str | None
) -> ProxiedObject:
    if not path:
        raise BadRequestError("No path specified")
    path = normalize_object_path(path)
    logger.info("Auto-extract from storage path: %s", path)

    blob = await fetch_blob(store, client, path)
    found = await asyncio.to_thread(extract_first, blob.content, is_pdf_entry)
    if found is None:
        raise NotFoundError("No PDF found in ZIP")
    filename, content = found
    logger.info("Extracted %s (%d bytes) from %s", filename, len(content), path)
    return ProxiedObject(
        content=content,
        media_type="application/pdf",
        headers={
            "Content-Disposition": _disposition(True, filename.rsplit("/", 1)[-1]),
            "X-Content-Type-Options": "nosniff",
        },
    )
