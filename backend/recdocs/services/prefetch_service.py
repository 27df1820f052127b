"""Keeps the local document cache populated from application manifests.

``DocumentPrefetcher.ensure`` is single-flight per application code: callers
that arrive while a download is in progress await the same task instead of
starting another download. ``ApplicationDocuments`` is the per-application
handle a reader holds on to (loading state, error string, lazy file access,
retry).
"""

import asyncio
import functools
import logging
from pathlib import Path
from typing import Callable, Protocol

import httpx
from pydantic import ValidationError

from recdocs.config import settings
from recdocs.errors import (
    ArchiveHashMismatchError,
    MetadataMissingError,
    RecDocsError,
    UpstreamFetchError,
)
from recdocs.models.application import Application
from recdocs.schemas.application import DocumentCacheMeta, ManifestEntry
from recdocs.services.archive_service import extract_archive
from recdocs.services.document_cache import DocumentCache
from recdocs.services.local_store import SqliteLocalStore
from recdocs.utils.hashing import content_hash, same_content

logger = logging.getLogger("recdocs.prefetch")

Files = dict[str, bytes]

LOAD_FAILED_MESSAGE = "Failed to load documents"


class MetadataSource(Protocol):
    async def get_documents_meta(self, application_code: str) -> dict | None: ...


class DatabaseMetadataSource:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def _load(self, application_code: str) -> dict | None:
        with self._session_factory() as db:
            app = db.get(Application, application_code)
            if app is None:
                return None
            return app.documents_meta()

    async def get_documents_meta(self, application_code: str) -> dict | None:
        return await asyncio.to_thread(self._load, application_code)


class HttpMetadataSource:
    """Reads archive metadata from the server's documents-meta endpoint."""

    def __init__(self, client: httpx.AsyncClient, api_prefix: str | None = None):
        self._client = client
        self._api_prefix = api_prefix if api_prefix is not None else settings.api_prefix

    async def get_documents_meta(self, application_code: str) -> dict | None:
        url = f"{self._api_prefix}/applications/{application_code}/documents-meta"
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise UpstreamFetchError("Failed to load document metadata") from exc
        if response.status_code == 404:
            return None
        if response.is_error:
            raise UpstreamFetchError("Failed to load document metadata", status_code=response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamFetchError("Invalid document metadata response") from exc


class DocumentPrefetcher:
    def __init__(
        self,
        metadata_source: MetadataSource,
        cache: DocumentCache,
        client: httpx.AsyncClient,
        verify_hash: bool | None = None,
    ):
        self.metadata_source = metadata_source
        self.cache = cache
        self.client = client
        self.verify_hash = settings.verify_archive_hash if verify_hash is None else verify_hash
        self._pending: dict[str, asyncio.Task] = {}

    async def load_meta(self, application_code: str) -> DocumentCacheMeta:
        raw = await self.metadata_source.get_documents_meta(application_code)
        if not raw:
            raise MetadataMissingError()
        try:
            return DocumentCacheMeta.model_validate(raw)
        except ValidationError as exc:
            raise MetadataMissingError() from exc

    def is_pending(self, application_code: str) -> bool:
        return application_code in self._pending

    async def ensure_with_meta(self, application_code: str) -> tuple[DocumentCacheMeta, Files]:
        task = self._pending.get(application_code)
        if task is None:
            task = asyncio.create_task(self._populate(application_code))
            self._pending[application_code] = task
            task.add_done_callback(functools.partial(self._forget, application_code))
        # One caller being cancelled must not cancel the shared download.
        return await asyncio.shield(task)

    async def ensure(self, application_code: str) -> Files:
        _, files = await self.ensure_with_meta(application_code)
        return files

    async def get_file(self, application_code: str, file_name: str) -> bytes | None:
        files = await self.ensure(application_code)
        return files.get(file_name)

    def _forget(self, application_code: str, task: asyncio.Task) -> None:
        if self._pending.get(application_code) is task:
            del self._pending[application_code]

    async def _populate(self, application_code: str) -> tuple[DocumentCacheMeta, Files]:
        meta = await self.load_meta(application_code)
        cached = await self.cache.get(application_code, meta.zip_hash)
        if cached is not None:
            logger.debug("Cache hit for %s@%s", application_code, meta.zip_hash)
            return meta, cached

        logger.info("Cache miss for %s@%s, downloading archive", application_code, meta.zip_hash)
        data = await self._download(meta.zip_download_url)
        if self.verify_hash:
            actual = content_hash(data)
            if not same_content(meta.zip_hash, actual):
                logger.error(
                    "Archive hash mismatch for %s: expected %s, got %s",
                    application_code, meta.zip_hash, actual,
                )
                raise ArchiveHashMismatchError(meta.zip_hash, actual)

        files = await asyncio.to_thread(extract_archive, data)
        await self.cache.put(application_code, meta.zip_hash, files)
        await self.cache.prune(application_code, meta.zip_hash)
        return meta, files

    async def _download(self, url: str) -> bytes:
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as exc:
            logger.error("Archive download failed for %s: %s", url, exc)
            raise UpstreamFetchError("Failed to download documents") from exc
        if response.is_error:
            logger.error("Archive download for %s returned %s", url, response.status_code)
            raise UpstreamFetchError("Failed to download documents", status_code=response.status_code)
        return response.content


class ApplicationDocuments:
    """Lazy, retryable view of one application's documents.

    Failures never raise out of ``load``/``get_file``; they are exposed as the
    ``error`` string and passed to ``notify`` when one is given.
    """

    def __init__(
        self,
        prefetcher: DocumentPrefetcher,
        application_code: str,
        notify: Callable[[str], None] | None = None,
    ):
        self.prefetcher = prefetcher
        self.application_code = application_code
        self.notify = notify
        self.is_loading = False
        self.error: str | None = None
        self.file_manifest: list[ManifestEntry] | None = None
        self.zip_hash: str | None = None
        self._files: Files | None = None
        self._load_task: asyncio.Task | None = None

    async def load(self) -> Files | None:
        self.is_loading = True
        self.error = None
        try:
            meta, files = await self.prefetcher.ensure_with_meta(self.application_code)
        except RecDocsError as exc:
            self._report(exc.message)
            return None
        except Exception:
            logger.exception("Loading documents for %s failed", self.application_code)
            self._report(LOAD_FAILED_MESSAGE)
            return None
        finally:
            self.is_loading = False
        self.file_manifest = meta.file_manifest
        self.zip_hash = meta.zip_hash
        self._files = files
        return files

    def _report(self, message: str) -> None:
        self.error = message
        if self.notify is not None:
            self.notify(message)

    async def get_file(self, file_name: str) -> bytes | None:
        if self._files is None:
            if self._load_task is None:
                self._load_task = asyncio.ensure_future(self.load())
            await self._load_task
        if self._files is None:
            return None
        return self._files.get(file_name)

    async def retry(self) -> Files | None:
        self._files = None
        self.file_manifest = None
        self.zip_hash = None
        self._load_task = asyncio.ensure_future(self.load())
        return await self._load_task


def build_http_prefetcher(
    base_url: str,
    cache_db_path: Path | None = None,
    verify_hash: bool | None = None,
) -> DocumentPrefetcher:
    """Prefetcher for a reader talking to a running server at ``base_url``.

    The caller owns the returned prefetcher's ``client`` and must close it.
    """
    client = httpx.AsyncClient(
        base_url=base_url,
        timeout=httpx.Timeout(settings.upstream_timeout_seconds, connect=10.0),
        follow_redirects=True,
    )
    store = SqliteLocalStore(cache_db_path or settings.cache_db_path)
    return DocumentPrefetcher(
        HttpMetadataSource(client),
        DocumentCache(store),
        client,
        verify_hash=verify_hash,
    )
