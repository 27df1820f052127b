"""Content-addressed cache of extracted application archives.

Entries are keyed by ``(application code, archive hash)``. The hash is the
content identity of an archive, so a resubmitted archive for the same
application is simply a different key: a lookup can miss, but it can never
return files from another version. Entries are never rewritten in place and
are only removed explicitly (``clear``/``prune``).

The cache is disposable. Losing it costs a download, never data.
"""

import asyncio
import logging

from recdocs.config import settings
from recdocs.services.local_store import LocalStore

logger = logging.getLogger("recdocs.cache")


class DocumentCache:
    def __init__(self, store: LocalStore, prefix: str | None = None):
        self.store = store
        self.prefix = prefix or settings.cache_prefix

    def cache_key(self, application_code: str, zip_hash: str) -> str:
        return f"{self.prefix}:{application_code}:{zip_hash}"

    def _application_prefix(self, application_code: str) -> str:
        return f"{self.prefix}:{application_code}:"

    async def get(self, application_code: str, zip_hash: str) -> dict[str, bytes] | None:
        return await asyncio.to_thread(self.store.get, self.cache_key(application_code, zip_hash))

    async def put(self, application_code: str, zip_hash: str, files: dict[str, bytes]) -> None:
        key = self.cache_key(application_code, zip_hash)
        await asyncio.to_thread(self.store.set, key, dict(files))
        logger.info("Cached %d file(s) under %s", len(files), key)

    async def clear(self, application_code: str, zip_hash: str) -> None:
        await asyncio.to_thread(self.store.delete, self.cache_key(application_code, zip_hash))

    async def cached_hashes(self, application_code: str) -> list[str]:
        prefix = self._application_prefix(application_code)
        keys = await asyncio.to_thread(self.store.keys, prefix)
        return [k[len(prefix):] for k in keys]

    async def prune(self, application_code: str, keep_hash: str) -> int:
        """Drop every cached version of an application except ``keep_hash``."""
        removed = 0
        for zip_hash in await self.cached_hashes(application_code):
            if zip_hash == keep_hash:
                continue
            await self.clear(application_code, zip_hash)
            removed += 1
        if removed:
            logger.info("Pruned %d stale cache version(s) for %s", removed, application_code)
        return removed
