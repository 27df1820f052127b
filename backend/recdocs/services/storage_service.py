import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol
from urllib.parse import quote, unquote, urlparse

from recdocs.errors import BadRequestError, BlobStoreError, NotFoundError
from recdocs.utils.filesystem import normalize_object_path
from recdocs.utils.mime import resolve

logger = logging.getLogger("recdocs.storage")

METADATA_DIR = ".metadata"


@dataclass
class BlobMetadata:
    path: str
    content_type: str | None
    size: int
    updated: str


class BlobStore(Protocol):
    bucket: str
    host: str

    def exists(self, path: str) -> bool: ...

    def download(self, path: str) -> bytes: ...

    def get_metadata(self, path: str) -> BlobMetadata: ...

    def upload(self, path: str, content: bytes, content_type: str | None = None) -> BlobMetadata: ...

    def delete(self, path: str) -> None: ...

    def public_url(self, path: str) -> str: ...


def build_public_url(host: str, bucket: str, path: str) -> str:
    return f"https://{host}/v0/b/{bucket}/o/{quote(path, safe='')}?alt=media"


def parse_storage_url(url: str, host: str) -> str:
    """Map a public blob URL back to its object path.

    Raises BadRequestError when the URL does not have the ``/o/<path>`` shape.
    Host allow-listing is the caller's job.
    """
    try:
        parsed = urlparse(url)
    except ValueError as exc:
        raise BadRequestError("Invalid storage URL format") from exc
    if not parsed.scheme or not parsed.netloc:
        raise BadRequestError("Invalid storage URL format")
    _, sep, encoded = parsed.path.partition("/o/")
    if not sep or not encoded:
        raise BadRequestError("Invalid storage URL format")
    return normalize_object_path(unquote(encoded))


class LocalBlobStore:
    """Filesystem bucket: objects under ``<root>/<bucket>/``, metadata in sidecars."""

    def __init__(self, root: Path, bucket: str, host: str):
        self.root = root / bucket
        self.bucket = bucket
        self.host = host

    def _object_path(self, path: str) -> Path:
        normalized = normalize_object_path(path)
        if normalized.split("/", 1)[0] == METADATA_DIR:
            raise BadRequestError("Invalid storage path")
        return self.root / normalized

    def _metadata_path(self, path: str) -> Path:
        return self.root / METADATA_DIR / f"{normalize_object_path(path)}.json"

    def exists(self, path: str) -> bool:
        try:
            return self._object_path(path).is_file()
        except OSError as exc:
            raise BlobStoreError() from exc

    def download(self, path: str) -> bytes:
        target = self._object_path(path)
        try:
            return target.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError("File not found") from exc
        except OSError as exc:
            logger.error("Blob download failed for %s: %s", path, exc)
            raise BlobStoreError() from exc

    def get_metadata(self, path: str) -> BlobMetadata:
        target = self._object_path(path)
        try:
            stat = target.stat()
        except FileNotFoundError as exc:
            raise NotFoundError("File not found") from exc
        except OSError as exc:
            raise BlobStoreError() from exc

        content_type = None
        sidecar = self._metadata_path(path)
        if sidecar.is_file():
            try:
                content_type = json.loads(sidecar.read_text()).get("contentType")
            except (OSError, ValueError) as exc:
                logger.warning("Unreadable metadata for %s: %s", path, exc)
        updated = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        return BlobMetadata(path=path, content_type=content_type, size=stat.st_size, updated=updated)

    def upload(self, path: str, content: bytes, content_type: str | None = None) -> BlobMetadata:
        target = self._object_path(path)
        sidecar = self._metadata_path(path)
        content_type = content_type or resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(target.name + ".part")
            tmp.write_bytes(content)
            os.replace(tmp, target)
            sidecar.parent.mkdir(parents=True, exist_ok=True)
            sidecar.write_text(json.dumps({"contentType": content_type, "size": len(content)}))
        except OSError as exc:
            logger.error("Blob upload failed for %s: %s", path, exc)
            raise BlobStoreError() from exc
        return self.get_metadata(path)

    def delete(self, path: str) -> None:
        try:
            self._object_path(path).unlink(missing_ok=True)
            self._metadata_path(path).unlink(missing_ok=True)
        except OSError as exc:
            raise BlobStoreError() from exc

    def public_url(self, path: str) -> str:
        return build_public_url(self.host, self.bucket, normalize_object_path(path))
