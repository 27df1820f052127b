import threading
import time
from pathlib import Path
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from recdocs.database import get_engine, init_cache_db
from recdocs.models.cache import CacheRecord, CachedFile


class LocalStore(Protocol):
    """Persistent key -> {file name: bytes} store backing the document cache."""

    def get(self, key: str) -> dict[str, bytes] | None: ...

    def set(self, key: str, files: dict[str, bytes]) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> list[str]: ...


class SqliteLocalStore:
    def __init__(self, db_path: Path):
        init_cache_db(db_path)
        self._Session = sessionmaker(bind=get_engine(db_path), autoflush=False, autocommit=False)

    def get(self, key: str) -> dict[str, bytes] | None:
        with self._Session() as db:
            if db.get(CacheRecord, key) is None:
                return None
            rows = db.execute(
                select(CachedFile.file_name, CachedFile.content).where(CachedFile.cache_key == key)
            ).all()
        return {name: bytes(content) for name, content in rows}

    def set(self, key: str, files: dict[str, bytes]) -> None:
        # Whole-value replacement in one transaction: readers never observe a
        # mix of two versions under the same key.
        with self._Session() as db, db.begin():
            self._delete(db, key)
            db.add(CacheRecord(cache_key=key, cached_at=int(time.time() * 1000)))
            db.flush()
            db.add_all(
                CachedFile(cache_key=key, file_name=name, content=content)
                for name, content in files.items()
            )

    def delete(self, key: str) -> None:
        with self._Session() as db, db.begin():
            self._delete(db, key)

    def keys(self, prefix: str = "") -> list[str]:
        stmt = select(CacheRecord.cache_key).order_by(CacheRecord.cache_key)
        if prefix:
            stmt = stmt.where(CacheRecord.cache_key.startswith(prefix, autoescape=True))
        with self._Session() as db:
            return list(db.scalars(stmt))

    @staticmethod
    def _delete(db, key: str) -> None:
        db.execute(delete(CachedFile).where(CachedFile.cache_key == key))
        db.execute(delete(CacheRecord).where(CacheRecord.cache_key == key))


class MemoryLocalStore:
    def __init__(self):
        self._data: dict[str, dict[str, bytes]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> dict[str, bytes] | None:
        with self._lock:
            files = self._data.get(key)
            return dict(files) if files is not None else None

    def set(self, key: str, files: dict[str, bytes]) -> None:
        with self._lock:
            self._data[key] = dict(files)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))
