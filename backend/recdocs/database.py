import sqlite3
from pathlib import Path
from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from recdocs.config import settings


class Base(DeclarativeBase):
    pass


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(db_path: Path | None = None):
    path = db_path or settings.db_path
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


engine = get_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


SCHEMA_SQL = """\
-- ============================================================
-- APPLICATIONS (document store record + archive metadata)
-- ============================================================
CREATE TABLE IF NOT EXISTS applications (
    code               TEXT PRIMARY KEY,
    title              TEXT NOT NULL,
    proponent_name     TEXT,
    proponent_email    TEXT,
    zip_hash           TEXT,
    zip_last_modified  INTEGER,
    zip_download_url   TEXT,
    zip_storage_path   TEXT,
    file_manifest      TEXT,
    created_at         TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now')),
    updated_at         TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now'))
);

CREATE INDEX IF NOT EXISTS idx_applications_zip_hash ON applications(zip_hash);

-- ============================================================
-- PROTOCOL DOCUMENTS
-- ============================================================
CREATE TABLE IF NOT EXISTS protocol_documents (
    id                 TEXT PRIMARY KEY,
    application_code   TEXT NOT NULL REFERENCES applications(code) ON DELETE CASCADE,
    field_key          TEXT NOT NULL,
    title              TEXT NOT NULL,
    file_name          TEXT,
    original_file_name TEXT,
    content_type       TEXT,
    size_bytes         INTEGER,
    content_hash       TEXT,
    status             TEXT NOT NULL DEFAULT 'pending'
                       CHECK(status IN ('pending','submitted','revision_submitted',
                                        'accepted','rejected')),
    version            INTEGER NOT NULL DEFAULT 1,
    request_reason     TEXT,
    uploaded_at        INTEGER
);

CREATE INDEX IF NOT EXISTS idx_protocol_documents_app ON protocol_documents(application_code);
CREATE UNIQUE INDEX IF NOT EXISTS idx_protocol_documents_field
    ON protocol_documents(application_code, field_key);
"""

CACHE_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS cache_records (
    cache_key  TEXT PRIMARY KEY,
    cached_at  INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS cached_files (
    cache_key  TEXT NOT NULL REFERENCES cache_records(cache_key) ON DELETE CASCADE,
    file_name  TEXT NOT NULL,
    content    BLOB NOT NULL,
    PRIMARY KEY (cache_key, file_name)
);
"""


MIGRATIONS: list[str] = []


def init_db(db_path: Path | None = None):
    path = db_path or settings.db_path
    conn = sqlite3.connect(str(path))
    conn.executescript(SCHEMA_SQL)
    # Run migrations idempotently (ALTER TABLE fails if the column exists)
    for migration in MIGRATIONS:
        try:
            conn.execute(migration)
            conn.commit()
        except sqlite3.OperationalError:
            pass  # column already exists
    conn.close()


def init_cache_db(db_path: Path | None = None):
    path = db_path or settings.cache_db_path
    conn = sqlite3.connect(str(path))
    conn.executescript(CACHE_SCHEMA_SQL)
    conn.close()
