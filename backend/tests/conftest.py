import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from recdocs.config import settings
from recdocs.database import get_db, init_db
from recdocs.dependencies import get_blob_store, get_http_client
from recdocs.main import app
from recdocs.services.storage_service import LocalBlobStore


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class UpstreamStub:
    """Stands in for every remote HTTP server; records what it was asked."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.handler = lambda request: httpx.Response(404)

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        return self.handler(request)


@pytest.fixture
def tmp_data(tmp_path):
    data_path = tmp_path / "RecData"
    data_path.mkdir()
    return data_path


@pytest.fixture
def test_db(tmp_data):
    db_path = tmp_data / "db.sqlite"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    TestSession = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    init_db(db_path)

    def override_get_db():
        db = TestSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestSession
    app.dependency_overrides.clear()


@pytest.fixture
def blob_store(tmp_data):
    return LocalBlobStore(tmp_data / "blobs", "test-bucket", settings.storage_host)


@pytest.fixture
def upstream():
    return UpstreamStub()


@pytest.fixture
def client(tmp_data, test_db, blob_store, upstream):
    original_data_path = settings.data_path
    settings.data_path = tmp_data
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    app.dependency_overrides[get_http_client] = lambda: http_client
    c = TestClient(app)
    yield c
    app.dependency_overrides.pop(get_blob_store, None)
    app.dependency_overrides.pop(get_http_client, None)
    asyncio.run(http_client.aclose())
    settings.data_path = original_data_path
