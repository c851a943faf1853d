import os
import sys
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure tests use an in-memory SQLite DB
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENCRYPTION_SECRET", "test-secret")

# Ensure the project root is on sys.path so `import labsync` works when running
# pytest from the repository root.
ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from labsync.app import app
from labsync.db.session import Base, get_db
from labsync.routes.deps import get_user_id
from labsync.schemas.upload import UploadSource


# In-memory SQLite shared across connections
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def create_schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


def _override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = _override_get_db

import labsync.db.session as session_mod
session_mod.engine = engine
session_mod.SessionLocal = TestingSessionLocal
import labsync.models as models_mod
models_mod.engine = engine


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    # ensure limiter state fresh each test
    app.state.limiter.reset()
    yield


@pytest.fixture(autouse=True)
def upload_root(monkeypatch, tmp_path):
    import labsync.services.storage as storage
    root = tmp_path / "uploads"
    monkeypatch.setattr(storage, "DEFAULT_UPLOAD_DIR", root)
    return root


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def as_user():
    """Switch the request owner; restores the header-based default afterwards."""
    def _set(user_id: str):
        app.dependency_overrides[get_user_id] = lambda: user_id
    yield _set
    app.dependency_overrides.pop(get_user_id, None)


@pytest.fixture
def sleeps():
    """Recording stand-in for asyncio.sleep so backoff delays cost nothing."""
    recorded = []

    async def _sleep(seconds):
        recorded.append(seconds)

    _sleep.calls = recorded
    return _sleep


@pytest.fixture
def make_source():
    def _make(size=10, name="report.pdf", media_type="application/pdf"):
        return UploadSource(name=name, type=media_type, data=bytes(i % 251 for i in range(size)))
    return _make


@pytest.fixture
def asgi_transport():
    """httpx transport wired straight into the app, no network."""
    return httpx.ASGITransport(app=app)
