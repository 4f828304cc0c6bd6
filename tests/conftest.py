"""
Pytest configuration and shared fixtures for CloudNest storage engine tests.
"""
import asyncio
import os
from typing import Dict, Generator, List, Optional, Set

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["HEALTH_CHECK_INTERVAL_SECONDS"] = "0"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from cloudnest.core.config import Settings
from cloudnest.db import get_db
from cloudnest.main import app
from cloudnest.models import Base, BackendKind, StorageBackendConfig
from cloudnest.storage.catalog import FileMeta, VersionData
from cloudnest.storage.engine import StorageEngine
from cloudnest.storage.registry import BackendSnapshot


MB = 1024 * 1024

# Test Database Configuration
TEST_DATABASE_URL = "sqlite://"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


AWS_CREDENTIALS = {
    "access_key_id": "AKIAEXAMPLEKEY",
    "secret_access_key": "super-secret-value",
    "bucket": "cloudnest-uploads",
    "region": "us-east-1",
}

EMBEDDED_CREDENTIALS = {
    "database_url": "sqlite://",
    "bucket_name": "uploads",
}


class FakeChecker:
    """
    Scriptable stand-in for backend connectivity checks.

    Backends are addressed by name: names in ``failing`` raise, names in
    ``delays`` sleep before answering.
    """

    def __init__(self):
        self.failing: Set[str] = set()
        self.delays: Dict[str, float] = {}
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def check(self, snapshot: BackendSnapshot, timeout: float) -> None:
        self.calls.append(snapshot.name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delays.get(snapshot.name, 0)
            if delay:
                await asyncio.sleep(delay)
            if snapshot.name in self.failing:
                raise ConnectionError(f"{snapshot.name} unreachable")
        finally:
            self.in_flight -= 1


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    db_session = TestingSessionLocal()
    try:
        yield db_session
    finally:
        db_session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def threaded_sessions(tmp_path):
    """
    Session factory on a file database with a connection per session,
    for tests that read and write from several threads at once.
    """
    file_engine = create_engine(
        f"sqlite:///{tmp_path / 'cloudnest.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=file_engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    file_engine.dispose()


@pytest.fixture
def test_settings() -> Settings:
    """Small limits so quota paths are easy to hit."""
    return Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        DEFAULT_QUOTA_BYTES=1_000_000,
        MAX_FILE_SIZE=10 * MB,
        HEALTH_CHECK_INTERVAL_SECONDS=0,
        HEALTH_STALE_AFTER_SECONDS=0,
        HEALTH_PROBE_MAX_TIMEOUT_SECONDS=0.2,
    )


@pytest.fixture
def checker() -> FakeChecker:
    return FakeChecker()


@pytest.fixture
def storage_engine(test_settings: Settings, checker: FakeChecker) -> StorageEngine:
    """Storage engine whose health checks never leave the process."""
    return StorageEngine(
        test_settings,
        session_factory=TestingSessionLocal,
        checkers={kind: checker.check for kind in BackendKind},
    )


@pytest.fixture
def register_backend(db: Session, storage_engine: StorageEngine):
    """
    Register a backend and probe it once so it starts out healthy
    (or unhealthy, if its name is in ``checker.failing``).
    """
    def _register(
        name: str = "primary",
        kind: BackendKind = BackendKind.AWS_S3,
        credentials: Optional[dict] = None,
        is_default: bool = False,
        **settings,
    ) -> StorageBackendConfig:
        if credentials is None:
            credentials = EMBEDDED_CREDENTIALS if kind == BackendKind.EMBEDDED else AWS_CREDENTIALS
        registry = storage_engine.registry(db)
        config = registry.register(name, kind, credentials, is_default=is_default, **settings)
        asyncio.run(storage_engine.monitor.check_backend(config.id, db=db))
        db.refresh(config)
        return config

    return _register


@pytest.fixture
def make_file(db: Session, storage_engine: StorageEngine):
    """Create a file record directly in the catalog."""
    def _make(
        owner_id: str = "user-1",
        name: str = "report.pdf",
        size: int = 1000,
        backend_id: str = None,
        folder_id: str = None,
        content_hash: str = "hash-0001",
        storage_key: str = None,
        mime_type: str = "application/pdf",
        track_usage: bool = True,
    ):
        catalog = storage_engine.catalog(db, track_usage=track_usage)
        meta = FileMeta(
            owner_id=owner_id,
            name=name,
            mime_type=mime_type,
            size=size,
            content_hash=content_hash,
            backend_id=backend_id,
            folder_id=folder_id,
        )
        return catalog.create_file(
            meta,
            VersionData(size=size, storage_key=storage_key or f"{owner_id}/{name}", uploaded_by=owner_id),
        )

    return _make


@pytest.fixture(scope="function")
def client(db: Session, storage_engine: StorageEngine) -> Generator[TestClient, None, None]:
    """Create a test client with database dependency override."""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.state.engine = storage_engine

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    del app.state.engine


@pytest.fixture
def user_headers() -> Dict[str, str]:
    return {"X-User-Id": "user-1", "X-Storage-Limit": "1000000"}


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return {"X-User-Id": "admin-1", "X-User-Role": "admin"}
