"""
Pytest configuration and fixtures for backend testing
"""

import io
import os
import tempfile
import zipfile
from typing import Dict, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["AUTO_MIGRATE"] = "false"
os.environ.setdefault(
    "SCORM_STORAGE_ROOT", os.path.join(tempfile.gettempdir(), "scorm-test-blobs")
)

from scorm_backend.db.config import build_engine, get_session
from scorm_backend.main import app
from scorm_backend.models.persisted_scorm import Base
from scorm_backend.storage.blob_store import LocalBlobStore, get_blob_store


SCORM_12_MANIFEST = """<?xml version="1.0" encoding="UTF-8"?>
<manifest identifier="test-course-12" version="1.0"
  xmlns="http://www.imsproject.org/xsd/imscp_rootv1p1p2"
  xmlns:adlcp="http://www.adlnet.org/xsd/adlcp_rootv1p2">
  <metadata>
    <schema>ADL SCORM</schema>
    <schemaversion>1.2</schemaversion>
  </metadata>
  <organizations default="org-1">
    <organization identifier="org-1">
      <title>SCORM 1.2 Test Course</title>
      <item identifier="item-1" identifierref="res-1">
        <title>Lesson 1</title>
      </item>
      <item identifier="item-2" identifierref="res-2">
        <title>Lesson 2</title>
      </item>
    </organization>
  </organizations>
  <resources>
    <resource identifier="res-1" type="webcontent" adlcp:scormtype="sco" href="lesson1/index.html">
      <file href="lesson1/index.html" />
    </resource>
    <resource identifier="res-2" type="webcontent" adlcp:scormtype="sco" href="lesson2/index.html">
      <file href="lesson2/index.html" />
    </resource>
  </resources>
</manifest>"""

SCORM_2004_MANIFEST = """<?xml version="1.0" encoding="UTF-8"?>
<manifest identifier="test-course-2004" version="1.0"
  xmlns="http://www.imsglobal.org/xsd/imscp_v1p1"
  xmlns:adlcp="http://www.adlnet.org/xsd/adlcp_v1p3"
  xmlns:adlseq="http://www.adlnet.org/xsd/adlseq_v1p3">
  <metadata>
    <schema>ADL SCORM</schema>
    <schemaversion>2004 4th Edition</schemaversion>
  </metadata>
  <organizations default="org-2004">
    <organization identifier="org-2004">
      <title>SCORM 2004 Course</title>
      <item identifier="item-a" identifierref="res-a">
        <title>Module A</title>
      </item>
    </organization>
  </organizations>
  <resources>
    <resource identifier="res-a" type="webcontent" adlcp:scormType="sco" href="module_a/start.html">
      <file href="module_a/start.html" />
      <file href="module_a/styles.css" />
    </resource>
  </resources>
</manifest>"""

SCORM_12_FILES = {
    "lesson1/index.html": b"<html><body>Lesson 1</body></html>",
    "lesson2/index.html": b"<html><body>Lesson 2</body></html>",
}

SCORM_2004_FILES = {
    "module_a/start.html": b"<html><body>Module A</body></html>",
    "module_a/styles.css": b"body { margin: 0; }",
}


def build_scorm_zip(
    manifest: Optional[str] = SCORM_12_MANIFEST,
    files: Optional[Dict[str, bytes]] = None,
) -> bytes:
    """Build an in-memory SCORM zip; ``manifest=None`` omits imsmanifest.xml."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        if manifest is not None:
            archive.writestr("imsmanifest.xml", manifest)
        for name, content in (SCORM_12_FILES if files is None else files).items():
            archive.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture
def scorm12_zip() -> bytes:
    return build_scorm_zip(SCORM_12_MANIFEST, SCORM_12_FILES)


@pytest.fixture
def scorm2004_zip() -> bytes:
    return build_scorm_zip(SCORM_2004_MANIFEST, SCORM_2004_FILES)


@pytest.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine with the schema created, one per test"""
    engine = build_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(
        bind=db_engine, class_=AsyncSession, expire_on_commit=False
    )


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(root=tmp_path / "blobs")


@pytest.fixture
async def client(session_factory, blob_store):
    """Async API client bound to the per-test database and blob store"""

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
    config.addinivalue_line(
        "markers", "api: marks tests as API endpoint tests"
    )


# Helper functions for tests
def assert_response_success(response, expected_status=200):
    """Assert that response is successful"""
    assert response.status_code == expected_status, f"Expected {expected_status}, got {response.status_code}: {response.text}"
