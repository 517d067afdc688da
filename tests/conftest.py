# File: tests/conftest.py

import os
import tempfile
from pathlib import Path

import pytest

# 1. Point settings at a throwaway SQLite database before the package is imported
_TEST_DIR = Path(tempfile.mkdtemp(prefix="portfolio-storage-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR / 'test_storage.db'}"
os.environ["STORAGE_BACKEND"] = "database"
os.environ["STORAGE_ROOT"] = str(_TEST_DIR / "storage")
os.environ["CHUNK_SIZE_BYTES"] = str(64 * 1024)
os.environ.pop("CORS_ALLOW_ORIGINS", None)

from portfolio_storage.database import models  # noqa: E402,F401
from portfolio_storage.database.db import Base, SessionLocal, engine  # noqa: E402
from portfolio_storage.services.catalog_service import CatalogService  # noqa: E402
from portfolio_storage.services.deletion_service import DeletionCoordinator  # noqa: E402
from portfolio_storage.services.ingestion_service import IngestionService  # noqa: E402
from portfolio_storage.services.retrieval_service import RetrievalService  # noqa: E402
from portfolio_storage.storage import DatabaseChunkStore, LocalChunkStore  # noqa: E402

# Tiny chunks make multi-chunk objects cheap to build in unit tests.
SMALL_CHUNK_SIZE = 4


@pytest.fixture(scope="function", autouse=True)
def setup_database():
    """
    Creates the tables before EACH test and drops them afterwards.
    """
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(params=["database", "local"])
def chunk_store(request, tmp_path):
    """Every chunk store backend with a small chunk size."""
    if request.param == "local":
        return LocalChunkStore(tmp_path / "chunks", SMALL_CHUNK_SIZE)
    return DatabaseChunkStore(SessionLocal, SMALL_CHUNK_SIZE)


@pytest.fixture
def catalog():
    return CatalogService()


@pytest.fixture
def ingestion(chunk_store, catalog):
    return IngestionService(chunk_store, catalog)


@pytest.fixture
def retrieval(chunk_store, catalog):
    return RetrievalService(chunk_store, catalog)


@pytest.fixture
def coordinator(chunk_store, catalog):
    return DeletionCoordinator(chunk_store, SessionLocal, catalog=catalog, max_workers=4)


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from portfolio_storage.main import app

    with TestClient(app) as test_client:
        yield test_client
