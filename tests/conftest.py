"""Shared pytest fixtures for Consultflow tests.

This module contains common fixtures used across multiple test files,
reducing duplication and improving test maintainability.
"""

import tempfile
from pathlib import Path

import pytest
from factories import (
    PUBLIC_BASE_URL,
    WEBHOOK_TOKEN,
    FakeStorage,
    FakeTextGenerator,
    FakeTranscriber,
    make_wav_bytes,
)
from fastapi.testclient import TestClient

from consultflow.context import PipelineContext
from consultflow.db import init_db
from services.pipeline_api.main import app, get_db_session, override_session_factory


@pytest.fixture
def wav_chunk_factory(tmp_path):
    """Write WAV chunk files into a temporary directory.

    Returns:
        Callable (name, payload_size) -> Path
    """
    chunk_dir = tmp_path / "chunks"
    chunk_dir.mkdir()

    def _make(name: str, payload_size: int) -> Path:
        path = chunk_dir / name
        path.write_bytes(make_wav_bytes(payload_size))
        return path

    return _make


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def text_generator():
    return FakeTextGenerator()


# --- Database ---


@pytest.fixture
def temp_db():
    """Create a temporary database for testing.

    Creates an isolated SQLite database in a temporary directory.
    The database is cleaned up after the test completes.

    Yields:
        tuple: (db_path, engine, SessionFactory)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        engine, SessionFactory = init_db(db_path)
        override_session_factory(SessionFactory)
        yield db_path, engine, SessionFactory
        engine.dispose()


@pytest.fixture
def session_factory(temp_db):
    _, _, SessionFactory = temp_db
    return SessionFactory


@pytest.fixture
def ctx(session_factory, storage, transcriber, text_generator, tmp_path):
    """Pipeline context wired to the temp database and in-memory fakes."""
    return PipelineContext(
        session_factory=session_factory,
        storage=storage,
        transcriber=transcriber,
        text_generator=text_generator,
        temp_dir=tmp_path / "work",
        pre_submission_timeout=30,
    )


@pytest.fixture
def webhook_env(monkeypatch):
    """Configure the callback URL and shared secret."""
    monkeypatch.setenv("CONSULTFLOW_WEBHOOK_TOKEN", WEBHOOK_TOKEN)
    monkeypatch.setenv("CONSULTFLOW_PUBLIC_BASE_URL", PUBLIC_BASE_URL)


# --- API ---


@pytest.fixture
def client(temp_db):
    """Create a FastAPI test client with temp database.

    Overrides the database dependency to use the temporary test database.
    The dependency override is cleared after the test completes.

    Args:
        temp_db: Temporary database fixture.

    Yields:
        tuple: (test_client, SessionFactory)
    """
    db_path, engine, SessionFactory = temp_db

    # Override the dependency
    def get_test_session():
        session = SessionFactory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db_session] = get_test_session

    with TestClient(app) as client:
        yield client, SessionFactory

    # Clean up dependency overrides
    app.dependency_overrides.clear()
