"""Pytest configuration and fixtures."""

import os

# Test posture must be in place before settings are first read
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["ENVIRONMENT"] = "test"
os.environ["INDEXER_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CONTENT_STORE_PROVIDER"] = "memory"
os.environ["ALLOW_MOCK_ENGINE"] = "false"

import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ledgerflow_api.db.base import Base
from ledgerflow_api.db.session import get_db
from ledgerflow_api.dependencies import get_chain_client, get_store
from ledgerflow_api.ledger.chain import LocalChainClient
from ledgerflow_api.main import app
from ledgerflow_api.storage.content_store import InMemoryContentStore

# Use test database URL from environment or default to SQLite in-memory
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")

SUBMITTER = "0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb"


@pytest.fixture(scope="function")
def session_factory():
    """
    Session factory bound to a fresh schema.

    Point TEST_DATABASE_URL at PostgreSQL to run against a real server.
    """
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(TEST_DATABASE_URL)

    Base.metadata.create_all(engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def chain_client(session_factory) -> LocalChainClient:
    return LocalChainClient(session_factory)


@pytest.fixture
def content_store() -> InMemoryContentStore:
    return InMemoryContentStore()


@pytest.fixture
def client(session_factory, chain_client, content_store):
    """API client wired to the test database and in-memory collaborators."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_chain_client] = lambda: chain_client
    app.dependency_overrides[get_store] = lambda: content_store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def attest_content(chain_client):
    """Submit an attestation for a content address and return the event."""
    from ledgerflow_api.ledger.fingerprint import fingerprint_for

    def _attest(content_address: str, submitter: str = SUBMITTER):
        return asyncio.run(
            chain_client.submit_attestation(
                submitter, fingerprint_for(content_address), content_address
            )
        )

    return _attest
