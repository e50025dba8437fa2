"""Shared fixtures: an in-memory MongoDB, a temp storage root, and a test client."""

from __future__ import annotations

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from context import AppContext
from database import RecordStore
from main import create_app
from schemas import Draft, Photo
from storage import ObjectStorage

PHOTO_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64


@pytest.fixture
def settings(tmp_path):
    return Settings(
        jwt_secret="test-secret",
        storage_root=str(tmp_path / "storage"),
        public_base_url="http://testserver",
    )


@pytest.fixture
def store():
    client = mongomock.MongoClient()
    s = RecordStore(client["civicguard_test"], client)
    s.ensure_indexes()
    return s


@pytest.fixture
def storage(settings):
    return ObjectStorage(settings.storage_root, settings.public_base_url)


@pytest.fixture
def ctx(settings, store, storage):
    return AppContext(settings=settings, store=store, storage=storage)


@pytest.fixture
def client(ctx):
    return TestClient(create_app(ctx))


@pytest.fixture
def register(client):
    """Sign up a user; returns (user dict, auth headers)."""

    def _register(email: str = "reporter@example.com", password: str = "hunter22"):
        r = client.post("/auth/register", json={"email": email, "password": password})
        assert r.status_code == 200, r.text
        body = r.json()
        return body["user"], {"Authorization": f"Bearer {body['token']}"}

    return _register


@pytest.fixture
def complete_draft():
    return Draft(
        photo=Photo(data=PHOTO_BYTES, filename="pothole.jpg", content_type="image/jpeg"),
        location="Main St",
        hazard_type="Pothole",
        category="Roads",
        severity="High",
    )
