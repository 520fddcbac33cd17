import os

os.environ["API_TOKEN"] = "test-token"
os.environ.setdefault("ENV", "test")

import mongomock
import pytest
from fastapi.testclient import TestClient

from noteclub.db import connection
from noteclub.db.init_collections import init_mongodb
from noteclub.http_api.auth import hash_password
from noteclub.http_api.rate_limiter import reset_rate_limits

TOKEN = "test-token"
ALICE = "64c0a6f4e5b1a2c3d4e5f601"
BOB = "64c0a6f4e5b1a2c3d4e5f602"
CAROL = "64c0a6f4e5b1a2c3d4e5f603"
GROUP = "64c0a6f4e5b1a2c3d4e5f700"


@pytest.fixture
def db():
    """Fresh in-memory database seeded with alice (admin), bob and inactive carol"""
    database = mongomock.MongoClient()["noteclub-test"]
    connection.set_database(database)
    init_mongodb(drop_existing=False, insert_samples=True, db=database)
    reset_rate_limits()
    yield database
    connection.set_database(None)


@pytest.fixture
def client(db):
    # No context manager: startup would connect to MongoDB and start the WebSocket thread
    from noteclub.main import app
    return TestClient(app)


@pytest.fixture
def ids():
    return {"token": TOKEN, "alice": ALICE, "bob": BOB, "carol": CAROL, "group": GROUP}


@pytest.fixture
def with_password(db):
    """Give a seeded user a known password"""
    def _set(user_id, password="secret123"):
        db.users.update_one({"id": user_id}, {"$set": {"password_hash": hash_password(password)}})
        return password
    return _set


@pytest.fixture
def post_album(client):
    """POST an album and return the response"""
    def _post(user_id, title="Kid A", artist="Radiohead", group_id=GROUP, **extra):
        body = {"token": TOKEN, "user_id": user_id, "title": title, "artist": artist, "group_id": group_id}
        body.update(extra)
        return client.post("/api/v1/albums", json=body)
    return _post


@pytest.fixture
def register(client):
    def _register(username, email=None, name=None, password="secret123"):
        return client.post("/api/v1/auth/register", json={
            "username": username,
            "name": name or username.title(),
            "email": email or f"{username}@example.com",
            "password": password,
        })
    return _register
