"""Pytest fixtures: fresh in-memory record store and test client per test."""
import os

import pytest
from fastapi.testclient import TestClient

# Must be set before dawaak is imported (settings are read at import time)
os.environ.setdefault("STORAGE_URL", "memory://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("OPENAI_API_KEY", "sk-test-dummy")
os.environ.setdefault("SEED_ADMIN_PASSWORD", "admin-pass-123")
os.environ.setdefault("SEED_DOCTOR_PASSWORD", "doctor-pass-123")
# Cheap hashes and no rate limiting across the whole session
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "10000")
os.environ.setdefault("RATE_LIMIT_LOGIN_PER_MINUTE", "10000")

from dawaak.main import create_app
from dawaak.store import MemoryPersistence, RecordStore

ADMIN_PASSWORD = os.environ["SEED_ADMIN_PASSWORD"]
DOCTOR_PASSWORD = os.environ["SEED_DOCTOR_PASSWORD"]


@pytest.fixture
def store():
    return RecordStore(MemoryPersistence())


@pytest.fixture
def client(store):
    """TestClient; the lifespan seeds the default accounts and content into `store`."""
    with TestClient(create_app(store=store)) as c:
        yield c


def _login(client: TestClient, username: str, password: str) -> dict:
    r = client.post("/auth/login", json={"username": username, "password": password})
    assert r.status_code == 200, f"Login failed: {r.status_code} {r.text}"
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def admin_headers(client):
    return _login(client, "admin", ADMIN_PASSWORD)


@pytest.fixture
def patient(client):
    r = client.post(
        "/auth/register",
        json={
            "username": "patient1",
            "password": "secret123",
            "full_name": "مريض تجريبي",
            "email": "patient1@example.com",
            "phone": "+967700000001",
            "age": 30,
            "gender": "female",
        },
    )
    assert r.status_code == 201, r.text
    return r.json()


@pytest.fixture
def patient_headers(client, patient):
    return _login(client, "patient1", "secret123")


@pytest.fixture
def login_as(client):
    """login_as(username, password) -> Authorization headers."""
    return lambda username, password: _login(client, username, password)
